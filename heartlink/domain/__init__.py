"""Domain models shared by every heartlink component."""

from .models import Account, DailyAggregate, Envelope, Role, Sample

__all__ = ["Account", "DailyAggregate", "Envelope", "Role", "Sample"]
