"""
Persistence layer: ORM tables and the injected ``Store``.
"""

from .store import Store, daily_aggregate_upsert
from .tables import AccountRow, Base, DailyAggregateRow, RelationshipRow, SampleRow

__all__ = [
    "AccountRow",
    "Base",
    "DailyAggregateRow",
    "RelationshipRow",
    "SampleRow",
    "Store",
    "daily_aggregate_upsert",
]
