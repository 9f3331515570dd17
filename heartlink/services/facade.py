"""
Service facade: the operations heartlink exposes to the outside world.

Each operation delegates to the identity store, the relationship graph or the
aggregation engine and reports the outcome as an ``Envelope``. No domain rules
live here.
"""

from collections.abc import Callable
from datetime import date, datetime
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel

from heartlink.config import AppConfig
from heartlink.domain.models import Envelope, Role
from heartlink.errors import HeartlinkError, StoreUnavailableError
from heartlink.services.aggregation import AggregationEngine
from heartlink.services.identity import IdentityStore
from heartlink.services.relationships import RelationshipGraph
from heartlink.services.results import Result
from heartlink.storage import Store

logger = structlog.get_logger(__name__)

T = TypeVar("T")

GENERIC_FAILURE = "Server error."


def _count(items: list, singular: str, plural: str) -> str:
    return f"{len(items)} {singular if len(items) == 1 else plural}."


def _to_payload(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_to_payload(item) for item in value]
    return value


class HeartlinkService:
    """Facade over identity, relationships and heart-rate aggregation."""

    def __init__(
        self,
        store: Store,
        identity: IdentityStore,
        graph: RelationshipGraph,
        engine: AggregationEngine,
    ) -> None:
        self.store = store
        self.identity = identity
        self.graph = graph
        self.engine = engine
        self.logger = logger.bind(component="facade")

    @classmethod
    def from_config(cls, config: AppConfig, store: Store | None = None) -> "HeartlinkService":
        """Wire every component against one store."""
        store = store or Store(config.database)
        if config.database.create_schema:
            store.create_schema()
        graph = RelationshipGraph(store)
        return cls(
            store=store,
            identity=IdentityStore(store, config.security),
            graph=graph,
            engine=AggregationEngine(store, graph, config.aggregation),
        )

    def _capture(self, operation: str, call: Callable[[], T]) -> Result[T, HeartlinkError]:
        try:
            return Result.ok(call())
        except HeartlinkError as e:
            if not isinstance(e, StoreUnavailableError):
                self.logger.info("operation_rejected", operation=operation, error=e.kind.value)
            return Result.err(e)
        except Exception as e:
            self.logger.exception("operation_failed", operation=operation, error=str(e))
            failure = StoreUnavailableError(GENERIC_FAILURE)
            failure.__cause__ = e
            return Result.err(failure)

    def _envelope(
        self,
        operation: str,
        call: Callable[[], Any],
        message: str | Callable[[Any], str],
        payload: Callable[[Any], Any] = _to_payload,
    ) -> Envelope:
        result = self._capture(operation, call)
        if result.is_err():
            error = result.unwrap_err()
            return Envelope(
                ok=False, message=error.message, error=error.kind.value, details=error.details()
            )
        value = result.unwrap()
        text = message(value) if callable(message) else message
        return Envelope(ok=True, message=text, payload=payload(value))

    # Identity

    def register(
        self,
        full_name: str,
        email: str,
        phone: str,
        password: str,
        username: str,
        role: Role | int,
    ) -> Envelope:
        return self._envelope(
            "register",
            lambda: self.identity.register(full_name, email, phone, password, username, role),
            "Account registered.",
            lambda account_id: {"user_id": account_id, "role": int(role)},
        )

    def authenticate(self, email: str, password: str) -> Envelope:
        return self._envelope(
            "authenticate",
            lambda: self.identity.authenticate(email, password),
            "Login successful.",
        )

    def find_account_by_email(self, email: str) -> Envelope:
        return self._envelope(
            "find_account_by_email", lambda: self.identity.find_by_email(email), "Account found."
        )

    def health_check(self) -> Envelope:
        return self._envelope(
            "health_check", self.store.ping, "API and database are working normally."
        )

    # Relationships

    def connect(self, user_id: int, party_id: int) -> Envelope:
        return self._envelope(
            "connect",
            lambda: self.graph.connect(user_id, party_id),
            "Relationship created.",
            lambda _: {"user_id": user_id, "party_id": party_id},
        )

    def disconnect(self, user_id: int, party_id: int) -> Envelope:
        return self._envelope(
            "disconnect",
            lambda: self.graph.disconnect(user_id, party_id),
            lambda removed: "Relationship removed." if removed else "No relationship to remove.",
            lambda removed: {"user_id": user_id, "party_id": party_id, "removed": removed},
        )

    def list_responsible_parties(self, user_id: int) -> Envelope:
        return self._envelope(
            "list_responsible_parties",
            lambda: self.graph.responsible_parties_of(user_id),
            lambda parties: _count(parties, "responsible party", "responsible parties"),
        )

    def list_users(self, party_id: int) -> Envelope:
        return self._envelope(
            "list_users",
            lambda: self.graph.users_of(party_id),
            lambda users: _count(users, "user", "users"),
        )

    # Heart rate

    def record_sample(
        self, user_id: int, value: float, timestamp: datetime | None = None
    ) -> Envelope:
        return self._envelope(
            "record_sample",
            lambda: self.engine.record_sample(user_id, value, timestamp),
            "Heart rate recorded.",
        )

    def latest_aggregate(self, user_id: int, viewer_id: int | None = None) -> Envelope:
        return self._envelope(
            "latest_aggregate",
            lambda: self.engine.latest_aggregate(user_id, viewer_id=viewer_id),
            "Latest daily summary.",
        )

    def aggregate_for_day(
        self, user_id: int, day: date, viewer_id: int | None = None
    ) -> Envelope:
        return self._envelope(
            "aggregate_for_day",
            lambda: self.engine.aggregate_for_day(user_id, day, viewer_id=viewer_id),
            f"Daily summary for {day}.",
        )

    def recent_aggregates(
        self, user_id: int, n: int | None = None, viewer_id: int | None = None
    ) -> Envelope:
        return self._envelope(
            "recent_aggregates",
            lambda: self.engine.recent_aggregates(user_id, n, viewer_id=viewer_id),
            lambda rows: _count(rows, "daily summary", "daily summaries"),
        )

    def intraday_history(
        self, user_id: int, day: date | None = None, viewer_id: int | None = None
    ) -> Envelope:
        return self._envelope(
            "intraday_history",
            lambda: self.engine.intraday_history(user_id, day, viewer_id=viewer_id),
            lambda samples: _count(samples, "sample", "samples"),
        )
