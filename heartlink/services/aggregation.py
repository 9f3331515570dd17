"""
Heart-rate aggregation engine.

Every sample is appended to raw history and folded into the aggregate for its
canonical day in the same transaction. The fold is a single upsert statement
evaluated by the database:

    mean = (mean + value) / 2
    min  = least(min, value)
    max  = greatest(max, value)
    sample_count = sample_count + 1

The mean is a recency-weighted running average: the newest sample always
carries half the weight, whatever the count. Samples 60, 80, 100 on one day
give ((60 + 80) / 2 + 100) / 2 = 85, not the arithmetic mean 80.

Canonical day: the date of the sample's timestamp in the configured
aggregation timezone (UTC unless configured). Naive timestamps are UTC.
"""

import math
from collections.abc import Callable
from datetime import UTC, date, datetime, time, timedelta

import structlog
from sqlalchemy import select

from heartlink.config import AggregationConfig
from heartlink.domain.models import DailyAggregate, Sample
from heartlink.errors import InvalidInputError, NotFoundError
from heartlink.services.relationships import RelationshipGraph
from heartlink.storage import (
    AccountRow,
    DailyAggregateRow,
    SampleRow,
    Store,
    daily_aggregate_upsert,
)
from heartlink.storage.tables import utcnow_naive

logger = structlog.get_logger(__name__)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


class AggregationEngine:
    """Folds heart-rate samples into per-user, per-day running statistics."""

    def __init__(
        self,
        store: Store,
        graph: RelationshipGraph,
        config: AggregationConfig | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.store = store
        self.graph = graph
        self.config = config or AggregationConfig()
        self.clock = clock
        self.tz = self.config.tzinfo
        self.logger = logger.bind(component="aggregation_engine", timezone=self.config.timezone)

    def canonical_day(self, observed_at: datetime) -> date:
        """Calendar date of a timestamp in the aggregation timezone."""
        return _as_utc(observed_at).astimezone(self.tz).date()

    def today(self) -> date:
        return self.canonical_day(self.clock())

    def _day_bounds(self, day: date) -> tuple[datetime, datetime]:
        """Naive UTC ``[start, end)`` covering ``day`` in the aggregation timezone."""
        start = datetime.combine(day, time.min, tzinfo=self.tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self.tz)
        return (
            start.astimezone(UTC).replace(tzinfo=None),
            end.astimezone(UTC).replace(tzinfo=None),
        )

    @staticmethod
    def _validate_user_id(user_id: object) -> int:
        if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
            raise InvalidInputError("userId must be a positive integer.")
        return user_id

    def _validate_value(self, value: object) -> float:
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise InvalidInputError("Heart rate must be a number.")
        heart_rate = float(value)
        if not math.isfinite(heart_rate):
            raise InvalidInputError("Heart rate must be a finite number.")
        if not self.config.min_heart_rate < heart_rate <= self.config.max_heart_rate:
            raise InvalidInputError(
                f"Heart rate must be greater than {self.config.min_heart_rate:g} "
                f"and at most {self.config.max_heart_rate:g} bpm."
            )
        return heart_rate

    def record_sample(
        self, user_id: int, value: float, observed_at: datetime | None = None
    ) -> DailyAggregate:
        """
        Append a sample and fold it into its day's aggregate.

        History append and aggregate upsert commit together or not at all.
        Returns the aggregate as it stands after this sample.
        """
        user_id = self._validate_user_id(user_id)
        heart_rate = self._validate_value(value)
        if observed_at is None:
            observed_at = self.clock()
        elif not isinstance(observed_at, datetime):
            raise InvalidInputError("Timestamp must be a datetime.")
        observed_at = _as_utc(observed_at)
        day = self.canonical_day(observed_at)

        with self.store.session() as session:
            if session.get(AccountRow, user_id) is None:
                raise NotFoundError(f"User {user_id} not found.")

            session.add(
                SampleRow(
                    user_id=user_id,
                    heart_rate=heart_rate,
                    observed_at=observed_at.replace(tzinfo=None),
                )
            )
            session.flush()
            session.execute(
                daily_aggregate_upsert(
                    self.store.dialect_name, user_id, day, heart_rate, utcnow_naive()
                )
            )
            row = session.execute(
                select(DailyAggregateRow).where(
                    DailyAggregateRow.user_id == user_id,
                    DailyAggregateRow.calendar_day == day,
                )
            ).scalar_one()
            aggregate = DailyAggregate.model_validate(row)

        self.logger.debug(
            "sample_recorded",
            user_id=user_id,
            calendar_day=day.isoformat(),
            sample_count=aggregate.sample_count,
        )
        return aggregate

    def latest_aggregate(self, user_id: int, viewer_id: int | None = None) -> DailyAggregate:
        self.graph.authorize_read(viewer_id, user_id)
        with self.store.session() as session:
            row = session.execute(
                select(DailyAggregateRow)
                .where(DailyAggregateRow.user_id == user_id)
                .order_by(DailyAggregateRow.calendar_day.desc())
                .limit(1)
            ).scalar_one_or_none()
        if row is None:
            raise NotFoundError("No heart-rate data for this user.")
        return DailyAggregate.model_validate(row)

    def aggregate_for_day(
        self, user_id: int, day: date, viewer_id: int | None = None
    ) -> DailyAggregate:
        if not isinstance(day, date):
            raise InvalidInputError("Day must be a date.")
        self.graph.authorize_read(viewer_id, user_id)
        with self.store.session() as session:
            row = session.execute(
                select(DailyAggregateRow).where(
                    DailyAggregateRow.user_id == user_id,
                    DailyAggregateRow.calendar_day == day,
                )
            ).scalar_one_or_none()
        if row is None:
            raise NotFoundError(f"No heart-rate data for {day.isoformat()}.")
        return DailyAggregate.model_validate(row)

    def recent_aggregates(
        self, user_id: int, n: int | None = None, viewer_id: int | None = None
    ) -> list[DailyAggregate]:
        """Up to ``n`` daily aggregates, newest day first."""
        if n is None:
            n = self.config.default_recent_days
        valid = isinstance(n, int) and not isinstance(n, bool)
        if not valid or not 1 <= n <= self.config.max_recent_days:
            raise InvalidInputError(
                f"n must be an integer between 1 and {self.config.max_recent_days}."
            )
        self.graph.authorize_read(viewer_id, user_id)
        with self.store.session() as session:
            rows = session.scalars(
                select(DailyAggregateRow)
                .where(DailyAggregateRow.user_id == user_id)
                .order_by(DailyAggregateRow.calendar_day.desc())
                .limit(n)
            ).all()
        return [DailyAggregate.model_validate(row) for row in rows]

    def intraday_history(
        self, user_id: int, day: date | None = None, viewer_id: int | None = None
    ) -> list[Sample]:
        """Raw samples of one canonical day in time order. Defaults to today."""
        if day is None:
            day = self.today()
        elif not isinstance(day, date):
            raise InvalidInputError("Day must be a date.")
        self.graph.authorize_read(viewer_id, user_id)
        start, end = self._day_bounds(day)
        with self.store.session() as session:
            rows = session.scalars(
                select(SampleRow)
                .where(
                    SampleRow.user_id == user_id,
                    SampleRow.observed_at >= start,
                    SampleRow.observed_at < end,
                )
                .order_by(SampleRow.observed_at, SampleRow.id)
            ).all()
        return [
            Sample(
                user_id=row.user_id,
                heart_rate=row.heart_rate,
                observed_at=row.observed_at.replace(tzinfo=UTC),
            )
            for row in rows
        ]
