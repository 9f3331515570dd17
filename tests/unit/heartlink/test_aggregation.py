"""
Tests for the heart-rate aggregation engine.

Testing philosophy:
- The running mean is the recency-weighted recurrence, never the arithmetic mean
- One aggregate row per user per canonical day, also under concurrent writers
- Property-based testing for the recurrence over arbitrary sample sequences
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from sqlalchemy import func, select

from heartlink.config import AggregationConfig, DatabaseConfig
from heartlink.domain.models import DailyAggregate, Role
from heartlink.errors import InvalidInputError, NotFoundError, UnauthorizedError
from heartlink.services.aggregation import AggregationEngine
from heartlink.services.relationships import RelationshipGraph
from heartlink.storage import AccountRow, DailyAggregateRow, SampleRow, Store

DAY = date(2026, 3, 10)


def at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=UTC)


def _seed_account(store: Store, username: str = "patient") -> int:
    """Insert an account row directly; aggregation does not care about credentials."""
    with store.session() as session:
        row = AccountRow(
            full_name="Patient",
            email=f"{username}@example.com",
            phone="0",
            username=username,
            password_hash="x",
            role=int(Role.MONITORED_USER),
        )
        session.add(row)
        session.flush()
        return row.id


@pytest.fixture
def user_id(register) -> int:
    return register("paula")


class TestRunningMean:
    def test_first_sample_creates_aggregate(self, engine: AggregationEngine, user_id: int) -> None:
        aggregate = engine.record_sample(user_id, 72, at(8))

        assert aggregate == DailyAggregate(
            user_id=user_id,
            calendar_day=DAY,
            mean_value=72.0,
            min_value=72.0,
            max_value=72.0,
            sample_count=1,
        )

    def test_recency_weighted_mean(self, engine: AggregationEngine, user_id: int) -> None:
        for minute, value in enumerate([60, 80, 100]):
            engine.record_sample(user_id, value, at(9, minute))

        aggregate = engine.aggregate_for_day(user_id, DAY)

        assert aggregate.mean_value == 85.0  # ((60 + 80) / 2 + 100) / 2, not 80
        assert aggregate.min_value == 60.0
        assert aggregate.max_value == 100.0
        assert aggregate.sample_count == 3

    def test_recurrence_follows_arrival_order_not_timestamp(
        self, engine: AggregationEngine, user_id: int
    ) -> None:
        engine.record_sample(user_id, 60, at(12))
        engine.record_sample(user_id, 80, at(6))
        aggregate = engine.record_sample(user_id, 100, at(9))

        assert aggregate.mean_value == 85.0
        assert aggregate.sample_count == 3

    @settings(max_examples=25, deadline=None)
    @given(
        values=st.lists(
            st.floats(min_value=20.0, max_value=250.0, allow_nan=False, allow_infinity=False),
            min_size=1,
            max_size=12,
        )
    )
    def test_mean_matches_recurrence_for_any_sequence(self, values: list[float]) -> None:
        """Property-based test: the stored mean always equals the defined recurrence."""
        store = Store(DatabaseConfig(url="sqlite://"))
        store.create_schema()
        try:
            engine = AggregationEngine(store, RelationshipGraph(store))
            user_id = _seed_account(store)

            for i, value in enumerate(values):
                aggregate = engine.record_sample(user_id, value, at(0, i))

            expected = values[0]
            for value in values[1:]:
                expected = (expected + value) / 2

            assert aggregate.mean_value == pytest.approx(expected)
            assert aggregate.min_value == min(values)
            assert aggregate.max_value == max(values)
            assert aggregate.sample_count == len(values)
        finally:
            store.dispose()


class TestRecordSampleValidation:
    @pytest.mark.parametrize("value", [None, "80", True, float("nan"), float("inf"), 0, -5, 301])
    def test_rejects_malformed_values(
        self, engine: AggregationEngine, user_id: int, value: object
    ) -> None:
        with pytest.raises(InvalidInputError):
            engine.record_sample(user_id, value, at(8))  # type: ignore[arg-type]

    @pytest.mark.parametrize("bad_id", [None, 0, -1, "7", True])
    def test_rejects_malformed_user_ids(self, engine: AggregationEngine, bad_id: object) -> None:
        with pytest.raises(InvalidInputError):
            engine.record_sample(bad_id, 70, at(8))  # type: ignore[arg-type]

    def test_rejects_non_datetime_timestamp(self, engine: AggregationEngine, user_id: int) -> None:
        with pytest.raises(InvalidInputError):
            engine.record_sample(user_id, 70, "2026-03-10T08:00:00")  # type: ignore[arg-type]

    def test_unknown_user_is_not_found_and_writes_nothing(
        self, engine: AggregationEngine, store: Store
    ) -> None:
        with pytest.raises(NotFoundError):
            engine.record_sample(4242, 70, at(8))

        with store.session() as session:
            assert session.scalar(select(func.count()).select_from(SampleRow)) == 0
            assert session.scalar(select(func.count()).select_from(DailyAggregateRow)) == 0

    def test_missing_timestamp_uses_clock(self, engine: AggregationEngine, user_id: int) -> None:
        aggregate = engine.record_sample(user_id, 70)

        assert aggregate.calendar_day == engine.clock().date()
        (sample,) = engine.intraday_history(user_id)
        assert sample.observed_at == engine.clock()


class TestCanonicalDay:
    def test_naive_timestamps_are_utc(self, engine: AggregationEngine) -> None:
        assert engine.canonical_day(datetime(2026, 3, 10, 23, 59)) == date(2026, 3, 10)

    def test_offset_timestamps_are_converted(self, engine: AggregationEngine) -> None:
        sao_paulo = ZoneInfo("America/Sao_Paulo")
        local_late_evening = datetime(2026, 3, 10, 22, 30, tzinfo=sao_paulo)  # 01:30 UTC next day

        assert engine.canonical_day(local_late_evening) == date(2026, 3, 11)

    def test_configured_timezone_defines_the_day(
        self, store: Store, graph: RelationshipGraph, user_id: int
    ) -> None:
        engine = AggregationEngine(store, graph, AggregationConfig(timezone="America/Sao_Paulo"))

        engine.record_sample(user_id, 70, at(2))  # 23:00 on the 9th in Sao Paulo
        engine.record_sample(user_id, 90, at(4))  # 01:00 on the 10th in Sao Paulo

        assert engine.aggregate_for_day(user_id, date(2026, 3, 9)).sample_count == 1
        assert engine.aggregate_for_day(user_id, date(2026, 3, 10)).sample_count == 1
        history = engine.intraday_history(user_id, date(2026, 3, 9))
        assert [s.heart_rate for s in history] == [70.0]

    def test_samples_around_midnight_split_days(
        self, engine: AggregationEngine, user_id: int
    ) -> None:
        engine.record_sample(user_id, 70, at(23, 59))
        engine.record_sample(user_id, 90, at(0, 0, day=DAY + timedelta(days=1)))

        assert engine.aggregate_for_day(user_id, DAY).sample_count == 1
        assert engine.aggregate_for_day(user_id, DAY + timedelta(days=1)).sample_count == 1


class TestQueries:
    def test_latest_aggregate_is_the_newest_day(
        self, engine: AggregationEngine, user_id: int
    ) -> None:
        engine.record_sample(user_id, 70, at(8, day=DAY))
        engine.record_sample(user_id, 95, at(8, day=DAY + timedelta(days=2)))
        engine.record_sample(user_id, 80, at(8, day=DAY + timedelta(days=1)))

        latest = engine.latest_aggregate(user_id)

        assert latest.calendar_day == DAY + timedelta(days=2)
        assert latest.mean_value == 95.0

    def test_latest_aggregate_without_data_is_not_found(
        self, engine: AggregationEngine, user_id: int
    ) -> None:
        with pytest.raises(NotFoundError):
            engine.latest_aggregate(user_id)

    def test_aggregate_for_missing_day_is_not_found(
        self, engine: AggregationEngine, user_id: int
    ) -> None:
        engine.record_sample(user_id, 70, at(8))

        with pytest.raises(NotFoundError):
            engine.aggregate_for_day(user_id, DAY - timedelta(days=1))

    def test_recent_aggregates_are_capped_and_descending(
        self, engine: AggregationEngine, user_id: int
    ) -> None:
        for offset in range(10):
            engine.record_sample(user_id, 60 + offset, at(8, day=DAY - timedelta(days=offset)))

        recent = engine.recent_aggregates(user_id, 7)

        assert len(recent) == 7
        days = [a.calendar_day for a in recent]
        assert days == sorted(days, reverse=True)
        assert len(set(days)) == len(days)
        assert days[0] == DAY

    def test_recent_aggregates_default_window(
        self, engine: AggregationEngine, user_id: int
    ) -> None:
        for offset in range(9):
            engine.record_sample(user_id, 70, at(8, day=DAY - timedelta(days=offset)))

        assert len(engine.recent_aggregates(user_id)) == 7

    def test_recent_aggregates_with_fewer_days(
        self, engine: AggregationEngine, user_id: int
    ) -> None:
        engine.record_sample(user_id, 70, at(8))

        assert len(engine.recent_aggregates(user_id, 7)) == 1

    @pytest.mark.parametrize("n", [0, -3, 367, True, "7"])
    def test_recent_aggregates_rejects_bad_n(
        self, engine: AggregationEngine, user_id: int, n: object
    ) -> None:
        with pytest.raises(InvalidInputError):
            engine.recent_aggregates(user_id, n)  # type: ignore[arg-type]

    def test_intraday_history_is_time_ordered_and_day_scoped(
        self, engine: AggregationEngine, user_id: int
    ) -> None:
        engine.record_sample(user_id, 90, at(15))
        engine.record_sample(user_id, 70, at(7))
        engine.record_sample(user_id, 80, at(11))
        engine.record_sample(user_id, 99, at(11, day=DAY + timedelta(days=1)))

        history = engine.intraday_history(user_id, DAY)

        assert [s.heart_rate for s in history] == [70.0, 80.0, 90.0]
        assert all(s.observed_at.tzinfo is not None for s in history)
        assert history[0].observed_at == at(7)

    def test_intraday_history_defaults_to_today(
        self, engine: AggregationEngine, user_id: int
    ) -> None:
        engine.record_sample(user_id, 70, engine.clock() - timedelta(hours=1))
        engine.record_sample(user_id, 80, engine.clock() - timedelta(days=1))

        assert [s.heart_rate for s in engine.intraday_history(user_id)] == [70.0]

    @pytest.mark.parametrize("day", ["2026-03-10", 20260310, 1.5])
    def test_intraday_history_rejects_non_date_days(
        self, engine: AggregationEngine, user_id: int, day: object
    ) -> None:
        with pytest.raises(InvalidInputError):
            engine.intraday_history(user_id, day)  # type: ignore[arg-type]

    def test_history_keeps_every_sample(
        self, engine: AggregationEngine, store: Store, user_id: int
    ) -> None:
        for minute in range(5):
            engine.record_sample(user_id, 70 + minute, at(10, minute))

        with store.session() as session:
            assert session.scalar(select(func.count()).select_from(SampleRow)) == 5
            assert session.scalar(select(func.count()).select_from(DailyAggregateRow)) == 1


class TestReadAuthorization:
    def test_responsible_party_reads_require_an_edge(
        self, engine: AggregationEngine, graph: RelationshipGraph, register, user_id: int
    ) -> None:
        party = register("rita", role=Role.RESPONSIBLE_PARTY)
        engine.record_sample(user_id, 70, at(8))

        with pytest.raises(UnauthorizedError):
            engine.latest_aggregate(user_id, viewer_id=party)
        with pytest.raises(UnauthorizedError):
            engine.aggregate_for_day(user_id, DAY, viewer_id=party)
        with pytest.raises(UnauthorizedError):
            engine.recent_aggregates(user_id, 7, viewer_id=party)
        with pytest.raises(UnauthorizedError):
            engine.intraday_history(user_id, DAY, viewer_id=party)

        graph.connect(user_id, party)

        assert engine.latest_aggregate(user_id, viewer_id=party).sample_count == 1
        assert len(engine.intraday_history(user_id, DAY, viewer_id=party)) == 1

    def test_user_reads_own_data(self, engine: AggregationEngine, user_id: int) -> None:
        engine.record_sample(user_id, 70, at(8))

        assert engine.latest_aggregate(user_id, viewer_id=user_id).mean_value == 70.0


class TestConcurrency:
    def test_concurrent_samples_keep_one_row_per_day(self, tmp_path) -> None:
        """Parallel writers on the same user and day never lose an update."""
        store = Store(DatabaseConfig(url=f"sqlite:///{tmp_path / 'concurrency.db'}"))
        store.create_schema()
        try:
            engine = AggregationEngine(store, RelationshipGraph(store))
            user_id = _seed_account(store)
            values = [50 + (i % 100) for i in range(80)]

            with ThreadPoolExecutor(max_workers=8) as pool:
                list(pool.map(lambda v: engine.record_sample(user_id, v, at(12)), values))

            with store.session() as session:
                rows = session.scalars(select(DailyAggregateRow)).all()
                samples = session.scalar(select(func.count()).select_from(SampleRow))

            assert len(rows) == 1
            assert rows[0].sample_count == len(values)
            assert rows[0].min_value == min(values)
            assert rows[0].max_value == max(values)
            assert samples == len(values)
        finally:
            store.dispose()
