"""Shared fixtures: an in-memory store and the components wired against it."""

from collections.abc import Callable, Iterator
from datetime import UTC, datetime

import pytest

from heartlink.config import AggregationConfig, AppConfig, DatabaseConfig, SecurityConfig
from heartlink.domain.models import Role
from heartlink.services.aggregation import AggregationEngine
from heartlink.services.facade import HeartlinkService
from heartlink.services.identity import IdentityStore
from heartlink.services.relationships import RelationshipGraph
from heartlink.storage import Store

FIXED_NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)

RegisterFn = Callable[..., int]


@pytest.fixture
def store() -> Iterator[Store]:
    store = Store(DatabaseConfig(url="sqlite://"))
    store.create_schema()
    yield store
    store.dispose()


@pytest.fixture
def identity(store: Store) -> IdentityStore:
    return IdentityStore(store, SecurityConfig(bcrypt_rounds=4))


@pytest.fixture
def graph(store: Store) -> RelationshipGraph:
    return RelationshipGraph(store)


@pytest.fixture
def engine(store: Store, graph: RelationshipGraph) -> AggregationEngine:
    return AggregationEngine(store, graph, AggregationConfig(), clock=lambda: FIXED_NOW)


@pytest.fixture
def service(
    store: Store, identity: IdentityStore, graph: RelationshipGraph, engine: AggregationEngine
) -> HeartlinkService:
    return HeartlinkService(store=store, identity=identity, graph=graph, engine=engine)


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        environment="development",
        database=DatabaseConfig(url="sqlite://"),
        security=SecurityConfig(bcrypt_rounds=4),
    )


@pytest.fixture
def register(identity: IdentityStore) -> RegisterFn:
    """Register an account with sensible defaults derived from ``username``."""

    def _register(
        username: str, role: Role = Role.MONITORED_USER, password: str = "s3cret!"
    ) -> int:
        return identity.register(
            full_name=f"{username.title()} Tester",
            email=f"{username}@example.com",
            phone="+55 11 90000-0000",
            password=password,
            username=username,
            role=role,
        )

    return _register
