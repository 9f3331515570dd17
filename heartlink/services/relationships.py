"""
Relationship graph between monitored users and responsible parties.

Edges are directed (monitored user -> responsible party) and unique per pair.
The graph is also the authority on who may read a user's heart-rate data.
"""

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from heartlink.domain.models import Account, Role
from heartlink.errors import ConflictError, InvalidRoleError, NotFoundError, UnauthorizedError
from heartlink.storage import AccountRow, RelationshipRow, Store

logger = structlog.get_logger(__name__)


def _role_name(value: int) -> str:
    try:
        return Role(value).name
    except ValueError:
        return str(value)


class RelationshipGraph:
    """Guardianship edges with role validation on creation."""

    def __init__(self, store: Store) -> None:
        self.store = store
        self.logger = logger.bind(component="relationship_graph")

    def _load_endpoint(
        self, session: Session, account_id: int, endpoint: str, expected: Role
    ) -> AccountRow:
        row = session.get(AccountRow, account_id)
        if row is None:
            label = "User" if endpoint == "user" else "Responsible party"
            raise NotFoundError(f"{label} {account_id} not found.")
        if row.role != expected:
            raise InvalidRoleError(
                f"Account {account_id} is not a {expected.name.lower().replace('_', ' ')}.",
                endpoint=endpoint,
                expected=expected.name,
                actual=_role_name(row.role),
            )
        return row

    def connect(self, user_id: int, party_id: int) -> None:
        """Link a monitored user to a responsible party. Rejects an existing pair."""
        try:
            with self.store.session() as session:
                self._load_endpoint(session, user_id, "user", Role.MONITORED_USER)
                self._load_endpoint(session, party_id, "responsible_party", Role.RESPONSIBLE_PARTY)

                if self._edge_exists(session, user_id, party_id):
                    raise ConflictError("Relationship already exists.")

                session.add(
                    RelationshipRow(monitored_user_id=user_id, responsible_party_id=party_id)
                )
        except IntegrityError as e:
            # lost a race with a concurrent connect on the same pair
            raise ConflictError("Relationship already exists.") from e

        self.logger.info("relationship_connected", user_id=user_id, party_id=party_id)

    def disconnect(self, user_id: int, party_id: int) -> bool:
        """Remove the edge if present. Returns whether anything was removed."""
        with self.store.session() as session:
            result = session.execute(
                delete(RelationshipRow).where(
                    RelationshipRow.monitored_user_id == user_id,
                    RelationshipRow.responsible_party_id == party_id,
                )
            )
            removed = result.rowcount > 0

        self.logger.info(
            "relationship_disconnected", user_id=user_id, party_id=party_id, removed=removed
        )
        return removed

    def responsible_parties_of(self, user_id: int) -> list[Account]:
        with self.store.session() as session:
            rows = session.scalars(
                select(AccountRow)
                .join(RelationshipRow, RelationshipRow.responsible_party_id == AccountRow.id)
                .where(RelationshipRow.monitored_user_id == user_id)
                .order_by(RelationshipRow.id)
            ).all()
        return [Account.model_validate(row) for row in rows]

    def users_of(self, party_id: int) -> list[Account]:
        with self.store.session() as session:
            rows = session.scalars(
                select(AccountRow)
                .join(RelationshipRow, RelationshipRow.monitored_user_id == AccountRow.id)
                .where(RelationshipRow.responsible_party_id == party_id)
                .order_by(RelationshipRow.id)
            ).all()
        return [Account.model_validate(row) for row in rows]

    def is_connected(self, user_id: int, party_id: int) -> bool:
        with self.store.session() as session:
            return self._edge_exists(session, user_id, party_id)

    def authorize_read(self, viewer_id: int | None, user_id: int) -> None:
        """
        Gate reads of a user's data.

        ``None`` means an internal caller and a user may always read their own
        data. Anyone else must be one of the user's responsible parties.
        """
        if viewer_id is None or viewer_id == user_id:
            return
        if not self.is_connected(user_id, viewer_id):
            self.logger.warning("read_refused", user_id=user_id, viewer_id=viewer_id)
            raise UnauthorizedError("Not authorized to read this user's data.")

    @staticmethod
    def _edge_exists(session: Session, user_id: int, party_id: int) -> bool:
        return (
            session.execute(
                select(RelationshipRow.id).where(
                    RelationshipRow.monitored_user_id == user_id,
                    RelationshipRow.responsible_party_id == party_id,
                )
            ).first()
            is not None
        )
