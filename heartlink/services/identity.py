"""
Identity store: registration, credential checks and account lookup.

Passwords go through bcrypt with a configurable work factor; bcrypt embeds a
fresh salt in every hash. Neither the plaintext nor the hash is ever logged or
returned.
"""

import bcrypt
import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from heartlink.config import SecurityConfig
from heartlink.domain.models import Account, Role
from heartlink.errors import ConflictError, InvalidInputError, NotFoundError, UnauthorizedError
from heartlink.storage import AccountRow, Store

logger = structlog.get_logger(__name__)

# bcrypt only reads the first 72 bytes; bcrypt>=5 raises beyond that
MAX_PASSWORD_BYTES = 72


def _require(**fields: object) -> None:
    missing = [
        name for name, value in fields.items() if not isinstance(value, str) or not value.strip()
    ]
    if missing:
        raise InvalidInputError(f"All fields are required. Missing: {', '.join(missing)}.")


def check_password_length(password: str) -> None:
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise InvalidInputError(f"Password cannot be longer than {MAX_PASSWORD_BYTES} bytes.")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def parse_role(role: object) -> Role:
    """Accept a ``Role`` or its integer value."""
    if isinstance(role, bool):
        raise InvalidInputError(f"Unknown role: {role!r}.")
    try:
        return Role(int(role))  # type: ignore[call-overload]
    except (TypeError, ValueError) as e:
        raise InvalidInputError(f"Unknown role: {role!r}.") from e


class IdentityStore:
    """Account records with email and username uniqueness."""

    def __init__(self, store: Store, config: SecurityConfig | None = None) -> None:
        self.store = store
        self.config = config or SecurityConfig()
        self.logger = logger.bind(component="identity_store")

    def _hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.config.bcrypt_rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def _already_registered(self, email: str, username: str) -> bool:
        with self.store.session() as session:
            existing = session.execute(
                select(AccountRow.id)
                .where(or_(AccountRow.email == email, AccountRow.username == username))
                .limit(1)
            ).first()
        return existing is not None

    def register(
        self,
        full_name: str,
        email: str,
        phone: str,
        password: str,
        username: str,
        role: Role | int,
    ) -> int:
        """
        Create an account and return its id.

        The existence query only produces a friendlier error; the unique
        constraints on ``email`` and ``username`` decide races between
        concurrent registrations.
        """
        _require(
            full_name=full_name, email=email, phone=phone, password=password, username=username
        )
        check_password_length(password)
        account_role = parse_role(role)
        email = normalize_email(email)
        username = username.strip()

        if self._already_registered(email, username):
            raise ConflictError("Email or username already registered.")

        row = AccountRow(
            full_name=full_name.strip(),
            email=email,
            phone=phone.strip(),
            username=username,
            password_hash=self._hash_password(password),
            role=int(account_role),
        )
        try:
            with self.store.session() as session:
                session.add(row)
                session.flush()
                account_id = row.id
        except IntegrityError as e:
            self.logger.info("registration_conflict", username=username)
            raise ConflictError("Email or username already registered.") from e

        self.logger.info("account_registered", account_id=account_id, role=account_role.name)
        return account_id

    def authenticate(self, email: str, password: str) -> Account:
        """Verify credentials and return the account projection."""
        _require(email=email, password=password)
        check_password_length(password)

        with self.store.session() as session:
            row = session.execute(
                select(AccountRow).where(AccountRow.email == normalize_email(email))
            ).scalar_one_or_none()
        if row is None:
            raise NotFoundError("Account not found.")

        if not bcrypt.checkpw(password.encode("utf-8"), row.password_hash.encode("utf-8")):
            self.logger.info("authentication_failed", account_id=row.id)
            raise UnauthorizedError("Invalid password.")

        self.logger.info("authentication_succeeded", account_id=row.id)
        return Account.model_validate(row)

    def find_by_email(self, email: str) -> Account:
        _require(email=email)
        with self.store.session() as session:
            row = session.execute(
                select(AccountRow).where(AccountRow.email == normalize_email(email))
            ).scalar_one_or_none()
        if row is None:
            raise NotFoundError("Account not found.")
        return Account.model_validate(row)

    def find_by_id(self, account_id: int) -> Account:
        with self.store.session() as session:
            row = session.get(AccountRow, account_id)
        if row is None:
            raise NotFoundError(f"Account {account_id} not found.")
        return Account.model_validate(row)
