"""
SQLAlchemy ORM tables.

Timestamps are stored as naive UTC datetimes.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow_naive() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class AccountRow(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(64), nullable=False)
    username = Column(String(128), nullable=False, unique=True)
    password_hash = Column(String(128), nullable=False)
    role = Column(Integer, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow_naive)


class RelationshipRow(Base):
    __tablename__ = "relationships"

    # autoincrement id doubles as edge insertion order
    id = Column(Integer, primary_key=True, autoincrement=True)
    monitored_user_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    responsible_party_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow_naive)

    __table_args__ = (
        UniqueConstraint(
            "monitored_user_id", "responsible_party_id", name="uq_relationship_user_party"
        ),
    )


class SampleRow(Base):
    __tablename__ = "heart_rate_samples"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    heart_rate = Column(Float, nullable=False)
    observed_at = Column(DateTime, nullable=False)  # UTC

    __table_args__ = (Index("ix_heart_rate_samples_user_time", "user_id", "observed_at"),)


class DailyAggregateRow(Base):
    __tablename__ = "daily_heart_rate"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    calendar_day = Column(Date, nullable=False)
    mean_value = Column(Float, nullable=False)
    min_value = Column(Float, nullable=False)
    max_value = Column(Float, nullable=False)
    sample_count = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, nullable=False, default=utcnow_naive)

    __table_args__ = (
        UniqueConstraint("user_id", "calendar_day", name="uq_daily_heart_rate_user_day"),
    )
