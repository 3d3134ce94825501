from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def cents_to_amount(cents: int) -> Decimal:
    return Decimal(cents) / 100


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TransactionStatus(str, Enum):
    completed = "completed"
    pending = "pending"
    failed = "failed"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class TransactionCopy(Base, TimestampMixin):
    """Local copy of a transaction owned by the external source of record."""

    __tablename__ = "transaction_copies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    original_id: Mapped[str] = mapped_column(String(64), nullable=False)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus), nullable=False, default=TransactionStatus.completed
    )
    last_modified_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    synced_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "original_id", "subject_id", name="uq_transaction_copy_original_subject"
        ),
        Index("ix_transaction_copies_subject_occurred", "subject_id", "occurred_at"),
        Index(
            "ix_transaction_copies_subject_type_occurred",
            "subject_id",
            "type",
            "occurred_at",
        ),
        Index("ix_transaction_copies_subject_synced", "subject_id", "synced_at"),
        CheckConstraint("amount_cents >= 0", name="ck_transaction_copies_amount"),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)


class UserProfile(Base, TimestampMixin):
    __tablename__ = "user_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(120))
    email: Mapped[Optional[str]] = mapped_column(String(254))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    monthly_income_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    @property
    def monthly_income(self) -> Decimal:
        return cents_to_amount(self.monthly_income_cents)


class AnalyticsSnapshot(Base):
    """Persisted cache entry, shared by every worker on the same database."""

    __tablename__ = "analytics_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cache_key: Mapped[str] = mapped_column(String(160), nullable=False, unique=True)
    subject_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    granularity: Mapped[str] = mapped_column(String(16), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[Optional[int]] = mapped_column(Integer)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
