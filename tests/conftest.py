import os

os.environ.setdefault("ANALYTICS_DATABASE_URL", "sqlite://")
os.environ.setdefault("ANALYTICS_TIMEZONE", "UTC")

from datetime import datetime, timedelta, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from itertools import count  # noqa: E402
from typing import Optional  # noqa: E402
from zoneinfo import ZoneInfo  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from cache import AnalyticsCache  # noqa: E402
from clock import local_to_utc  # noqa: E402
from database import Base  # noqa: E402
from models import TransactionCopy, TransactionStatus, TransactionType  # noqa: E402
from schemas import amount_to_cents  # noqa: E402


class ManualClock:
    """Clock driven by tests; ``current`` is UTC, ``now()`` is wall time in ``tz_name``."""

    def __init__(self, start: datetime, tz_name: str = "UTC") -> None:
        self.current = start
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return (
            self.current.replace(tzinfo=timezone.utc)
            .astimezone(self.tz)
            .replace(tzinfo=None)
        )

    def utcnow(self) -> datetime:
        return self.current

    def to_utc(self, local: datetime) -> datetime:
        return local_to_utc(local, self.tz)

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


def make_session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def make_session():
    return make_session_factory()()


@pytest.fixture
def session():
    db = make_session()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(2025, 6, 15, 12, 0))


@pytest.fixture
def cache(clock) -> AnalyticsCache:
    return AnalyticsCache(clock=clock)


@pytest.fixture
def add_txn(session):
    ids = count(1)

    def _add(
        amount,
        type: TransactionType,
        category: str,
        occurred_at: datetime,
        *,
        subject_id: str = "user-1",
        status: TransactionStatus = TransactionStatus.completed,
        original_id: Optional[str] = None,
        last_modified_at: Optional[datetime] = None,
    ) -> TransactionCopy:
        txn = TransactionCopy(
            original_id=original_id or f"src-{next(ids)}",
            subject_id=subject_id,
            description=category,
            amount_cents=amount_to_cents(Decimal(str(amount))),
            type=type,
            category=category,
            occurred_at=occurred_at,
            status=status,
            last_modified_at=last_modified_at or occurred_at,
            synced_at=occurred_at,
        )
        session.add(txn)
        session.commit()
        return txn

    return _add
