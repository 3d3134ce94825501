from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from errors import DataUnavailable
from models import TransactionCopy, TransactionStatus, UserProfile
from schemas import ExternalProfileIn, ExternalTransactionIn, amount_to_cents


class WriteAction(str, Enum):
    created = "created"
    updated = "updated"


class TransactionStore:
    """Read/write surface over the local copies of one subject's transactions."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def find(
        self,
        subject_id: str,
        start: datetime,
        end: Optional[datetime] = None,
        status: Optional[TransactionStatus] = TransactionStatus.completed,
    ) -> list[TransactionCopy]:
        stmt = select(TransactionCopy).where(
            TransactionCopy.subject_id == subject_id,
            TransactionCopy.occurred_at >= start,
        )
        if end is not None:
            stmt = stmt.where(TransactionCopy.occurred_at <= end)
        if status is not None:
            stmt = stmt.where(TransactionCopy.status == status)
        stmt = stmt.order_by(TransactionCopy.occurred_at.desc(), TransactionCopy.id)
        try:
            return list(self.session.scalars(stmt))
        except SQLAlchemyError as exc:
            raise DataUnavailable(
                f"Transaction store query failed for subject {subject_id}"
            ) from exc

    def get(self, subject_id: str, original_id: str) -> Optional[TransactionCopy]:
        try:
            return self.session.scalar(
                select(TransactionCopy).where(
                    TransactionCopy.subject_id == subject_id,
                    TransactionCopy.original_id == original_id,
                )
            )
        except SQLAlchemyError as exc:
            raise DataUnavailable(
                f"Transaction store lookup failed for {original_id}"
            ) from exc

    def upsert(
        self,
        subject_id: str,
        record: ExternalTransactionIn,
        synced_at: datetime,
        existing: Optional[TransactionCopy] = None,
    ) -> WriteAction:
        copy = existing or self.get(subject_id, record.original_id)
        action = WriteAction.updated
        if copy is None:
            copy = TransactionCopy(original_id=record.original_id, subject_id=subject_id)
            self.session.add(copy)
            action = WriteAction.created

        copy.description = record.description
        copy.amount_cents = amount_to_cents(record.amount)
        copy.type = record.type
        copy.category = record.category
        copy.occurred_at = record.occurred_at
        copy.status = record.status
        copy.last_modified_at = record.last_modified_at
        copy.synced_at = synced_at
        self.session.flush()
        return action

    def count_by_subject(self, subject_id: str) -> int:
        try:
            return int(
                self.session.scalar(
                    select(func.count(TransactionCopy.id)).where(
                        TransactionCopy.subject_id == subject_id
                    )
                )
                or 0
            )
        except SQLAlchemyError as exc:
            raise DataUnavailable("Transaction store count failed") from exc

    def most_recent_synced_at(self, subject_id: str) -> Optional[datetime]:
        try:
            return self.session.scalar(
                select(func.max(TransactionCopy.synced_at)).where(
                    TransactionCopy.subject_id == subject_id
                )
            )
        except SQLAlchemyError as exc:
            raise DataUnavailable("Transaction store query failed") from exc

    def delete_subject(self, subject_id: str) -> int:
        result = self.session.execute(
            delete(TransactionCopy).where(TransactionCopy.subject_id == subject_id)
        )
        return int(result.rowcount or 0)

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()


class ProfileStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get(self, subject_id: str) -> Optional[UserProfile]:
        try:
            return self.session.scalar(
                select(UserProfile).where(UserProfile.subject_id == subject_id)
            )
        except SQLAlchemyError as exc:
            raise DataUnavailable("Profile lookup failed") from exc

    def upsert(
        self,
        subject_id: str,
        profile: ExternalProfileIn,
        synced_at: datetime,
        *,
        is_default: bool = False,
    ) -> UserProfile:
        row = self.get(subject_id)
        if row is None:
            row = UserProfile(subject_id=subject_id)
            self.session.add(row)
        row.name = profile.name
        row.email = profile.email
        row.currency = profile.currency
        row.monthly_income_cents = amount_to_cents(profile.monthly_income)
        row.is_default = is_default
        row.last_synced_at = synced_at
        self.session.flush()
        return row

    def delete(self, subject_id: str) -> int:
        result = self.session.execute(
            delete(UserProfile).where(UserProfile.subject_id == subject_id)
        )
        return int(result.rowcount or 0)
