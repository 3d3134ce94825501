from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from models import TransactionStatus, TransactionType


def amount_to_cents(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class ExternalTransactionIn(BaseModel):
    """One transaction as served by the external source of record."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    original_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        validation_alias=AliasChoices("_id", "id", "original_id"),
    )
    description: str = Field(default="", max_length=500)
    amount: Decimal = Field(..., ge=0)
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    occurred_at: datetime = Field(
        ..., validation_alias=AliasChoices("date", "occurred_at")
    )
    status: TransactionStatus = TransactionStatus.completed
    updated_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("updatedAt", "updated_at")
    )
    created_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("createdAt", "created_at")
    )

    @field_validator("original_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("occurred_at", "updated_at", "created_at")
    @classmethod
    def _normalize_timestamps(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        return _naive_utc(value)

    @model_validator(mode="after")
    def _require_modification_stamp(self) -> "ExternalTransactionIn":
        if self.updated_at is None and self.created_at is None:
            raise ValueError("Transaction carries neither updatedAt nor createdAt")
        return self

    @property
    def last_modified_at(self) -> datetime:
        return self.updated_at or self.created_at  # type: ignore[return-value]

    @property
    def amount_cents(self) -> int:
        return amount_to_cents(self.amount)


class ExternalProfileIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = Field(default=None, max_length=120)
    email: Optional[str] = Field(default=None, max_length=254)
    currency: str = Field(default="EUR", min_length=3, max_length=3)
    monthly_income: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        validation_alias=AliasChoices("monthlyIncome", "monthly_income"),
    )

    @field_validator("currency", mode="before")
    @classmethod
    def _default_currency(cls, value: object) -> object:
        if value in (None, ""):
            return "EUR"
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("monthly_income", mode="before")
    @classmethod
    def _default_income(cls, value: object) -> object:
        return 0 if value is None else value


DEFAULT_PROFILE = ExternalProfileIn(
    name="User",
    email="user@example.com",
    currency="EUR",
    monthly_income=Decimal("0"),
)
