from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from clock import Clock, SystemClock
from models import TransactionType, cents_to_amount
from periods import shift_months
from store import TransactionStore

WINDOW_MONTHS = 6
HIGH_CONFIDENCE_ABOVE = 20


class Confidence(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


@dataclass(frozen=True)
class ForecastResult:
    next_period_prediction: int
    confidence: Confidence
    based_on_transaction_count: int

    def to_dict(self) -> dict[str, object]:
        return {
            "next_period_prediction": self.next_period_prediction,
            "confidence": self.confidence.value,
            "based_on_transaction_count": self.based_on_transaction_count,
        }


class ForecastEstimator:
    """Six-month moving average of the net balance."""

    def __init__(self, store: TransactionStore, clock: Optional[Clock] = None) -> None:
        self.store = store
        self.clock = clock or SystemClock()

    def forecast(self, subject_id: str) -> ForecastResult:
        since = self.clock.to_utc(shift_months(self.clock.now(), -WINDOW_MONTHS))
        transactions = self.store.find(subject_id, since)
        if not transactions:
            return ForecastResult(0, Confidence.low, 0)

        net_cents = 0
        for txn in transactions:
            if txn.type == TransactionType.income:
                net_cents += txn.amount_cents
            else:
                net_cents -= txn.amount_cents

        average = cents_to_amount(net_cents) / WINDOW_MONTHS
        prediction = int(average.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        count = len(transactions)
        confidence = (
            Confidence.high if count > HIGH_CONFIDENCE_ABOVE else Confidence.medium
        )
        return ForecastResult(prediction, confidence, count)
