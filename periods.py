from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from errors import InputError

MIN_YEAR = 1900
MAX_YEAR = 3000

# Window ends are inclusive up to the last whole second of the day.
END_OF_DAY = time(23, 59, 59)


class Granularity(str, Enum):
    monthly = "monthly"
    yearly = "yearly"


def month_start(year: int, month: int) -> date:
    return date(year, month, 1)


def month_end(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1) - date.resolution
    return date(year, month + 1, 1) - date.resolution


def shift_months(moment: datetime, count: int) -> datetime:
    """Move ``moment`` by whole calendar months, clamping the day.

    Aug 31 shifted by -6 lands on Feb 28 (Feb 29 in leap years).
    """
    month_index = (moment.year * 12) + (moment.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    day = min(moment.day, month_end(year, month).day)
    return moment.replace(year=year, month=month, day=day)


@dataclass(frozen=True)
class PeriodKey:
    subject_id: str
    granularity: Granularity
    year: int
    month: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.subject_id:
            raise InputError("Subject id is required")
        try:
            granularity = Granularity(self.granularity)
        except ValueError as exc:
            raise InputError(f"Unknown granularity: {self.granularity!r}") from exc
        object.__setattr__(self, "granularity", granularity)
        if not isinstance(self.year, int) or not MIN_YEAR <= self.year <= MAX_YEAR:
            raise InputError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}")
        if granularity is Granularity.yearly:
            if self.month is not None:
                raise InputError("Yearly periods do not take a month")
            return
        if self.month is None:
            raise InputError("Monthly periods require a month")
        if not isinstance(self.month, int) or not 1 <= self.month <= 12:
            raise InputError("Month must be between 1 and 12")

    @classmethod
    def for_month(cls, subject_id: str, year: int, month: int) -> "PeriodKey":
        return cls(subject_id, Granularity.monthly, year, month)

    @classmethod
    def for_year(cls, subject_id: str, year: int) -> "PeriodKey":
        return cls(subject_id, Granularity.yearly, year)

    @classmethod
    def resolve(
        cls, subject_id: str, year: int, month: Optional[int] = None
    ) -> "PeriodKey":
        if month is None:
            return cls.for_year(subject_id, year)
        return cls.for_month(subject_id, year, month)

    @property
    def is_monthly(self) -> bool:
        return self.granularity is Granularity.monthly

    @property
    def first_day(self) -> date:
        if self.is_monthly:
            return month_start(self.year, self.month)  # type: ignore[arg-type]
        return date(self.year, 1, 1)

    @property
    def last_day(self) -> date:
        if self.is_monthly:
            return month_end(self.year, self.month)  # type: ignore[arg-type]
        return date(self.year, 12, 31)

    @property
    def start(self) -> datetime:
        return datetime.combine(self.first_day, time.min)

    @property
    def end(self) -> datetime:
        return datetime.combine(self.last_day, END_OF_DAY)

    @property
    def slug(self) -> str:
        if self.is_monthly:
            return f"{self.year:04d}-{self.month:02d}"
        return f"{self.year:04d}"

    @property
    def has_previous(self) -> bool:
        return self.year > MIN_YEAR or (self.is_monthly and self.month != 1)

    def previous(self) -> "PeriodKey":
        if not self.is_monthly:
            return PeriodKey.for_year(self.subject_id, self.year - 1)
        if self.month == 1:
            return PeriodKey.for_month(self.subject_id, self.year - 1, 12)
        return PeriodKey.for_month(self.subject_id, self.year, self.month - 1)  # type: ignore[operator]

    def months(self) -> list["PeriodKey"]:
        if self.is_monthly:
            return [self]
        return [
            PeriodKey.for_month(self.subject_id, self.year, month)
            for month in range(1, 13)
        ]
