# envelopes/services/periods.py
#
# Budget periods
# A period is one calendar month. Envelopes are keyed by (month, year) and
# transactions belong to the period their date falls in.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True, order=True)
class Period:
    year: int
    month: int

    def __post_init__(self):
        if not (1 <= self.month <= 12):
            raise ValueError(f"month must be 1..12, got {self.month}")

    @classmethod
    def of(cls, d: date) -> "Period":
        return cls(d.year, d.month)

    @classmethod
    def current(cls) -> "Period":
        return cls.of(date.today())

    @classmethod
    def parse(cls, month_str: str | None) -> "Period":
        """
        month_str: 'YYYY-MM' or None (current month).
        Raises ValueError on malformed input.
        """
        if not month_str:
            return cls.current()
        year_str, month_only_str = month_str.strip().split("-")
        return cls(int(year_str), int(month_only_str))

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end_exclusive(self) -> date:
        if self.month == 12:
            return date(self.year + 1, 1, 1)
        return date(self.year, self.month + 1, 1)

    def next(self) -> "Period":
        if self.month == 12:
            return Period(self.year + 1, 1)
        return Period(self.year, self.month + 1)

    def previous(self) -> "Period":
        if self.month == 1:
            return Period(self.year - 1, 12)
        return Period(self.year, self.month - 1)

    def contains(self, d: date) -> bool:
        return self.start <= d < self.end_exclusive

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"
