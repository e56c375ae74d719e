"""
Date range model shared by every analytics request.

A range is a pair of inclusive calendar dates (``YYYY-MM-DD``) interpreted
in UTC. Construction validates both ends and their order, so an invalid
range is rejected before any data is fetched.
"""

import re
from datetime import date, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DAY_MS = 86_400_000
EPOCH = date(1970, 1, 1)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def date_to_ms(value: date) -> int:
    """Milliseconds since the epoch at 00:00:00.000 UTC of ``value``."""
    return (value - EPOCH).days * DAY_MS


def ms_to_date(ms: int) -> date:
    """UTC calendar date containing the instant ``ms``."""
    return EPOCH + timedelta(days=int(ms // DAY_MS))


def parse_iso_date(value: object) -> Optional[date]:
    """Parse a strict ``YYYY-MM-DD`` string, returning None when unparsable."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not _ISO_DATE.match(text):
        return None
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


class DateRange(BaseModel):
    """
    Inclusive UTC calendar-date range.

    Attributes:
        start_date: First day of the range (YYYY-MM-DD)
        end_date: Last day of the range, inclusive (YYYY-MM-DD)
    """

    model_config = ConfigDict(frozen=True)

    start_date: str = Field(description="First calendar day, inclusive (YYYY-MM-DD)")
    end_date: str = Field(description="Last calendar day, inclusive (YYYY-MM-DD)")

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def validate_iso_date(cls, v) -> str:
        """Accept date objects or strict YYYY-MM-DD strings."""
        if isinstance(v, date):
            return v.isoformat()
        parsed = parse_iso_date(v)
        if parsed is None:
            raise ValueError(f"Invalid date string: {v!r}")
        return parsed.isoformat()

    @model_validator(mode="after")
    def validate_order(self) -> "DateRange":
        """Reject ranges whose start falls after their end."""
        if self.start_date > self.end_date:
            raise ValueError(
                f"start_date {self.start_date} is after end_date {self.end_date}"
            )
        return self

    @property
    def start(self) -> date:
        return date.fromisoformat(self.start_date)

    @property
    def end(self) -> date:
        return date.fromisoformat(self.end_date)

    @property
    def start_ms(self) -> int:
        """00:00:00.000 UTC of the first day."""
        return date_to_ms(self.start)

    @property
    def end_ms(self) -> int:
        """23:59:59.999 UTC of the last day."""
        return self.end_exclusive_ms - 1

    @property
    def end_exclusive_ms(self) -> int:
        """00:00:00.000 UTC of the day after the last day."""
        return date_to_ms(self.end) + DAY_MS

    @property
    def day_count(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: str) -> bool:
        """Whether the ISO date string ``day`` falls inside the range."""
        return self.start_date <= day <= self.end_date

    def __str__(self) -> str:
        return f"{self.start_date}..{self.end_date}"
