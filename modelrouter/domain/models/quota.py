"""Quota data models: reset windows, usage samples and threshold events."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TimeWindow(str, Enum):
    """Enumeration of quota reset time windows.

    Defines the frequency at which a model's quota resets.
    """

    Hourly = "hourly"
    """Quota resets at the top of every hour."""

    Daily = "daily"
    """Quota resets every day at midnight UTC."""

    Monthly = "monthly"
    """Quota resets on the first day of each month."""

    def calculate_next_reset(self, current_time: datetime) -> datetime:
        """Calculate the next reset time based on the time window.

        Args:
            current_time: The current datetime to calculate from.

        Returns:
            The datetime when the quota will next reset.
        """
        if self == TimeWindow.Hourly:
            return current_time.replace(minute=0, second=0, microsecond=0) + timedelta(
                hours=1
            )
        if self == TimeWindow.Daily:
            return current_time.replace(
                hour=0, minute=0, second=0, microsecond=0
            ) + timedelta(days=1)

        start_of_month = current_time.replace(
            day=1, hour=0, minute=0, second=0, microsecond=0
        )
        if current_time.month == 12:
            return start_of_month.replace(year=current_time.year + 1, month=1)
        return start_of_month.replace(month=current_time.month + 1)


class QuotaSample(BaseModel):
    """A single point-in-time quota usage reading."""

    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    used: int = Field(..., ge=0)
    limit: float = Field(..., gt=0)

    model_config = ConfigDict(frozen=True)


class QuotaHistory:
    """Bounded ring buffer of quota samples.

    The oldest sample is evicted once capacity is reached. The default
    capacity of 288 holds 24 hours of 5-minute samples.
    """

    DEFAULT_CAPACITY = 288

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("QuotaHistory capacity must be at least 1")
        self._samples: deque[QuotaSample] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen or 0

    def append(self, sample: QuotaSample) -> None:
        self._samples.append(sample)

    def samples(self) -> list[QuotaSample]:
        """Return samples oldest first."""
        return list(self._samples)

    def latest(self) -> QuotaSample | None:
        return self._samples[-1] if self._samples else None

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[QuotaSample]:
        return iter(list(self._samples))


class QuotaEventType(str, Enum):
    """Kinds of quota notifications."""

    Warning = "warning"
    """Usage crossed the warning threshold."""

    Critical = "critical"
    """Usage crossed the critical threshold; model taken out of rotation."""

    Reset = "reset"
    """Quota window reset; model back in rotation."""


class QuotaEvent(BaseModel):
    """Notification emitted by the quota tracker."""

    event_type: QuotaEventType
    model_id: str = Field(..., min_length=1)
    model_name: str
    quota_used: int = Field(..., ge=0)
    quota_limit: float
    quota_percentage: float
    threshold_pct: float | None = Field(
        default=None,
        description="Threshold that was crossed (None for reset events)",
    )
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = ConfigDict(frozen=True)
