"""Capability-typed listener protocols for quota events.

A listener implements only the callbacks it cares about; the quota tracker
delivers each event kind to listeners implementing the matching protocol.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from modelrouter.domain.models.quota import QuotaEvent


@runtime_checkable
class QuotaWarningListener(Protocol):
    """Receives warning-threshold crossings."""

    async def on_quota_warning(self, event: QuotaEvent) -> None: ...


@runtime_checkable
class QuotaCriticalListener(Protocol):
    """Receives critical-threshold crossings (model taken out of rotation)."""

    async def on_quota_critical(self, event: QuotaEvent) -> None: ...


@runtime_checkable
class QuotaResetListener(Protocol):
    """Receives quota window resets (model back in rotation)."""

    async def on_quota_reset(self, event: QuotaEvent) -> None: ...


QuotaListener = QuotaWarningListener | QuotaCriticalListener | QuotaResetListener
