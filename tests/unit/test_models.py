"""Tests for domain models."""

import math
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from modelrouter.domain.components.circuit_breaker import CircuitBreaker
from modelrouter.domain.models.model_descriptor import (
    LOCAL_FALLBACK_ID,
    ModelDescriptor,
    ProviderKind,
)
from modelrouter.domain.models.quota import QuotaHistory, QuotaSample, TimeWindow
from modelrouter.domain.models.router_response import RouterRequest
from tests.fixtures.fakes import make_model


class TestModelDescriptor:
    """Tests for ModelDescriptor."""

    def test_identity_is_stripped(self) -> None:
        model = make_model("  primary  ")

        assert model.id == "primary"
        assert model.provider_model == "primary"

    def test_blank_name_rejected(self) -> None:
        with pytest.raises(ValidationError):
            make_model(name="   ")

    def test_quota_limit_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            make_model(quota_limit=0)

    def test_warning_below_critical(self) -> None:
        with pytest.raises(ValidationError):
            make_model(warning_pct=95, critical_pct=90)

    def test_compute_quota_percentage(self) -> None:
        model = make_model(quota_limit=400, quota_used=100)

        assert model.compute_quota_percentage() == pytest.approx(25.0)
        assert model.has_quota_remaining is True

    def test_assignment_is_validated(self) -> None:
        model = make_model()

        with pytest.raises(ValidationError):
            model.quota_used = -5

    def test_local_fallback(self) -> None:
        local = ModelDescriptor.local_fallback()

        assert local.id == LOCAL_FALLBACK_ID
        assert local.provider_kind == ProviderKind.Local
        assert local.is_local_fallback is True
        assert math.isinf(local.quota_limit)
        assert local.compute_quota_percentage() == 0.0
        assert local.cost_per_token == 0.0
        assert local.time_window is None

    def test_each_descriptor_owns_history_and_lock(self) -> None:
        first = make_model("a", history_capacity=2)
        second = make_model("b")

        assert first.lock is not second.lock
        assert first.quota_history is not second.quota_history
        assert first.quota_history.capacity == 2

    def test_attach_circuit_breaker(self) -> None:
        model = make_model("a")
        breaker = CircuitBreaker("a")

        model.attach_circuit_breaker(breaker)

        assert model.circuit_breaker is breaker

    def test_attach_foreign_breaker_rejected(self) -> None:
        with pytest.raises(ValueError):
            make_model("a").attach_circuit_breaker(CircuitBreaker("b"))

    def test_breaker_created_lazily(self) -> None:
        model = make_model("a")

        assert model.circuit_breaker is model.circuit_breaker
        assert model.circuit_breaker.config == model.breaker_config


class TestQuotaHistory:
    """Tests for QuotaHistory ring buffer."""

    def test_evicts_oldest(self) -> None:
        history = QuotaHistory(capacity=3)
        for used in range(5):
            history.append(QuotaSample(used=used, limit=100))

        assert [s.used for s in history] == [2, 3, 4]
        assert history.latest().used == 4
        assert len(history) == 3

    def test_default_capacity(self) -> None:
        assert QuotaHistory().capacity == 288

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError):
            QuotaHistory(capacity=0)

    def test_clear(self) -> None:
        history = QuotaHistory()
        history.append(QuotaSample(used=1, limit=10))
        history.clear()

        assert history.latest() is None
        assert history.samples() == []


class TestTimeWindow:
    """Tests for TimeWindow.calculate_next_reset."""

    NOW = datetime(2026, 3, 14, 15, 9, 26, tzinfo=UTC)

    def test_hourly(self) -> None:
        assert TimeWindow.Hourly.calculate_next_reset(self.NOW) == datetime(
            2026, 3, 14, 16, tzinfo=UTC
        )

    def test_daily(self) -> None:
        assert TimeWindow.Daily.calculate_next_reset(self.NOW) == datetime(
            2026, 3, 15, tzinfo=UTC
        )

    def test_monthly(self) -> None:
        assert TimeWindow.Monthly.calculate_next_reset(self.NOW) == datetime(
            2026, 4, 1, tzinfo=UTC
        )

    def test_monthly_rolls_over_year(self) -> None:
        december = datetime(2026, 12, 31, 23, 59, tzinfo=UTC)

        assert TimeWindow.Monthly.calculate_next_reset(december) == datetime(
            2027, 1, 1, tzinfo=UTC
        )


class TestRouterRequest:
    """Tests for RouterRequest."""

    def test_request_id_generated(self) -> None:
        assert RouterRequest(prompt="a").request_id != RouterRequest(prompt="a").request_id

    @pytest.mark.parametrize(
        ("locale", "expected"),
        [("FR", "fr"), (" en ", "en"), ("de", None), (None, None)],
    )
    def test_locale_normalized(self, locale, expected) -> None:
        assert RouterRequest(prompt="a", locale=locale).locale == expected
