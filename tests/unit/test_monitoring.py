import httpx
import pytest

from src.core.error_types import ErrorType, classify_error
from src.core.exceptions import (
    ApiKeysExhaustedError,
    CircuitOpenError,
    NoProviderAvailableError,
    ProviderError,
    RetryableProviderError,
)
from src.core.monitoring import MAX_SAMPLES, MonitoringService


@pytest.mark.unit
class TestClassifyError:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (httpx.ReadTimeout("slow"), ErrorType.TIMEOUT),
            (TimeoutError(), ErrorType.TIMEOUT),
            (httpx.ConnectError("refused"), ErrorType.NETWORK_ERROR),
            (CircuitOpenError("openai"), ErrorType.CIRCUIT_OPEN),
            (ApiKeysExhaustedError("openai"), ErrorType.KEYS_EXHAUSTED),
            (RetryableProviderError("openai", "no image", 520), ErrorType.EMPTY_IMAGE),
            (ProviderError("openai", "denied", status_code=403), ErrorType.AUTH_ERROR),
            (ProviderError("openai", "slow down", status_code=429), ErrorType.RATE_LIMIT),
            (ProviderError("openai", "boom", status_code=500), ErrorType.UPSTREAM_HTTP_ERROR),
            (ValueError("odd"), ErrorType.UNEXPECTED_ERROR),
        ],
    )
    def test_classification(self, error, expected):
        assert classify_error(error) is expected


@pytest.mark.unit
class TestExceptions:
    def test_no_provider_message_carries_last_error(self):
        error = NoProviderAvailableError("text_generation", last_error=ValueError("boom"))
        assert "text_generation" in str(error)
        assert "boom" in str(error)
        assert isinstance(error.last_error, ValueError)

    def test_provider_error_fields(self):
        error = ProviderError("google", "bad", status_code=400)
        assert error.provider_id == "google"
        assert error.status_code == 400
        assert error.retryable is False
        assert RetryableProviderError("google", "again").retryable is True


@pytest.mark.unit
class TestMonitoringService:
    def test_records_success_and_failure(self):
        monitoring = MonitoringService()
        monitoring.record_performance("openai", 100, True)
        monitoring.record_performance("openai", 300, False, ErrorType.TIMEOUT)

        metrics = monitoring.get_metrics("openai")
        assert metrics.total_requests == 2
        assert metrics.average_response_time_ms == 200
        assert metrics.success_rate == 0.5
        assert metrics.to_dict()["error_counts"] == {"timeout": 1}

    def test_keeps_bounded_samples(self):
        monitoring = MonitoringService()
        for i in range(MAX_SAMPLES + 10):
            monitoring.record_performance("openai", i, True)
        metrics = monitoring.get_metrics("openai")
        assert len(metrics.response_times_ms) == MAX_SAMPLES
        assert metrics.total_requests == MAX_SAMPLES + 10

    def test_summary_and_reset(self):
        monitoring = MonitoringService()
        monitoring.record_performance("google", 10, True)
        assert set(monitoring.summary()) == {"google"}
        monitoring.reset()
        assert monitoring.get_all_metrics() == {}
