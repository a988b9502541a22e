"""
Tests for the delivery engine and its retry state machine.
"""
import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from campaign_webhooks.webhook_monitor.delivery_engine import (
    DeliveryEngine,
    RetryPhase,
    RetryState,
)
from campaign_webhooks.webhook_monitor.types import DeliveryTarget, MonitorSettings

POST = "campaign_webhooks.webhook_monitor.delivery_engine.requests.post"


def response(status_code, text="ok"):
    return MagicMock(status_code=status_code, text=text)


@pytest.fixture
def engine():
    return DeliveryEngine(MonitorSettings(retry_base_delay_seconds=0, retry_max_delay_seconds=0))


@pytest.fixture
def target():
    return DeliveryTarget(
        url="https://hooks.example.com/campaigns",
        headers={"Authorization": "Bearer secret"},
        retry_count=3,
        timeout_seconds=5,
    )


class TestRetryState:
    """Tests for RetryState transitions."""

    def test_backoff_doubles_and_caps(self):
        state = RetryState(max_attempts=5, base_delay_seconds=2, max_delay_seconds=5)
        delays = []
        for _ in range(3):
            state.start_attempt()
            state.record_failure()
            delays.append(state.next_delay)

        assert delays == [2, 4, 5]
        assert state.phase == RetryPhase.WAITING

    def test_budget_exhausted_is_failed(self):
        state = RetryState(max_attempts=2)
        for _ in range(2):
            state.start_attempt()
            state.record_failure()

        assert state.phase == RetryPhase.FAILED
        assert state.attempt_count == 2

    def test_success_is_terminal(self):
        state = RetryState(max_attempts=3)
        state.start_attempt()
        state.record_success()

        assert state.is_terminal
        with pytest.raises(RuntimeError):
            state.start_attempt()

    def test_outcome_without_attempt_is_rejected(self):
        state = RetryState(max_attempts=3)

        with pytest.raises(RuntimeError):
            state.record_failure()

    def test_resumed_state_keeps_count(self):
        state = RetryState(max_attempts=3, attempt_count=2)

        assert state.phase == RetryPhase.PENDING
        assert state.start_attempt() == 3

    def test_resumed_state_with_spent_budget_is_failed(self):
        state = RetryState(max_attempts=3, attempt_count=3)

        assert state.phase == RetryPhase.FAILED
        with pytest.raises(RuntimeError):
            state.start_attempt()

    def test_abandon_keeps_terminal_phase(self):
        state = RetryState(max_attempts=1)
        state.start_attempt()
        state.record_success()
        state.abandon()

        assert state.phase == RetryPhase.SUCCEEDED


class TestDeliveryEngine:
    """Tests for DeliveryEngine.deliver."""

    def test_success_on_first_attempt(self, engine, target):
        with patch(POST, return_value=response(200, '{"received": true}')) as mock_post:
            outcome = engine.deliver(target, {"a": 1}, "reply_rate_drop", "delivery-1")

        assert outcome.success is True
        assert outcome.attempt_count == 1
        assert outcome.status_code == 200
        assert outcome.response_body == '{"received": true}'
        assert outcome.error is None
        mock_post.assert_called_once()

    def test_request_shape(self, engine, target):
        with patch(POST, return_value=response(204, "")) as mock_post:
            engine.deliver(target, {"a": 1}, "bounce_rate_high", "delivery-2")

        args, kwargs = mock_post.call_args
        assert args[0] == "https://hooks.example.com/campaigns"
        assert kwargs["json"] == {"a": 1}
        assert kwargs["timeout"] == 5
        headers = kwargs["headers"]
        assert headers["Content-Type"] == "application/json"
        assert headers["User-Agent"] == "CampaignWebhooks/1.0"
        assert headers["X-Webhook-Event"] == "bounce_rate_high"
        assert headers["X-Webhook-Delivery"] == "delivery-2"
        assert headers["Authorization"] == "Bearer secret"

    def test_custom_headers_override_defaults(self, engine, target):
        target.headers = {"User-Agent": "Custom/2.0"}

        headers = engine.build_headers(target, "reply_rate_drop", "delivery-3")

        assert headers["User-Agent"] == "Custom/2.0"

    def test_always_failing_uses_whole_budget(self, engine, target):
        with patch(POST, return_value=response(500, "boom")) as mock_post:
            outcome = engine.deliver(target, {}, "reply_rate_drop", "delivery-4")

        assert outcome.success is False
        assert outcome.attempt_count == 3
        assert outcome.status_code == 500
        assert outcome.response_body == "boom"
        assert "500" in outcome.error
        assert mock_post.call_count == 3

    def test_success_after_retry(self, engine, target):
        with patch(POST, side_effect=[response(503), response(200)]):
            outcome = engine.deliver(target, {}, "reply_rate_drop", "delivery-5")

        assert outcome.success is True
        assert outcome.attempt_count == 2
        assert outcome.error is None

    def test_timeout_is_a_failed_attempt(self, engine, target):
        target.retry_count = 1
        with patch(POST, side_effect=requests.exceptions.Timeout("slow")):
            outcome = engine.deliver(target, {}, "reply_rate_drop", "delivery-6")

        assert outcome.success is False
        assert outcome.attempt_count == 1
        assert outcome.status_code is None
        assert "timed out" in outcome.error

    def test_connection_error_is_a_failed_attempt(self, engine, target):
        target.retry_count = 2
        with patch(POST, side_effect=requests.exceptions.ConnectionError("refused")):
            outcome = engine.deliver(target, {}, "reply_rate_drop", "delivery-7")

        assert outcome.success is False
        assert outcome.attempt_count == 2
        assert "refused" in outcome.error

    def test_on_attempt_called_per_attempt(self, engine, target):
        on_attempt = MagicMock()
        with patch(POST, return_value=response(500)):
            engine.deliver(target, {}, "reply_rate_drop", "delivery-8", on_attempt=on_attempt)

        assert [c.args[0] for c in on_attempt.call_args_list] == [1, 2, 3]

    def test_response_body_is_truncated(self, target):
        engine = DeliveryEngine(MonitorSettings(response_body_limit=10))

        with patch(POST, return_value=response(200, "x" * 50)):
            outcome = engine.deliver(target, {}, "reply_rate_drop", "delivery-9")

        assert outcome.response_body == "x" * 10 + "..."

    def test_shutdown_abandons_remaining_retries(self, target):
        stop_event = threading.Event()
        stop_event.set()
        engine = DeliveryEngine(
            MonitorSettings(retry_base_delay_seconds=30), stop_event=stop_event
        )

        with patch(POST, return_value=response(500)) as mock_post:
            outcome = engine.deliver(target, {}, "reply_rate_drop", "delivery-10")

        assert outcome.success is False
        assert outcome.attempt_count == 1
        assert "abandoned" in outcome.error
        mock_post.assert_called_once()

    def test_previous_attempts_count_against_budget(self, engine, target):
        on_attempt = MagicMock()
        with patch(POST, return_value=response(500)) as mock_post:
            outcome = engine.deliver(
                target, {}, "reply_rate_drop", "delivery-12",
                on_attempt=on_attempt, previous_attempts=2,
            )

        assert outcome.attempt_count == 3
        assert [c.args[0] for c in on_attempt.call_args_list] == [3]
        mock_post.assert_called_once()

    def test_spent_budget_sends_nothing(self, engine, target):
        with patch(POST) as mock_post:
            outcome = engine.deliver(
                target, {}, "reply_rate_drop", "delivery-13", previous_attempts=3
            )

        assert outcome.success is False
        assert outcome.attempt_count == 3
        assert "already spent" in outcome.error
        mock_post.assert_not_called()

    def test_zero_retry_count_still_attempts_once(self, engine, target):
        target.retry_count = 0
        with patch(POST, return_value=response(500)) as mock_post:
            outcome = engine.deliver(target, {}, "reply_rate_drop", "delivery-11")

        assert outcome.attempt_count == 1
        mock_post.assert_called_once()
