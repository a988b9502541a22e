from campaign_webhooks.webhook_monitor.exceptions import DeliveryError, FeedError
from campaign_webhooks.webhook_monitor.monitor_status_manager import (
    MonitoringStatusManager,
)
from campaign_webhooks.webhook_monitor.types import ConfigState, calculate_rate


class TestMonitoringStatusManager:
    """Tests for MonitoringStatusManager."""

    def test_counters(self):
        manager = MonitoringStatusManager()
        manager.record_check(triggered_count=2, campaigns_evaluated=5, campaign_errors=1)
        manager.record_skip()
        manager.record_delivery(True)
        manager.record_delivery(False)
        manager.record_error()

        status = manager.get_status()

        assert status["total_checks"] == 1
        assert status["total_triggered"] == 2
        assert status["campaigns_evaluated"] == 5
        assert status["campaign_errors"] == 1
        assert status["overlapping_checks_skipped"] == 1
        assert status["errors_count"] == 1
        assert status["delivery_stats"] == {"succeeded": 1, "failed": 1}
        assert manager.get_last_check_time() is not None

    def test_config_states(self):
        manager = MonitoringStatusManager()
        manager.set_config_state("config-1", ConfigState.EVALUATING)

        assert manager.get_config_state("config-1") == ConfigState.EVALUATING
        assert manager.get_status()["config_states"] == {"config-1": "evaluating"}
        assert manager.get_config_state("config-2") is None

    def test_reset(self):
        manager = MonitoringStatusManager()
        manager.record_delivery(True)
        manager.reset_stats()

        assert manager.get_status()["delivery_stats"] == {"succeeded": 0, "failed": 0}


class TestHelpers:
    """Tests for rate math and error formatting."""

    def test_calculate_rate(self):
        assert calculate_rate(1, 3) == 33.33
        assert calculate_rate(5, 0) == 0.0

    def test_error_details_in_message(self):
        error = FeedError("Lookup failed", details={"campaign": "c1"})

        assert str(error) == "Lookup failed - {'campaign': 'c1'}"

    def test_delivery_error_carries_response(self):
        error = DeliveryError("Webhook returned status 502", status_code=502, response_body="bad")

        assert error.status_code == 502
        assert error.response_body == "bad"
        assert str(error) == "Webhook returned status 502"
