"""
Tests for endpoint health tracking.
"""
from concurrent.futures import ThreadPoolExecutor

from campaign_webhooks.webhook_monitor.health_tracker import HealthTracker

from conftest import NOW


class TestHealthTracker:
    """Tests for HealthTracker."""

    def test_failure_increments_count(self, make_webhook):
        webhook_id = make_webhook()
        tracker = HealthTracker()

        result = tracker.record_delivery(webhook_id, False, NOW)
        health = tracker.get_endpoint_health(webhook_id)

        assert result == {"webhook_id": webhook_id, "updated": True, "deactivated": False}
        assert health["failure_count"] == 1
        assert health["is_active"] is True
        assert health["last_triggered_at"] == NOW.isoformat()

    def test_success_leaves_count(self, make_webhook):
        webhook_id = make_webhook()
        tracker = HealthTracker()
        tracker.record_delivery(webhook_id, False, NOW)

        tracker.record_delivery(webhook_id, True, NOW)

        assert tracker.get_endpoint_health(webhook_id)["failure_count"] == 1

    def test_concurrent_failures_are_all_counted(self, make_webhook):
        webhook_id = make_webhook()
        tracker = HealthTracker()

        with ThreadPoolExecutor(max_workers=5) as executor:
            list(executor.map(lambda _: tracker.record_delivery(webhook_id, False), range(10)))

        assert tracker.get_endpoint_health(webhook_id)["failure_count"] == 10

    def test_endpoint_stays_active_without_threshold(self, make_webhook):
        webhook_id = make_webhook()
        tracker = HealthTracker()

        for _ in range(20):
            tracker.record_delivery(webhook_id, False)

        assert tracker.get_endpoint_health(webhook_id)["is_active"] is True

    def test_threshold_deactivates(self, make_webhook):
        webhook_id = make_webhook()
        tracker = HealthTracker(deactivation_threshold=2)

        first = tracker.record_delivery(webhook_id, False)
        second = tracker.record_delivery(webhook_id, False)

        assert first["deactivated"] is False
        assert second["deactivated"] is True
        assert tracker.get_endpoint_health(webhook_id)["is_active"] is False

    def test_reactivate_clears_failures(self, make_webhook):
        webhook_id = make_webhook()
        tracker = HealthTracker(deactivation_threshold=1)
        tracker.record_delivery(webhook_id, False)

        assert tracker.reactivate(webhook_id) is True

        health = tracker.get_endpoint_health(webhook_id)
        assert health["is_active"] is True
        assert health["failure_count"] == 0

    def test_unknown_webhook(self, database):
        tracker = HealthTracker()

        assert tracker.record_delivery("missing", False)["updated"] is False
        assert tracker.reactivate("missing") is False
        assert tracker.get_endpoint_health("missing") is None
