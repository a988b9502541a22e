import logging
from dataclasses import fields
from typing import Any, Dict, Optional

from campaign_webhooks.webhook_monitor.event_types import get_all_event_types
from campaign_webhooks.webhook_monitor.exceptions import WebhookMonitorError
from campaign_webhooks.webhook_monitor.metrics_feed import MetricsFeed
from campaign_webhooks.webhook_monitor.monitor_execution import CampaignWebhookMonitor
from campaign_webhooks.webhook_monitor.scope_resolver import ScopeResolver
from campaign_webhooks.webhook_monitor.types import MonitorSettings

# ========================================
# Monitoring Service API
# ========================================


class WebhookMonitoringService:
    """
    High-level service interface for webhook monitoring

    This class provides a clean API for starting, stopping, and managing
    the webhook monitoring system.
    """

    def __init__(
        self,
        settings: Optional[MonitorSettings] = None,
        feed: Optional[MetricsFeed] = None,
        scope_resolver: Optional[ScopeResolver] = None,
    ):
        """Initialize the monitoring service"""
        self.settings = settings or MonitorSettings()
        self.feed = feed
        self.scope_resolver = scope_resolver
        self.monitor: Optional[CampaignWebhookMonitor] = None
        self.logger = logging.getLogger("campaign_webhooks.service")

    def _create_monitor(self) -> CampaignWebhookMonitor:
        return CampaignWebhookMonitor(
            self.settings, feed=self.feed, scope_resolver=self.scope_resolver
        )

    def start(self) -> Dict:
        """Start the monitoring service"""
        try:
            if self.monitor and self.monitor.is_running:
                return {
                    "success": False,
                    "message": "Monitoring service is already running",
                }

            self.monitor = self._create_monitor()
            self.monitor.start_monitoring()

            self.logger.info("Webhook monitoring service started successfully")
            return {
                "success": True,
                "message": "Webhook monitoring service started",
                "config": {
                    "check_interval": self.settings.check_interval_seconds,
                    "max_concurrent_configs": self.settings.max_concurrent_configs,
                },
            }

        except Exception as e:
            self.logger.error(f"Failed to start monitoring service: {e}")
            return {"success": False, "error": f"Failed to start monitoring: {str(e)}"}

    def stop(self) -> Dict:
        """Stop the monitoring service"""
        try:
            if not self.monitor or not self.monitor.is_running:
                return {"success": False, "message": "Monitoring service is not running"}

            self.monitor.stop_monitoring()
            self.logger.info("Webhook monitoring service stopped successfully")

            return {"success": True, "message": "Webhook monitoring service stopped"}

        except Exception as e:
            self.logger.error(f"Failed to stop monitoring service: {e}")
            return {"success": False, "error": f"Failed to stop monitoring: {str(e)}"}

    def get_status(self) -> Dict:
        """Get monitoring service status"""
        if not self.monitor:
            return {"running": False, "message": "Monitoring service not initialized"}

        return self.monitor.get_monitoring_status()

    def check_config(self, config_id: str) -> Dict:
        """Manually evaluate one webhook event config"""
        if not self.monitor:
            return {"success": False, "error": "Monitoring service not initialized"}

        return self.monitor.check_config(config_id)

    def test_delivery(self, webhook_id: str) -> Dict:
        """Send a test payload to a webhook endpoint"""
        try:
            if not self.monitor:
                return {"success": False, "error": "Monitoring service not initialized"}

            result = self.monitor.dispatcher.deliver_test(webhook_id)
            self.logger.info(
                f"Test delivery to webhook {webhook_id}: {'ok' if result['success'] else 'failed'}"
            )
            return result

        except Exception as e:
            self.logger.error(f"Test delivery failed for webhook {webhook_id}: {e}")
            return {"success": False, "error": f"Test delivery failed: {str(e)}"}

    def notify_campaign_created(
        self,
        campaign_id: str,
        created_by_user_id: str,
        created_by_role: str,
        title: str = "",
        client_id: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> Dict:
        """Push a campaign.created event"""
        if not self.monitor:
            return {"success": False, "error": "Monitoring service not initialized"}

        try:
            return self.monitor.notify_campaign_created(
                campaign_id,
                created_by_user_id,
                created_by_role,
                title=title,
                client_id=client_id,
                callback_url=callback_url,
            )
        except WebhookMonitorError as e:
            self.logger.error(f"campaign.created notification failed for {campaign_id}: {e}")
            return {"success": False, "error": str(e)}

    def reactivate_webhook(self, webhook_id: str) -> Dict:
        """Re-activate an endpoint and clear its failure count"""
        if not self.monitor:
            return {"success": False, "error": "Monitoring service not initialized"}

        try:
            updated = self.monitor.health_tracker.reactivate(webhook_id)
        except WebhookMonitorError as e:
            self.logger.error(f"Failed to reactivate webhook {webhook_id}: {e}")
            return {"success": False, "error": str(e)}

        if not updated:
            return {"success": False, "error": f"Webhook {webhook_id} not found"}
        return {"success": True, "message": f"Webhook {webhook_id} reactivated"}

    def get_event_types(self) -> Dict:
        """List the supported event types"""
        return {"success": True, "event_types": get_all_event_types()}

    def update_settings(self, new_settings: Dict[str, Any]) -> Dict:
        """Update monitoring settings; a running monitor is restarted to apply them"""
        try:
            known = {f.name for f in fields(MonitorSettings)}
            unknown = sorted(set(new_settings) - known)
            if unknown:
                return {"success": False, "error": f"Unknown settings: {', '.join(unknown)}"}

            was_running = bool(self.monitor and self.monitor.is_running)
            if was_running:
                self.stop()

            for key, value in new_settings.items():
                setattr(self.settings, key, value)

            if was_running:
                restart = self.start()
                if not restart["success"]:
                    return restart

            self.logger.info(f"Monitoring settings updated: {sorted(new_settings)}")
            return {
                "success": True,
                "message": "Settings updated",
                "restarted": was_running,
            }

        except Exception as e:
            self.logger.error(f"Failed to update settings: {e}")
            return {"success": False, "error": f"Failed to update settings: {str(e)}"}
