# ========================================
# CLI and Utility Functions
# ========================================

import os
from typing import Optional

from campaign_webhooks.webhook_monitor.types import MonitorSettings


def create_default_settings() -> MonitorSettings:
    """Create the default monitoring settings"""
    return MonitorSettings(
        check_interval_seconds=900,  # Check every 15 minutes
        max_concurrent_configs=5,
        max_concurrent_evaluations=10,
        max_concurrent_deliveries=10,
        default_minimum_emails_sent=100,
        endpoint_failure_deactivation_threshold=None,  # Never auto-deactivate
    )


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or value.strip() == "":
        return None
    return int(value)


def setup_monitoring_from_env() -> MonitorSettings:
    """Create monitoring settings from environment variables"""
    return MonitorSettings(
        check_interval_seconds=int(os.getenv("WEBHOOK_MONITOR_CHECK_INTERVAL", "900")),
        min_recheck_seconds=int(os.getenv("WEBHOOK_MONITOR_MIN_RECHECK", "0")),
        max_concurrent_configs=int(os.getenv("WEBHOOK_MONITOR_MAX_CONCURRENT_CONFIGS", "5")),
        max_concurrent_evaluations=int(
            os.getenv("WEBHOOK_MONITOR_MAX_CONCURRENT_EVALUATIONS", "10")
        ),
        max_concurrent_deliveries=int(
            os.getenv("WEBHOOK_MONITOR_MAX_CONCURRENT_DELIVERIES", "10")
        ),
        evaluation_timeout_seconds=int(
            os.getenv("WEBHOOK_MONITOR_EVALUATION_TIMEOUT", "60")
        ),
        default_minimum_emails_sent=int(
            os.getenv("WEBHOOK_MONITOR_MINIMUM_EMAILS_SENT", "100")
        ),

        # Delivery configuration
        retry_base_delay_seconds=float(os.getenv("WEBHOOK_RETRY_BASE_DELAY", "2")),
        retry_max_delay_seconds=float(os.getenv("WEBHOOK_RETRY_MAX_DELAY", "60")),
        response_body_limit=int(os.getenv("WEBHOOK_RESPONSE_BODY_LIMIT", "1000")),
        user_agent=os.getenv("WEBHOOK_USER_AGENT", "CampaignWebhooks/1.0"),
        resume_pending_hours=int(os.getenv("WEBHOOK_RESUME_PENDING_HOURS", "24")),

        # Endpoint health policy
        endpoint_failure_deactivation_threshold=_optional_int(
            os.getenv("WEBHOOK_FAILURE_DEACTIVATION_THRESHOLD")
        ),
    )
