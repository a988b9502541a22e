import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from campaign_webhooks.mysql.dao import (
    db_deactivate_failing_webhook,
    db_get_webhook,
    db_record_webhook_outcome,
    db_set_webhook_active,
)
from campaign_webhooks.mysql.db import get_db
from campaign_webhooks.webhook_monitor.exceptions import FatalError

# ========================================
# Endpoint Health Tracker
# ========================================


class HealthTracker:
    """Folds delivery outcomes into the endpoint's failure counter"""

    def __init__(
        self,
        deactivation_threshold: Optional[int] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.deactivation_threshold = deactivation_threshold
        self.logger = logger or logging.getLogger("campaign_webhooks.health_tracker")

    def record_delivery(
        self, webhook_id: str, success: bool, completed_at: Optional[datetime] = None
    ) -> Dict:
        """Record a completed delivery; failures increment failure_count atomically"""
        completed_at = completed_at or datetime.utcnow()
        try:
            with get_db() as db:
                updated = db_record_webhook_outcome(db, webhook_id, success, completed_at)
                deactivated = False
                if (
                    updated
                    and not success
                    and self.deactivation_threshold is not None
                ):
                    deactivated = db_deactivate_failing_webhook(
                        db, webhook_id, self.deactivation_threshold
                    )
        except SQLAlchemyError as e:
            raise FatalError(
                f"Failed to record delivery outcome for webhook {webhook_id}",
                original_error=e,
            )

        if not updated:
            self.logger.warning(f"Webhook {webhook_id} no longer exists")
        if deactivated:
            self.logger.warning(
                f"Webhook {webhook_id} deactivated after reaching {self.deactivation_threshold} failures"
            )

        return {
            "webhook_id": webhook_id,
            "updated": updated,
            "deactivated": deactivated,
        }

    def reactivate(self, webhook_id: str) -> bool:
        """Re-activate an endpoint and clear its failure count"""
        try:
            with get_db() as db:
                return db_set_webhook_active(db, webhook_id, True)
        except SQLAlchemyError as e:
            raise FatalError(
                f"Failed to reactivate webhook {webhook_id}", original_error=e
            )

    def get_endpoint_health(self, webhook_id: str) -> Optional[Dict]:
        try:
            with get_db() as db:
                webhook = db_get_webhook(db, webhook_id)
                if not webhook:
                    return None
                return {
                    "webhook_id": webhook.id,
                    "is_active": webhook.is_active,
                    "failure_count": webhook.failure_count,
                    "last_triggered_at": (
                        webhook.last_triggered_at.isoformat()
                        if webhook.last_triggered_at
                        else None
                    ),
                }
        except SQLAlchemyError as e:
            raise FatalError(
                f"Failed to load webhook {webhook_id}", original_error=e
            )
