"""
Delivery dispatch

Runs trigger deliveries on a bounded worker pool separate from metric
evaluation, records attempt counts and final outcomes on the trigger and
hands completed deliveries to the health tracker.
"""

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Dict, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from campaign_webhooks.mysql.dao import (
    db_complete_trigger,
    db_get_trigger,
    db_get_webhook,
    db_record_trigger_attempt,
)
from campaign_webhooks.mysql.db import get_db
from campaign_webhooks.webhook_monitor.delivery_engine import DeliveryEngine
from campaign_webhooks.webhook_monitor.exceptions import FatalError
from campaign_webhooks.webhook_monitor.health_tracker import HealthTracker
from campaign_webhooks.webhook_monitor.monitor_status_manager import (
    MonitoringStatusManager,
)
from campaign_webhooks.webhook_monitor.payloads import WebhookTestPayload
from campaign_webhooks.webhook_monitor.types import (
    DeliveryOutcome,
    DeliveryTarget,
    MonitorSettings,
)

TEST_EVENT_TYPE = "webhook.test"


def _target_from_webhook(webhook) -> DeliveryTarget:
    return DeliveryTarget(
        url=webhook.url,
        headers=dict(webhook.headers or {}),
        retry_count=webhook.retry_count,
        timeout_seconds=webhook.timeout_seconds,
        webhook_id=webhook.id,
        is_active=webhook.is_active,
    )


class DeliveryDispatcher:
    """Schedules webhook deliveries and records their outcomes"""

    def __init__(
        self,
        settings: MonitorSettings,
        engine: DeliveryEngine,
        health_tracker: HealthTracker,
        status_manager: Optional[MonitoringStatusManager] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings
        self.engine = engine
        self.health_tracker = health_tracker
        self.status_manager = status_manager or MonitoringStatusManager()
        self.logger = logger or logging.getLogger("campaign_webhooks.delivery")
        self.executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent_deliveries,
            thread_name_prefix="WebhookDelivery",
        )
        self._pending: Set[Future] = set()
        self._pending_lock = threading.Lock()

    # ========================================
    # Trigger deliveries
    # ========================================

    def submit(self, trigger_id: str) -> Future:
        """Queue a stored trigger for delivery"""
        return self._track(self.executor.submit(self._run_trigger_delivery, trigger_id))

    def submit_adhoc(
        self, target: DeliveryTarget, payload: Dict[str, Any], event_type: str
    ) -> Future:
        """Queue a delivery that is not backed by a stored trigger"""
        delivery_id = str(uuid.uuid4())
        return self._track(
            self.executor.submit(
                self.engine.deliver, target, payload, event_type, delivery_id
            )
        )

    def deliver_trigger(self, trigger_id: str) -> Optional[DeliveryOutcome]:
        """Deliver a stored trigger and record the outcome on it and its endpoint"""
        with get_db() as db:
            trigger = db_get_trigger(db, trigger_id)
            if not trigger:
                self.logger.error(f"Trigger {trigger_id} not found")
                return None
            if trigger.delivered_at is not None:
                self.logger.info(f"Trigger {trigger_id} was already delivered")
                return None

            webhook_id = trigger.webhook_id
            event_type = trigger.event_type
            payload = trigger.trigger_data
            previous_attempts = trigger.attempt_count or 0
            webhook = db_get_webhook(db, webhook_id)
            target = _target_from_webhook(webhook) if webhook else None

        delivered = target is not None and target.is_active
        if not delivered:
            outcome = DeliveryOutcome(
                success=False,
                attempt_count=previous_attempts,
                error=f"Webhook {webhook_id} is inactive or no longer exists",
            )
            self.logger.warning(f"Trigger {trigger_id} not delivered: {outcome.error}")
        else:
            outcome = self.engine.deliver(
                target,
                payload,
                event_type,
                delivery_id=trigger_id,
                on_attempt=lambda attempt: self._record_attempt(trigger_id, attempt),
                previous_attempts=previous_attempts,
            )

        with get_db() as db:
            db_complete_trigger(
                db,
                trigger_id,
                is_success=outcome.success,
                attempt_count=outcome.attempt_count,
                status_code=outcome.status_code,
                response_body=outcome.response_body,
                error_message=outcome.error,
                delivered_at=outcome.delivered_at,
            )

        # Only deliveries handed to the engine count towards endpoint health
        if delivered:
            self.health_tracker.record_delivery(
                webhook_id, outcome.success, outcome.delivered_at
            )
        self.status_manager.record_delivery(outcome.success)
        return outcome

    def _run_trigger_delivery(self, trigger_id: str) -> Optional[DeliveryOutcome]:
        try:
            return self.deliver_trigger(trigger_id)
        except (SQLAlchemyError, FatalError) as e:
            # The trigger stays pending and is resumed on the next start
            self.logger.error(f"Failed to record delivery of trigger {trigger_id}: {e}")
            self.status_manager.record_error()
            return None

    def _record_attempt(self, trigger_id: str, attempt: int):
        try:
            with get_db() as db:
                db_record_trigger_attempt(db, trigger_id, attempt)
        except SQLAlchemyError as e:
            self.logger.warning(
                f"Failed to record attempt {attempt} of trigger {trigger_id}: {e}"
            )

    # ========================================
    # Test deliveries
    # ========================================

    def deliver_test(self, webhook_id: str) -> Dict:
        """Send a synthetic payload to an endpoint; nothing is persisted"""
        with get_db() as db:
            webhook = db_get_webhook(db, webhook_id)
            target = _target_from_webhook(webhook) if webhook else None

        if target is None:
            return {"success": False, "error": f"Webhook {webhook_id} not found"}

        payload = WebhookTestPayload(webhook_id=webhook_id).to_payload()
        outcome = self.engine.deliver(
            target, payload, TEST_EVENT_TYPE, delivery_id=str(uuid.uuid4())
        )
        return {**outcome.to_dict(), "webhook_id": webhook_id, "payload": payload}

    # ========================================
    # Lifecycle
    # ========================================

    def _track(self, future: Future) -> Future:
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._untrack)
        return future

    def _untrack(self, future: Future):
        with self._pending_lock:
            self._pending.discard(future)

    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def wait_for_pending(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued deliveries; returns False if some are still running"""
        with self._pending_lock:
            futures = list(self._pending)
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_running: bool = True):
        """Cancel queued deliveries; running ones end at their timeout or next backoff"""
        self.executor.shutdown(wait=wait_for_running, cancel_futures=True)
        self.logger.info("Delivery dispatcher stopped")
