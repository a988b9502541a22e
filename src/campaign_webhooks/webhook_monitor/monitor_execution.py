"""
Campaign Webhook Monitoring Execution Module

This module provides the scheduled evaluation of webhook event
configurations against campaign metrics, trigger persistence and the
hand-off of triggers to the delivery dispatcher.
"""

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError, as_completed
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

import schedule
from sqlalchemy.exc import SQLAlchemyError

from campaign_webhooks.mysql.dao import (
    db_create_trigger,
    db_get_active_event_configs,
    db_get_campaign_states,
    db_get_event_config,
    db_get_pending_triggers,
    db_get_webhook,
    db_update_config_watermarks,
    db_upsert_campaign_state,
)
from campaign_webhooks.mysql.db import get_db
from campaign_webhooks.mysql.model import WebhookEventType
from campaign_webhooks.webhook_monitor.delivery_dispatcher import DeliveryDispatcher
from campaign_webhooks.webhook_monitor.delivery_engine import DeliveryEngine
from campaign_webhooks.webhook_monitor.event_types import (
    SCHEDULED_EVENT_TYPES,
    is_admin_only,
    validate_target_scope,
)
from campaign_webhooks.webhook_monitor.exceptions import (
    ConfigurationError,
    FatalError,
    FeedError,
)
from campaign_webhooks.webhook_monitor.health_tracker import HealthTracker
from campaign_webhooks.webhook_monitor.metrics_feed import MetricsFeed, SqlMetricsFeed
from campaign_webhooks.webhook_monitor.monitor_status_manager import (
    MonitoringStatusManager,
)
from campaign_webhooks.webhook_monitor.payloads import (
    CampaignCreatedPayload,
    CampaignCreationRequest,
    CampaignCreator,
    CreatedCampaignInfo,
)
from campaign_webhooks.webhook_monitor.rule_evaluator import (
    EvaluationContext,
    RuleEvaluator,
)
from campaign_webhooks.webhook_monitor.scope_resolver import ScopeResolver
from campaign_webhooks.webhook_monitor.types import (
    CampaignCheckState,
    ConfigState,
    DeliveryTarget,
    EvaluationResult,
    MonitorSettings,
    PendingTrigger,
    ScopeCampaign,
)

ADMIN_ROLE = "admin"


# ========================================
# Campaign Webhook Monitor
# ========================================


class CampaignWebhookMonitor:
    """
    Main monitoring engine for webhook event configurations

    This class handles:
    - Scheduled evaluation of active configurations
    - Trigger persistence and watermark updates
    - Hand-off of triggers to the delivery dispatcher
    - Push notification of created campaigns
    """

    def __init__(
        self,
        settings: MonitorSettings,
        feed: Optional[MetricsFeed] = None,
        scope_resolver: Optional[ScopeResolver] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize the webhook monitor with settings"""
        self.settings = settings
        self.is_running = False
        self.scheduler_thread: Optional[threading.Thread] = None
        self.scheduler = schedule.Scheduler()
        self.stop_event = threading.Event()
        self.clock = clock or datetime.utcnow
        self._setup_logging()

        self.config_executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent_configs,
            thread_name_prefix="ConfigCheck",
        )
        self.evaluation_executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent_evaluations,
            thread_name_prefix="CampaignEvaluation",
        )
        self.status_manager = MonitoringStatusManager()
        self.feed = feed or SqlMetricsFeed()
        self.scope_resolver = scope_resolver or ScopeResolver()
        self.evaluator = RuleEvaluator(
            self.feed, settings.default_minimum_emails_sent, self.monitor_logger
        )
        self.delivery_engine = DeliveryEngine(settings, stop_event=self.stop_event)
        self.health_tracker = HealthTracker(
            settings.endpoint_failure_deactivation_threshold
        )
        self.dispatcher = DeliveryDispatcher(
            settings, self.delivery_engine, self.health_tracker, self.status_manager
        )

        # One lock per configuration id; a held lock means an evaluation is in flight
        self._config_locks: Dict[str, threading.Lock] = {}
        self._config_locks_guard = threading.Lock()

    def _setup_logging(self):
        """Setup monitoring specific logging"""
        self.monitor_logger = logging.getLogger("campaign_webhooks.monitor")
        self.monitor_logger.setLevel(os.getenv("WEBHOOK_MONITOR_LOG_LEVEL", "INFO"))

    # ========================================
    # Lifecycle
    # ========================================

    def start_monitoring(self):
        """Start the webhook monitoring system"""
        if self.is_running:
            self.monitor_logger.warning("Monitor is already running")
            return

        self.is_running = True
        self.stop_event.clear()
        self.monitor_logger.info("Starting Campaign Webhook Monitor")

        self.resume_pending_deliveries()

        # Schedule periodic checks
        self.scheduler.every(self.settings.check_interval_seconds).seconds.do(
            self._run_scheduled_check
        )

        # Start scheduler thread
        self.scheduler_thread = threading.Thread(
            target=self._scheduler_loop, daemon=True, name="WebhookScheduler"
        )
        self.scheduler_thread.start()

        self.monitor_logger.info(
            f"Webhook monitoring started with {self.settings.check_interval_seconds}s interval"
        )

    def stop_monitoring(self):
        """Stop the webhook monitoring system"""
        if not self.is_running:
            self.monitor_logger.warning("Monitor is not running")
            return

        self.is_running = False
        self.stop_event.set()
        self.scheduler.clear()

        if self.scheduler_thread and self.scheduler_thread.is_alive():
            self.scheduler_thread.join(timeout=5)

        self.shutdown()
        self.monitor_logger.info("Campaign Webhook Monitor stopped")

    def shutdown(self):
        """Stop accepting work and release the worker pools"""
        self.stop_event.set()
        # Config checks still running may hand triggers to the dispatcher
        self.config_executor.shutdown(wait=True, cancel_futures=True)
        self.evaluation_executor.shutdown(wait=True, cancel_futures=True)
        self.dispatcher.shutdown()

    def _scheduler_loop(self):
        """Main scheduler loop running in separate thread"""
        self.monitor_logger.info("Webhook scheduler loop started")

        # First check right away rather than one interval after start
        try:
            self.scheduler.run_all()
        except Exception as e:
            self.monitor_logger.error(f"Initial check failed: {e}")
            self.status_manager.record_error()

        while self.is_running:
            try:
                self.scheduler.run_pending()
            except Exception as e:
                self.monitor_logger.error(f"Scheduler loop error: {e}")
                self.status_manager.record_error()
            self.stop_event.wait(1)

        self.monitor_logger.info("Webhook scheduler loop stopped")

    def _run_scheduled_check(self):
        """Execute scheduled configuration checking"""
        self.run_check_cycle()

    # ========================================
    # Check cycle
    # ========================================

    def run_check_cycle(self, wait: bool = False) -> Dict:
        """
        Run one scheduler tick

        Every due configuration is handed to the config pool. A configuration
        whose previous evaluation is still running is skipped, not queued.
        With wait=True the call blocks until the checks and their deliveries
        are finished.
        """
        if self.stop_event.is_set():
            return {"success": False, "error": "Monitor is shutting down"}

        now = self.clock()
        start_time = time.time()
        self.monitor_logger.info("Starting scheduled webhook event check")

        try:
            configs = self._get_due_configs(now)
        except FatalError as e:
            self.monitor_logger.error(f"Scheduled check aborted: {e}")
            self.status_manager.record_error()
            return {"success": False, "error": str(e)}

        if not configs:
            self.monitor_logger.info("No webhook event configs due for checking")
            return {"success": True, "configs_submitted": 0, "configs_skipped": 0}

        tick_abort = threading.Event()
        futures = {}
        skipped: List[str] = []

        for config in configs:
            config_id = config["config_id"]
            lock = self._get_config_lock(config_id)
            if not lock.acquire(blocking=False):
                self.monitor_logger.info(
                    f"Config {config_id} is still being evaluated, skipping this tick"
                )
                self.status_manager.record_skip()
                skipped.append(config_id)
                continue

            try:
                future = self.config_executor.submit(
                    self._run_config_check, config, now, lock, tick_abort
                )
            except RuntimeError:
                # Executor shut down between the stop check and here
                lock.release()
                break
            futures[future] = config_id

        summary = {
            "success": True,
            "configs_submitted": len(futures),
            "configs_skipped": len(skipped),
            "skipped_config_ids": skipped,
        }
        if not wait:
            return summary

        results = [future.result() for future in futures]
        self.dispatcher.wait_for_pending()

        summary.update(
            {
                "success": not tick_abort.is_set(),
                "results": results,
                "triggers_created": sum(r.get("triggers_created", 0) for r in results),
            }
        )
        self.monitor_logger.info(
            f"Webhook event check completed: {summary['triggers_created']} triggers "
            f"from {len(results)} configs in {time.time() - start_time:.2f}s"
        )
        return summary

    def check_config(self, config_id: str) -> Dict:
        """Manually evaluate a single configuration now"""
        now = self.clock()
        try:
            with get_db() as db:
                config = db_get_event_config(db, config_id)
                if not config:
                    return {"success": False, "error": f"Config {config_id} not found"}
                config_data = self._config_to_dict(config)
                webhook = db_get_webhook(db, config.webhook_id)
                webhook_active = bool(webhook and webhook.is_active)
        except SQLAlchemyError as e:
            self.monitor_logger.error(f"Failed to load config {config_id}: {e}")
            return {"success": False, "error": f"Failed to load config: {str(e)}"}

        if not config_data["is_active"] or not webhook_active:
            self.status_manager.set_config_state(config_id, ConfigState.INACTIVE)
            return {
                "success": False,
                "config_id": config_id,
                "message": "Config or its webhook is inactive",
            }

        if WebhookEventType(config_data["event_type"]) not in SCHEDULED_EVENT_TYPES:
            return {
                "success": False,
                "config_id": config_id,
                "error": f"Event type {config_data['event_type']} is not evaluated on a schedule",
            }

        lock = self._get_config_lock(config_id)
        if not lock.acquire(blocking=False):
            self.status_manager.record_skip()
            return {
                "success": False,
                "config_id": config_id,
                "skipped": True,
                "message": "Config is already being evaluated",
            }

        return self._run_config_check(config_data, now, lock, threading.Event())

    def _get_config_lock(self, config_id: str) -> threading.Lock:
        with self._config_locks_guard:
            lock = self._config_locks.get(config_id)
            if lock is None:
                lock = threading.Lock()
                self._config_locks[config_id] = lock
            return lock

    def _prune_config_locks(self, active_ids):
        """Forget locks of configs that are gone or inactive; held locks stay"""
        with self._config_locks_guard:
            for config_id in list(self._config_locks):
                if config_id not in active_ids and not self._config_locks[config_id].locked():
                    del self._config_locks[config_id]

    def _run_config_check(
        self,
        config: Dict,
        now: datetime,
        lock: threading.Lock,
        tick_abort: threading.Event,
    ) -> Dict:
        """Check one configuration; always releases its lock"""
        config_id = config["config_id"]
        try:
            if tick_abort.is_set() or self.stop_event.is_set():
                return {
                    "success": False,
                    "config_id": config_id,
                    "skipped": True,
                    "message": "Check cycle aborted",
                }
            return self._check_config(config, now)

        except FatalError as e:
            tick_abort.set()
            self.monitor_logger.error(
                f"Store failure while checking config {config_id}, aborting check cycle: {e}"
            )
            self.status_manager.record_error()
            return {"success": False, "config_id": config_id, "fatal": True, "error": str(e)}

        except Exception as e:
            self.monitor_logger.error(f"Config check failed for {config_id}: {e}")
            self.status_manager.record_error()
            return {"success": False, "config_id": config_id, "error": str(e)}

        finally:
            if self.status_manager.get_config_state(config_id) != ConfigState.INACTIVE:
                self.status_manager.set_config_state(config_id, ConfigState.IDLE)
            lock.release()

    def _check_config(self, config: Dict, now: datetime) -> Dict:
        config_id = config["config_id"]
        self.status_manager.set_config_state(config_id, ConfigState.EVALUATING)

        try:
            ctx = self.evaluator.build_context(config, now)
            scope = validate_target_scope(config["target_scope"])
        except ConfigurationError as e:
            self.monitor_logger.warning(f"Skipping misconfigured config {config_id}: {e}")
            self.status_manager.record_error()
            return {"success": False, "config_id": config_id, "error": str(e)}

        try:
            campaigns = self.scope_resolver.resolve(scope)
        except FeedError as e:
            self.monitor_logger.warning(f"Scope resolution failed for config {config_id}: {e}")
            self.status_manager.record_error()
            return {"success": False, "config_id": config_id, "error": str(e)}

        states = self._load_campaign_states(config_id)
        results = self._evaluate_campaigns(ctx, campaigns, states)
        pending = self.evaluator.build_triggers(ctx, results)
        trigger_ids = self._persist_results(ctx, results, pending)

        if trigger_ids:
            self.status_manager.set_config_state(config_id, ConfigState.FIRED)
            for trigger_id in trigger_ids:
                self.dispatcher.submit(trigger_id)

        evaluated = sum(1 for r in results if r.evaluated)
        failed = len(results) - evaluated
        self.status_manager.record_check(
            triggered_count=len(trigger_ids),
            campaigns_evaluated=evaluated,
            campaign_errors=failed,
        )
        self.monitor_logger.info(
            f"Config {config_id} ({ctx.event_type.value}): {len(campaigns)} campaigns, "
            f"{failed} failed, {len(trigger_ids)} triggers"
        )
        return {
            "success": True,
            "config_id": config_id,
            "campaigns_total": len(campaigns),
            "campaigns_evaluated": evaluated,
            "campaigns_failed": failed,
            "triggers_created": len(trigger_ids),
            "trigger_ids": trigger_ids,
        }

    def _evaluate_campaigns(
        self,
        ctx: EvaluationContext,
        campaigns: List[ScopeCampaign],
        states: Dict[str, CampaignCheckState],
    ) -> List[EvaluationResult]:
        """Evaluate campaigns concurrently; results keep the scope order"""
        if not campaigns:
            return []

        future_to_index = {
            self.evaluation_executor.submit(
                self.evaluator.evaluate_campaign,
                ctx,
                campaign,
                states.get(campaign.campaign_id),
            ): index
            for index, campaign in enumerate(campaigns)
        }

        results: Dict[int, EvaluationResult] = {}
        try:
            for future in as_completed(
                future_to_index, timeout=self.settings.evaluation_timeout_seconds
            ):
                index = future_to_index[future]
                try:
                    results[index] = future.result()
                except Exception as e:
                    self.monitor_logger.error(
                        f"Campaign evaluation failed for {campaigns[index].campaign_id}: {e}"
                    )
                    results[index] = self._failed_result(ctx, campaigns[index], str(e))
        except FuturesTimeoutError:
            self.monitor_logger.error(
                f"Campaign evaluation timed out for config {ctx.config_id}"
            )

        for future, index in future_to_index.items():
            if index not in results:
                future.cancel()
                results[index] = self._failed_result(
                    ctx, campaigns[index], "Evaluation timed out"
                )

        return [results[index] for index in range(len(campaigns))]

    @staticmethod
    def _failed_result(
        ctx: EvaluationContext, campaign: ScopeCampaign, error: str
    ) -> EvaluationResult:
        return EvaluationResult(
            config_id=ctx.config_id,
            campaign_id=campaign.campaign_id,
            campaign_name=campaign.campaign_name,
            error=error,
            check_timestamp=ctx.now,
        )

    # ========================================
    # Store access
    # ========================================

    def _get_due_configs(self, now: datetime) -> List[Dict]:
        """Active schedule-driven configs due for evaluation"""
        try:
            with get_db() as db:
                configs = db_get_active_event_configs(db, list(WebhookEventType))
                self._prune_config_locks({config.id for config in configs})
                due_before = now - timedelta(seconds=self.settings.min_recheck_seconds)
                return [
                    self._config_to_dict(config)
                    for config in configs
                    if config.event_type in SCHEDULED_EVENT_TYPES
                    and (
                        self.settings.min_recheck_seconds <= 0
                        or config.last_checked_at is None
                        or config.last_checked_at <= due_before
                    )
                ]
        except SQLAlchemyError as e:
            raise FatalError("Failed to load active webhook event configs", original_error=e)

    def _load_campaign_states(self, config_id: str) -> Dict[str, CampaignCheckState]:
        try:
            with get_db() as db:
                return {
                    campaign_id: CampaignCheckState(
                        last_checked_at=state.last_checked_at,
                        last_triggered_at=state.last_triggered_at,
                    )
                    for campaign_id, state in db_get_campaign_states(db, config_id).items()
                }
        except SQLAlchemyError as e:
            raise FatalError(
                f"Failed to load campaign states for config {config_id}",
                original_error=e,
            )

    def _persist_results(
        self,
        ctx: EvaluationContext,
        results: List[EvaluationResult],
        pending: List[PendingTrigger],
    ) -> List[str]:
        """Write triggers and watermarks in a single transaction"""
        fired_campaigns = {
            campaign_id for trigger in pending for campaign_id in trigger.covered_campaign_ids
        }
        try:
            with get_db() as db:
                trigger_ids = []
                for trigger in pending:
                    model = db_create_trigger(
                        db,
                        config_id=trigger.config_id,
                        webhook_id=trigger.webhook_id,
                        event_type=trigger.event_type,
                        campaign_id=trigger.campaign_id,
                        campaign_name=trigger.campaign_name,
                        trigger_data=trigger.payload,
                        created_at=ctx.now,
                    )
                    trigger.trigger_id = model.id
                    trigger_ids.append(model.id)

                for result in results:
                    if not result.evaluated:
                        continue
                    db_upsert_campaign_state(
                        db,
                        ctx.config_id,
                        result.campaign_id,
                        checked_at=ctx.now,
                        triggered_at=ctx.now if result.campaign_id in fired_campaigns else None,
                    )

                db_update_config_watermarks(
                    db,
                    ctx.config_id,
                    checked_at=ctx.now,
                    triggered_at=ctx.now if pending else None,
                )
                return trigger_ids
        except SQLAlchemyError as e:
            raise FatalError(
                f"Failed to persist results for config {ctx.config_id}",
                original_error=e,
            )

    @staticmethod
    def _config_to_dict(config) -> Dict:
        return {
            "config_id": config.id,
            "admin_uuid": config.admin_uuid,
            "webhook_id": config.webhook_id,
            "event_type": config.event_type.value,
            "name": config.name,
            "config_parameters": dict(config.config_parameters or {}),
            "target_scope": dict(config.target_scope or {}),
            "is_active": config.is_active,
            "last_checked_at": config.last_checked_at,
            "last_triggered_at": config.last_triggered_at,
        }

    # ========================================
    # Deliveries
    # ========================================

    def resume_pending_deliveries(self) -> int:
        """Re-submit triggers whose delivery never completed"""
        since = self.clock() - timedelta(hours=self.settings.resume_pending_hours)
        try:
            with get_db() as db:
                trigger_ids = [t.id for t in db_get_pending_triggers(db, since)]
        except SQLAlchemyError as e:
            self.monitor_logger.error(f"Failed to load pending triggers: {e}")
            self.status_manager.record_error()
            return 0

        for trigger_id in trigger_ids:
            self.dispatcher.submit(trigger_id)
        if trigger_ids:
            self.monitor_logger.info(f"Resumed {len(trigger_ids)} pending deliveries")
        return len(trigger_ids)

    def notify_campaign_created(
        self,
        campaign_id: str,
        created_by_user_id: str,
        created_by_role: str,
        title: str = "",
        client_id: Optional[str] = None,
        callback_url: Optional[str] = None,
    ) -> Dict:
        """
        Push a campaign.created event at campaign creation time

        Only campaigns created by admin users notify. Matching configurations
        are the owner's active campaign.created configs whose scope contains
        the campaign; each fires at most once per campaign.
        """
        if (
            is_admin_only(WebhookEventType.CAMPAIGN_CREATED)
            and created_by_role.lower() != ADMIN_ROLE
        ):
            return {
                "success": False,
                "message": "Campaign created events are only sent for admin users",
            }

        now = self.clock()
        try:
            campaign = self.scope_resolver.get_campaign(campaign_id)
        except FeedError as e:
            self.monitor_logger.error(f"Failed to load created campaign {campaign_id}: {e}")
            return {"success": False, "error": str(e)}

        owner = campaign.admin_uuid if campaign and campaign.admin_uuid else created_by_user_id
        client_id = client_id or (campaign.client_id if campaign else None)

        def build_payload(config_id: Optional[str], config_name: Optional[str]) -> Dict:
            return CampaignCreatedPayload(
                timestamp=now,
                event_config_id=config_id,
                event_config_name=config_name,
                campaign=CreatedCampaignInfo(
                    campaign_id=campaign_id,
                    name=campaign.campaign_name if campaign else title,
                ),
                request=CampaignCreationRequest(
                    title=title,
                    client_id=client_id,
                    client_name=campaign.client_name if campaign else "",
                ),
                user=CampaignCreator(id=created_by_user_id, role=created_by_role),
            ).to_payload()

        try:
            with get_db() as db:
                configs = [
                    self._config_to_dict(config)
                    for config in db_get_active_event_configs(
                        db, [WebhookEventType.CAMPAIGN_CREATED], admin_uuid=owner
                    )
                ]
        except SQLAlchemyError as e:
            self.monitor_logger.error(f"Failed to load campaign.created configs: {e}")
            return {"success": False, "error": f"Failed to load configs: {str(e)}"}

        trigger_ids = []
        for config in configs:
            config_id = config["config_id"]
            try:
                scope = validate_target_scope(config["target_scope"])
                scoped_ids = {c.campaign_id for c in self.scope_resolver.resolve(scope)}
            except (ConfigurationError, FeedError) as e:
                self.monitor_logger.warning(f"Skipping campaign.created config {config_id}: {e}")
                continue
            if campaign_id not in scoped_ids:
                continue

            with self._get_config_lock(config_id):
                try:
                    trigger_id = self._persist_campaign_created(
                        config, campaign_id, build_payload(config_id, config["name"]), now
                    )
                except FatalError as e:
                    self.monitor_logger.error(str(e))
                    self.status_manager.record_error()
                    continue
            if trigger_id:
                trigger_ids.append(trigger_id)
                self.dispatcher.submit(trigger_id)

        callback_submitted = False
        if callback_url:
            self.dispatcher.submit_adhoc(
                DeliveryTarget(url=callback_url),
                build_payload(None, None),
                WebhookEventType.CAMPAIGN_CREATED.value,
            )
            callback_submitted = True

        self.monitor_logger.info(
            f"Campaign {campaign_id} created: {len(trigger_ids)} webhook triggers"
        )
        return {
            "success": True,
            "campaign_id": campaign_id,
            "triggers_created": len(trigger_ids),
            "trigger_ids": trigger_ids,
            "callback_submitted": callback_submitted,
        }

    def _persist_campaign_created(
        self, config: Dict, campaign_id: str, payload: Dict, now: datetime
    ) -> Optional[str]:
        config_id = config["config_id"]
        try:
            with get_db() as db:
                state = db_get_campaign_states(db, config_id).get(campaign_id)
                if state and state.last_triggered_at:
                    return None

                trigger = db_create_trigger(
                    db,
                    config_id=config_id,
                    webhook_id=config["webhook_id"],
                    event_type=WebhookEventType.CAMPAIGN_CREATED.value,
                    campaign_id=campaign_id,
                    campaign_name=payload["campaign"]["name"],
                    trigger_data=payload,
                    created_at=now,
                )
                db_upsert_campaign_state(
                    db, config_id, campaign_id, checked_at=now, triggered_at=now
                )
                db_update_config_watermarks(db, config_id, checked_at=now, triggered_at=now)
                return trigger.id
        except SQLAlchemyError as e:
            raise FatalError(
                f"Failed to persist campaign.created trigger for config {config_id}",
                original_error=e,
            )

    # ========================================
    # Status
    # ========================================

    def get_monitoring_status(self) -> Dict:
        """Get current monitoring system status"""
        return {
            "is_running": self.is_running,
            "config": {
                "check_interval_seconds": self.settings.check_interval_seconds,
                "max_concurrent_configs": self.settings.max_concurrent_configs,
                "max_concurrent_evaluations": self.settings.max_concurrent_evaluations,
                "max_concurrent_deliveries": self.settings.max_concurrent_deliveries,
                "default_minimum_emails_sent": self.settings.default_minimum_emails_sent,
                "endpoint_failure_deactivation_threshold": self.settings.endpoint_failure_deactivation_threshold,
            },
            "status": self.status_manager.get_status(),
            "pending_deliveries": self.dispatcher.pending_count(),
            "last_check": self.status_manager.get_last_check_time(),
        }
