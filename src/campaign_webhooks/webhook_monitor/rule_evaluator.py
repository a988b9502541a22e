"""
Per event type evaluation rules

Each rule decides, for one campaign of a configuration's scope, whether
its condition is newly met and builds the typed payload describing it.
The decision functions are pure; only the rule classes touch the
metrics feed.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from campaign_webhooks.mysql.model import WebhookEventType
from campaign_webhooks.webhook_monitor.event_types import (
    EVENT_SPECS,
    AnyEventParameters,
    RateThresholdParameters,
    SilenceParameters,
    parse_event_type,
    validate_config_parameters,
)
from campaign_webhooks.webhook_monitor.exceptions import ConfigurationError, FeedError
from campaign_webhooks.webhook_monitor.metrics_feed import MetricsFeed
from campaign_webhooks.webhook_monitor.payloads import (
    BounceRateCampaignMetrics,
    BounceRateEmailAccountImpact,
    BounceRateHighPayload,
    ImpactLevel,
    NoPositiveReplyForXDaysPayload,
    NoReplyForXDaysPayload,
    RateThresholdDetails,
    ReplyRateCampaignMetrics,
    ReplyRateDropPayload,
    ReplyRateEmailAccountImpact,
    SilenceCampaignInfo,
    SilenceEmailAccountInfo,
    SilenceThresholdDetails,
)
from campaign_webhooks.webhook_monitor.types import (
    CampaignCheckState,
    EmailAccountMetrics,
    EvaluationResult,
    EvaluationWindow,
    MetricsSnapshot,
    PendingTrigger,
    ScopeCampaign,
)


@dataclass
class EvaluationContext:
    """Everything a rule needs to know about the configuration being checked"""

    config_id: str
    config_name: str
    webhook_id: str
    event_type: WebhookEventType
    parameters: AnyEventParameters
    minimum_emails_sent: int
    now: datetime

    @property
    def today(self) -> date:
        return self.now.date()


# ========================================
# Pure decision helpers
# ========================================


def rate_windows(today: date, period_days: int) -> EvaluationWindow:
    """Current window of period_days ending today plus the equal window before it"""
    start = today - timedelta(days=period_days - 1)
    previous_end = start - timedelta(days=1)
    previous_start = previous_end - timedelta(days=period_days - 1)
    return EvaluationWindow(
        start=start, end=today, previous_start=previous_start, previous_end=previous_end
    )


def reply_rate_drop(current: MetricsSnapshot, previous: MetricsSnapshot) -> float:
    return round(previous.reply_rate - current.reply_rate, 2)


def should_fire_reply_rate_drop(
    current: MetricsSnapshot, previous: MetricsSnapshot, threshold_percent: float
) -> bool:
    if previous.reply_rate <= 0 or current.reply_rate >= previous.reply_rate:
        return False
    return reply_rate_drop(current, previous) >= threshold_percent


def should_fire_bounce_rate_high(
    current: MetricsSnapshot, threshold_percent: float
) -> bool:
    return current.bounce_rate >= threshold_percent


def should_fire_silence(last_reply: Optional[date], cutoff: date) -> bool:
    return last_reply is None or last_reply < cutoff


def meets_minimum_volume(sent: int, minimum_emails_sent: int) -> bool:
    return sent >= minimum_emails_sent


def is_suppressed(
    state: Optional[CampaignCheckState], window_start: datetime
) -> bool:
    """A campaign already reported inside the current window is not re-notified"""
    return bool(
        state and state.last_triggered_at and state.last_triggered_at >= window_start
    )


def business_days_between(start: date, end: date) -> int:
    """Weekdays from start (inclusive) to end (exclusive)"""
    if start >= end:
        return 0
    days = 0
    current = start
    while current < end:
        if current.weekday() < 5:
            days += 1
        current += timedelta(days=1)
    return days


def rank_impact(
    accounts: List[EmailAccountMetrics],
    contribution: Callable[[EmailAccountMetrics], float],
) -> List[Tuple[EmailAccountMetrics, ImpactLevel]]:
    """Rank accounts by contribution, banded into thirds: High, Medium, Low"""
    ranked = sorted(
        accounts, key=lambda a: (-contribution(a), a.email_account_id)
    )
    count = len(ranked)
    high_cut = math.ceil(count / 3)
    medium_cut = math.ceil(2 * count / 3)

    banded = []
    for index, account in enumerate(ranked):
        if index < high_cut:
            level = ImpactLevel.HIGH
        elif index < medium_cut:
            level = ImpactLevel.MEDIUM
        else:
            level = ImpactLevel.LOW
        banded.append((account, level))
    return banded


# ========================================
# Rules
# ========================================


class EventRule(ABC):
    """Base class of the schedule-driven event rules"""

    event_type: WebhookEventType

    def __init__(self, feed: MetricsFeed, logger: Optional[logging.Logger] = None):
        self.feed = feed
        self.logger = logger or logging.getLogger("campaign_webhooks.rule_evaluator")

    @abstractmethod
    def dedup_window_start(self, ctx: EvaluationContext) -> datetime:
        """Triggers at or after this instant suppress a new firing"""

    @abstractmethod
    def evaluate(
        self,
        ctx: EvaluationContext,
        campaign: ScopeCampaign,
        state: Optional[CampaignCheckState],
    ) -> EvaluationResult:
        """Evaluate one campaign; FeedError propagates to the caller"""

    def build_triggers(
        self, ctx: EvaluationContext, results: List[EvaluationResult]
    ) -> List[PendingTrigger]:
        """One trigger per fired campaign"""
        return [
            PendingTrigger(
                config_id=ctx.config_id,
                webhook_id=ctx.webhook_id,
                event_type=ctx.event_type.value,
                campaign_id=result.campaign_id,
                campaign_name=result.campaign_name,
                payload=result.payload.to_payload(),
                covered_campaign_ids=[result.campaign_id],
            )
            for result in results
            if result.triggered
        ]

    def _result(self, ctx: EvaluationContext, campaign: ScopeCampaign, **kwargs):
        return EvaluationResult(
            config_id=ctx.config_id,
            campaign_id=campaign.campaign_id,
            campaign_name=campaign.campaign_name,
            check_timestamp=ctx.now,
            **kwargs,
        )


class RateRule(EventRule):
    """Shared window and guard handling of the rate based rules"""

    def dedup_window_start(self, ctx: EvaluationContext) -> datetime:
        return ctx.now - timedelta(days=ctx.parameters.monitoring_period_days)

    def evaluate(self, ctx, campaign, state):
        params: RateThresholdParameters = ctx.parameters
        window = rate_windows(ctx.today, params.monitoring_period_days)

        if is_suppressed(state, self.dedup_window_start(ctx)):
            return self._result(ctx, campaign, skipped_reason="already_triggered")

        current = self.feed.get_campaign_metrics(
            campaign.campaign_id, window.start, window.end
        )
        if not meets_minimum_volume(current.sent, ctx.minimum_emails_sent):
            return self._result(ctx, campaign, skipped_reason="below_minimum_volume")

        previous = self.feed.get_campaign_metrics(
            campaign.campaign_id, window.previous_start, window.previous_end
        )
        if not self.should_fire(current, previous, params.threshold_percent):
            return self._result(ctx, campaign)

        accounts = [
            account
            for account in self.feed.get_email_account_metrics(
                campaign.campaign_id, window.start, window.end
            )
            if meets_minimum_volume(account.sent, ctx.minimum_emails_sent)
        ]
        threshold = RateThresholdDetails(
            threshold_percent=params.threshold_percent,
            monitoring_period_days=params.monitoring_period_days,
            minimum_emails_sent=ctx.minimum_emails_sent,
            period_start=window.start,
            period_end=window.end,
        )
        payload = self.build_payload(
            ctx, campaign, current, previous, accounts, threshold
        )
        return self._result(ctx, campaign, triggered=True, payload=payload)

    @abstractmethod
    def should_fire(
        self, current: MetricsSnapshot, previous: MetricsSnapshot, threshold: float
    ) -> bool:
        pass

    @abstractmethod
    def build_payload(self, ctx, campaign, current, previous, accounts, threshold):
        pass


class ReplyRateDropRule(RateRule):
    event_type = WebhookEventType.REPLY_RATE_DROP

    def should_fire(self, current, previous, threshold):
        return should_fire_reply_rate_drop(current, previous, threshold)

    def build_payload(self, ctx, campaign, current, previous, accounts, threshold):
        expected_rate = previous.reply_rate / 100

        def missing_replies(account: EmailAccountMetrics) -> float:
            return account.sent * expected_rate - account.replied

        return ReplyRateDropPayload(
            timestamp=ctx.now,
            event_config_id=ctx.config_id,
            event_config_name=ctx.config_name,
            campaign=ReplyRateCampaignMetrics(
                id=campaign.campaign_id,
                name=campaign.campaign_name,
                client_id=campaign.client_id,
                client_name=campaign.client_name,
                current_reply_rate=current.reply_rate,
                previous_reply_rate=previous.reply_rate,
                reply_rate_drop=reply_rate_drop(current, previous),
                total_sent=current.sent,
                total_replied=current.replied,
            ),
            affected_email_accounts=[
                ReplyRateEmailAccountImpact(
                    email_account_id=account.email_account_id,
                    email_address=account.email_address,
                    reply_rate=account.reply_rate,
                    sent=account.sent,
                    replied=account.replied,
                    impact_level=level,
                )
                for account, level in rank_impact(accounts, missing_replies)
            ],
            threshold=threshold,
        )


class BounceRateHighRule(RateRule):
    event_type = WebhookEventType.BOUNCE_RATE_HIGH

    def should_fire(self, current, previous, threshold):
        return should_fire_bounce_rate_high(current, threshold)

    def build_payload(self, ctx, campaign, current, previous, accounts, threshold):
        return BounceRateHighPayload(
            timestamp=ctx.now,
            event_config_id=ctx.config_id,
            event_config_name=ctx.config_name,
            campaign=BounceRateCampaignMetrics(
                id=campaign.campaign_id,
                name=campaign.campaign_name,
                client_id=campaign.client_id,
                client_name=campaign.client_name,
                current_bounce_rate=current.bounce_rate,
                previous_bounce_rate=previous.bounce_rate,
                bounce_rate_increase=round(current.bounce_rate - previous.bounce_rate, 2),
                total_sent=current.sent,
                total_bounced=current.bounced,
            ),
            affected_email_accounts=[
                BounceRateEmailAccountImpact(
                    email_account_id=account.email_account_id,
                    email_address=account.email_address,
                    bounce_rate=account.bounce_rate,
                    sent=account.sent,
                    bounced=account.bounced,
                    impact_level=level,
                )
                for account, level in rank_impact(accounts, lambda a: a.bounced)
            ],
            threshold=threshold,
        )


class SilenceRule(EventRule):
    """No (positive) reply for a number of days; one batch trigger per configuration"""

    positive_only = False
    payload_class = NoReplyForXDaysPayload

    def cutoff(self, ctx: EvaluationContext) -> date:
        return ctx.today - timedelta(days=ctx.parameters.days_since_last_reply)

    def dedup_window_start(self, ctx: EvaluationContext) -> datetime:
        return ctx.now - timedelta(days=ctx.parameters.days_since_last_reply)

    def evaluate(self, ctx, campaign, state):
        params: SilenceParameters = ctx.parameters
        cutoff = self.cutoff(ctx)

        if is_suppressed(state, self.dedup_window_start(ctx)):
            return self._result(ctx, campaign, skipped_reason="already_triggered")

        period = self.feed.get_campaign_metrics(campaign.campaign_id, cutoff, ctx.today)
        if not meets_minimum_volume(period.sent, ctx.minimum_emails_sent):
            return self._result(ctx, campaign, skipped_reason="below_minimum_volume")

        last_reply = self.feed.get_last_reply_date(
            campaign.campaign_id, positive_only=self.positive_only, as_of=ctx.today
        )
        if not should_fire_silence(last_reply, cutoff):
            return self._result(ctx, campaign)

        accounts = self.feed.get_email_account_metrics(
            campaign.campaign_id, cutoff, ctx.today
        )
        account_last_replies = self.feed.get_email_account_last_reply_dates(
            campaign.campaign_id, positive_only=self.positive_only, as_of=ctx.today
        )
        info = SilenceCampaignInfo(
            id=campaign.campaign_id,
            name=campaign.campaign_name,
            client_id=campaign.client_id,
            client_name=campaign.client_name,
            last_reply_date=last_reply,
            days_since_last_reply=self._days_since(last_reply, ctx.today),
            business_days_since_last_reply=(
                business_days_between(last_reply, ctx.today) if last_reply else None
            ),
            total_sent_in_period=period.sent,
            total_replies_in_period=period.replied,
            positive_replies_in_period=period.positive_replied,
            email_accounts=[
                SilenceEmailAccountInfo(
                    email_account_id=account.email_account_id,
                    email_address=account.email_address,
                    last_reply_date=account_last_replies.get(account.email_account_id),
                    days_since_last_reply=self._days_since(
                        account_last_replies.get(account.email_account_id), ctx.today
                    ),
                    sent_in_period=account.sent,
                    replies_in_period=account.replied,
                    positive_replies_in_period=account.positive_replied,
                )
                for account in sorted(accounts, key=lambda a: a.email_account_id)
            ],
        )
        return self._result(ctx, campaign, triggered=True, payload=info)

    def build_triggers(self, ctx, results):
        fired = [result for result in results if result.triggered]
        if not fired:
            return []

        cutoff = self.cutoff(ctx)
        payload = self.payload_class(
            timestamp=ctx.now,
            event_config_id=ctx.config_id,
            event_config_name=ctx.config_name,
            affected_campaigns=[result.payload for result in fired],
            threshold=SilenceThresholdDetails(
                days_since_last_reply=ctx.parameters.days_since_last_reply,
                check_date=ctx.today,
                threshold_date=cutoff,
                minimum_emails_sent=ctx.minimum_emails_sent,
            ),
        )
        primary = fired[0]
        return [
            PendingTrigger(
                config_id=ctx.config_id,
                webhook_id=ctx.webhook_id,
                event_type=ctx.event_type.value,
                campaign_id=primary.campaign_id,
                campaign_name=primary.campaign_name,
                payload=payload.to_payload(),
                covered_campaign_ids=[result.campaign_id for result in fired],
            )
        ]

    @staticmethod
    def _days_since(last_reply: Optional[date], today: date) -> Optional[int]:
        if last_reply is None:
            return None
        return (today - last_reply).days


class NoReplyRule(SilenceRule):
    event_type = WebhookEventType.NO_REPLY_FOR_X_DAYS
    positive_only = False
    payload_class = NoReplyForXDaysPayload


class NoPositiveReplyRule(SilenceRule):
    event_type = WebhookEventType.NO_POSITIVE_REPLY_FOR_X_DAYS
    positive_only = True
    payload_class = NoPositiveReplyForXDaysPayload


RULE_CLASSES = {
    rule.event_type: rule
    for rule in (ReplyRateDropRule, BounceRateHighRule, NoReplyRule, NoPositiveReplyRule)
}


# ========================================
# Rule Evaluator
# ========================================


class RuleEvaluator:
    """Dispatches evaluation to the rule registered for a configuration's event type"""

    def __init__(
        self,
        feed: MetricsFeed,
        default_minimum_emails_sent: int = 100,
        logger: Optional[logging.Logger] = None,
    ):
        self.feed = feed
        self.default_minimum_emails_sent = default_minimum_emails_sent
        self.logger = logger or logging.getLogger("campaign_webhooks.rule_evaluator")
        self.rules: Dict[WebhookEventType, EventRule] = {
            event_type: rule_class(feed, self.logger)
            for event_type, rule_class in RULE_CLASSES.items()
        }

    def build_context(self, config: Dict[str, Any], now: datetime) -> EvaluationContext:
        """Re-validate a stored configuration; raises ConfigurationError"""
        event_type = parse_event_type(config["event_type"])
        if not EVENT_SPECS[event_type].schedule_driven:
            raise ConfigurationError(
                f"Event type {event_type.value} is not evaluated on a schedule"
            )
        parameters = validate_config_parameters(event_type, config["config_parameters"])
        minimum = parameters.minimum_emails_sent
        return EvaluationContext(
            config_id=config["config_id"],
            config_name=config.get("name", ""),
            webhook_id=config["webhook_id"],
            event_type=event_type,
            parameters=parameters,
            minimum_emails_sent=(
                self.default_minimum_emails_sent if minimum is None else minimum
            ),
            now=now,
        )

    def rule_for(self, event_type: WebhookEventType) -> EventRule:
        return self.rules[event_type]

    def evaluate_campaign(
        self,
        ctx: EvaluationContext,
        campaign: ScopeCampaign,
        state: Optional[CampaignCheckState] = None,
    ) -> EvaluationResult:
        """Evaluate one campaign; feed failures are isolated to that campaign"""
        try:
            return self.rule_for(ctx.event_type).evaluate(ctx, campaign, state)
        except FeedError as e:
            self.logger.warning(
                f"Metrics unavailable for campaign {campaign.campaign_id} "
                f"(config {ctx.config_id}): {e}"
            )
            return EvaluationResult(
                config_id=ctx.config_id,
                campaign_id=campaign.campaign_id,
                campaign_name=campaign.campaign_name,
                error=str(e),
                check_timestamp=ctx.now,
            )

    def build_triggers(
        self, ctx: EvaluationContext, results: List[EvaluationResult]
    ) -> List[PendingTrigger]:
        return self.rule_for(ctx.event_type).build_triggers(ctx, results)
