"""
Webhook monitoring data models and configuration classes
"""

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional


@dataclass
class MonitorSettings:
    """Configuration for the webhook monitoring system"""

    check_interval_seconds: int = 900  # Default check every 15 minutes
    min_recheck_seconds: int = 0  # Skip configs checked more recently than this
    max_concurrent_configs: int = 5
    max_concurrent_evaluations: int = 10
    max_concurrent_deliveries: int = 10
    evaluation_timeout_seconds: int = 60
    default_minimum_emails_sent: int = 100

    # Delivery configuration
    retry_base_delay_seconds: float = 2.0
    retry_max_delay_seconds: float = 60.0
    response_body_limit: int = 1000
    user_agent: str = "CampaignWebhooks/1.0"
    resume_pending_hours: int = 24

    # Endpoint health policy; None keeps failing endpoints active
    endpoint_failure_deactivation_threshold: Optional[int] = None


class ConfigState(enum.Enum):
    """Scheduler state of a monitoring configuration"""

    INACTIVE = "inactive"
    IDLE = "idle"
    EVALUATING = "evaluating"
    FIRED = "fired"


def calculate_rate(count: int, sent: int) -> float:
    """Percentage of sent messages, rounded to two decimals"""
    if sent <= 0:
        return 0.0
    return round(count / sent * 100, 2)


@dataclass
class ScopeCampaign:
    """A campaign resolved from a target scope"""

    campaign_id: str
    campaign_name: str = ""
    client_id: Optional[str] = None
    client_name: str = ""
    admin_uuid: Optional[str] = None


@dataclass
class MetricsSnapshot:
    """Aggregated message counts for a date range"""

    sent: int = 0
    opened: int = 0
    replied: int = 0
    positive_replied: int = 0
    bounced: int = 0

    @property
    def reply_rate(self) -> float:
        return calculate_rate(self.replied, self.sent)

    @property
    def bounce_rate(self) -> float:
        return calculate_rate(self.bounced, self.sent)


@dataclass
class EmailAccountMetrics(MetricsSnapshot):
    """Aggregated message counts of one sending email account"""

    email_account_id: int = 0
    email_address: str = ""


@dataclass
class CampaignCheckState:
    """Per-campaign watermarks of a configuration"""

    last_checked_at: Optional[datetime] = None
    last_triggered_at: Optional[datetime] = None


@dataclass
class EvaluationWindow:
    """Date range a rule evaluates"""

    start: date
    end: date
    previous_start: Optional[date] = None
    previous_end: Optional[date] = None


@dataclass
class EvaluationResult:
    """Result of evaluating one configuration against one campaign"""

    config_id: str
    campaign_id: str
    campaign_name: str = ""
    triggered: bool = False
    payload: Optional[Any] = None
    skipped_reason: Optional[str] = None
    error: Optional[str] = None
    check_timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def evaluated(self) -> bool:
        return self.error is None


@dataclass
class PendingTrigger:
    """A firing ready to be written to the trigger store"""

    config_id: str
    webhook_id: str
    event_type: str
    campaign_id: str
    campaign_name: str
    payload: Dict[str, Any]
    covered_campaign_ids: List[str] = field(default_factory=list)
    trigger_id: Optional[str] = None


@dataclass
class DeliveryTarget:
    """Endpoint delivery settings"""

    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    retry_count: int = 3
    timeout_seconds: int = 30
    webhook_id: Optional[str] = None
    is_active: bool = True


@dataclass
class DeliveryOutcome:
    """Result of a webhook delivery"""

    success: bool
    attempt_count: int = 0
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    delivered_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "attempt_count": self.attempt_count,
            "status_code": self.status_code,
            "response_body": self.response_body,
            "error": self.error,
            "delivered_at": self.delivered_at.isoformat(),
        }
