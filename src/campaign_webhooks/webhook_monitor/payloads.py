"""
Webhook payload models

Payloads are serialized with camelCase keys, ISO dates and rates as
percentages rounded to two decimals.
"""

import enum
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ImpactLevel(str, enum.Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class PayloadModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class WebhookEventPayload(PayloadModel):
    event_type: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    event_config_id: Optional[str] = None
    event_config_name: Optional[str] = None


# ========================================
# Rate based payloads
# ========================================


class RateThresholdDetails(PayloadModel):
    threshold_percent: float
    monitoring_period_days: int
    minimum_emails_sent: int
    period_start: date
    period_end: date


class ReplyRateCampaignMetrics(PayloadModel):
    id: str
    name: str = ""
    client_id: Optional[str] = None
    client_name: str = ""
    current_reply_rate: float
    previous_reply_rate: float
    reply_rate_drop: float
    total_sent: int
    total_replied: int


class ReplyRateEmailAccountImpact(PayloadModel):
    email_account_id: int
    email_address: str = ""
    reply_rate: float
    sent: int
    replied: int
    impact_level: ImpactLevel


class ReplyRateDropPayload(WebhookEventPayload):
    event_type: str = "reply_rate_drop"
    campaign: ReplyRateCampaignMetrics
    affected_email_accounts: List[ReplyRateEmailAccountImpact] = Field(
        default_factory=list
    )
    threshold: RateThresholdDetails


class BounceRateCampaignMetrics(PayloadModel):
    id: str
    name: str = ""
    client_id: Optional[str] = None
    client_name: str = ""
    current_bounce_rate: float
    previous_bounce_rate: float
    bounce_rate_increase: float
    total_sent: int
    total_bounced: int


class BounceRateEmailAccountImpact(PayloadModel):
    email_account_id: int
    email_address: str = ""
    bounce_rate: float
    sent: int
    bounced: int
    impact_level: ImpactLevel


class BounceRateHighPayload(WebhookEventPayload):
    event_type: str = "bounce_rate_high"
    campaign: BounceRateCampaignMetrics
    affected_email_accounts: List[BounceRateEmailAccountImpact] = Field(
        default_factory=list
    )
    threshold: RateThresholdDetails


# ========================================
# Silence payloads
# ========================================


class SilenceEmailAccountInfo(PayloadModel):
    email_account_id: int
    email_address: str = ""
    last_reply_date: Optional[date] = None
    days_since_last_reply: Optional[int] = None
    sent_in_period: int = 0
    replies_in_period: int = 0
    positive_replies_in_period: int = 0


class SilenceCampaignInfo(PayloadModel):
    id: str
    name: str = ""
    client_id: Optional[str] = None
    client_name: str = ""
    last_reply_date: Optional[date] = None
    days_since_last_reply: Optional[int] = None
    business_days_since_last_reply: Optional[int] = None
    total_sent_in_period: int = 0
    total_replies_in_period: int = 0
    positive_replies_in_period: int = 0
    email_accounts: List[SilenceEmailAccountInfo] = Field(default_factory=list)


class SilenceThresholdDetails(PayloadModel):
    days_since_last_reply: int
    check_date: date
    threshold_date: date
    minimum_emails_sent: int


class NoReplyForXDaysPayload(WebhookEventPayload):
    event_type: str = "no_reply_for_x_days"
    affected_campaigns: List[SilenceCampaignInfo] = Field(default_factory=list)
    threshold: SilenceThresholdDetails


class NoPositiveReplyForXDaysPayload(WebhookEventPayload):
    event_type: str = "no_positive_reply_for_x_days"
    affected_campaigns: List[SilenceCampaignInfo] = Field(default_factory=list)
    threshold: SilenceThresholdDetails


# ========================================
# Campaign created and test payloads
# ========================================


class CreatedCampaignInfo(PayloadModel):
    campaign_id: str
    name: str = ""


class CampaignCreationRequest(PayloadModel):
    title: str = ""
    client_id: Optional[str] = None
    client_name: str = ""


class CampaignCreator(PayloadModel):
    id: str
    role: str


class CampaignCreatedPayload(WebhookEventPayload):
    event_type: str = "campaign.created"
    campaign: CreatedCampaignInfo
    request: CampaignCreationRequest
    user: CampaignCreator


class WebhookTestPayload(PayloadModel):
    test: bool = True
    message: str = "This is a test webhook delivery"
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    webhook_id: Optional[str] = None
