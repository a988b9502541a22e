"""
Webhook event types, their parameter schemas and target scope validation
"""

from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError
from pydantic.alias_generators import to_camel

from campaign_webhooks.mysql.model import ScopeType, WebhookEventType
from campaign_webhooks.webhook_monitor.exceptions import ConfigurationError


# ========================================
# Parameter Schemas
# ========================================


class EventParameters(BaseModel):
    """Base parameter bag; keys are camelCase on the wire"""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    minimum_emails_sent: Optional[int] = Field(default=None, ge=0)

    def to_config(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RateThresholdParameters(EventParameters):
    threshold_percent: float = Field(..., gt=0, le=100)
    monitoring_period_days: int = Field(..., ge=1, le=30)


class ReplyRateDropParameters(RateThresholdParameters):
    pass


class BounceRateHighParameters(RateThresholdParameters):
    pass


class SilenceParameters(EventParameters):
    days_since_last_reply: int = Field(..., ge=1, le=365)


class NoReplyParameters(SilenceParameters):
    pass


class NoPositiveReplyParameters(SilenceParameters):
    pass


class CampaignCreatedParameters(EventParameters):
    pass


AnyEventParameters = Union[
    ReplyRateDropParameters,
    BounceRateHighParameters,
    NoReplyParameters,
    NoPositiveReplyParameters,
    CampaignCreatedParameters,
]


# ========================================
# Target Scope
# ========================================

ScopeId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class TargetScope(BaseModel):
    """Scope descriptor {type, ids}"""

    type: ScopeType
    ids: List[ScopeId] = Field(..., min_length=1)

    def to_config(self) -> Dict[str, Any]:
        return {"type": self.type.value, "ids": list(self.ids)}


# ========================================
# Event Type Registry
# ========================================


@dataclass(frozen=True)
class ParameterInfo:
    name: str
    type: str
    description: str


@dataclass(frozen=True)
class EventTypeSpec:
    event_type: WebhookEventType
    display_name: str
    description: str
    parameters_model: Type[EventParameters]
    schedule_driven: bool = True
    admin_only: bool = False
    required_parameters: List[ParameterInfo] = field(default_factory=list)


EVENT_SPECS: Dict[WebhookEventType, EventTypeSpec] = {
    WebhookEventType.REPLY_RATE_DROP: EventTypeSpec(
        event_type=WebhookEventType.REPLY_RATE_DROP,
        display_name="Reply Rate Drop",
        description="Triggers when campaign reply rate drops below specified threshold over monitoring period",
        parameters_model=ReplyRateDropParameters,
        required_parameters=[
            ParameterInfo(
                "thresholdPercent",
                "number",
                "Minimum reply rate drop percentage to trigger (0-100)",
            ),
            ParameterInfo(
                "monitoringPeriodDays", "number", "Number of days to monitor (1-30)"
            ),
        ],
    ),
    WebhookEventType.BOUNCE_RATE_HIGH: EventTypeSpec(
        event_type=WebhookEventType.BOUNCE_RATE_HIGH,
        display_name="High Bounce Rate",
        description="Triggers when campaign bounce rate exceeds specified threshold over monitoring period",
        parameters_model=BounceRateHighParameters,
        required_parameters=[
            ParameterInfo(
                "thresholdPercent",
                "number",
                "Maximum bounce rate percentage to allow (0-100)",
            ),
            ParameterInfo(
                "monitoringPeriodDays", "number", "Number of days to monitor (1-30)"
            ),
        ],
    ),
    WebhookEventType.CAMPAIGN_CREATED: EventTypeSpec(
        event_type=WebhookEventType.CAMPAIGN_CREATED,
        display_name="Campaign Created",
        description="Triggers when a new campaign is created by an admin user",
        parameters_model=CampaignCreatedParameters,
        schedule_driven=False,
        admin_only=True,
    ),
    WebhookEventType.NO_REPLY_FOR_X_DAYS: EventTypeSpec(
        event_type=WebhookEventType.NO_REPLY_FOR_X_DAYS,
        display_name="No Reply for X Days",
        description="Triggers when there is no reply (positive or negative) received for X days for the selected clients or campaigns",
        parameters_model=NoReplyParameters,
        required_parameters=[
            ParameterInfo(
                "daysSinceLastReply",
                "number",
                "Number of days since last reply (1-365)",
            ),
        ],
    ),
    WebhookEventType.NO_POSITIVE_REPLY_FOR_X_DAYS: EventTypeSpec(
        event_type=WebhookEventType.NO_POSITIVE_REPLY_FOR_X_DAYS,
        display_name="No Positive Reply for X Days",
        description="Triggers when there is no positive reply received for X days for the selected clients or campaigns",
        parameters_model=NoPositiveReplyParameters,
        required_parameters=[
            ParameterInfo(
                "daysSinceLastReply",
                "number",
                "Number of days since last positive reply (1-365)",
            ),
        ],
    ),
}

SCHEDULED_EVENT_TYPES = [
    spec.event_type for spec in EVENT_SPECS.values() if spec.schedule_driven
]


def _format_validation_errors(error: ValidationError) -> List[Dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]),
            "message": err["msg"],
        }
        for err in error.errors()
    ]


def parse_event_type(value: Union[str, WebhookEventType]) -> WebhookEventType:
    """Resolve an event type string into the enumeration"""
    if isinstance(value, WebhookEventType):
        return value
    try:
        return WebhookEventType(value)
    except ValueError:
        raise ConfigurationError(
            f"Unknown webhook event type: {value}",
            details={"valid_types": [t.value for t in WebhookEventType]},
        )


def validate_config_parameters(
    event_type: Union[str, WebhookEventType], parameters: Optional[Dict[str, Any]]
) -> AnyEventParameters:
    """Validate a parameter bag against its event type schema"""
    spec = EVENT_SPECS[parse_event_type(event_type)]
    try:
        return spec.parameters_model.model_validate(parameters or {})
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid parameters for {spec.event_type.value}",
            details={"errors": _format_validation_errors(e)},
            original_error=e,
        )


def validate_target_scope(scope: Optional[Dict[str, Any]]) -> TargetScope:
    """Validate a target scope descriptor"""
    if not scope:
        raise ConfigurationError("Target scope is required")
    try:
        return TargetScope.model_validate(scope)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid target scope",
            details={"errors": _format_validation_errors(e)},
            original_error=e,
        )


def is_schedule_driven(event_type: Union[str, WebhookEventType]) -> bool:
    return EVENT_SPECS[parse_event_type(event_type)].schedule_driven


def is_admin_only(event_type: Union[str, WebhookEventType]) -> bool:
    return EVENT_SPECS[parse_event_type(event_type)].admin_only


def get_all_event_types() -> List[Dict[str, Any]]:
    """Metadata of every supported event type"""
    return [
        {
            "type": spec.event_type.value,
            "name": spec.display_name,
            "description": spec.description,
            "adminOnly": spec.admin_only,
            "requiredParameters": [
                {"name": p.name, "type": p.type, "description": p.description}
                for p in spec.required_parameters
            ],
        }
        for spec in EVENT_SPECS.values()
    ]
