import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Text,
    JSON,
    Enum,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from .db import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class WebhookEventType(enum.Enum):
    """Webhook event type enumeration"""

    REPLY_RATE_DROP = "reply_rate_drop"
    BOUNCE_RATE_HIGH = "bounce_rate_high"
    CAMPAIGN_CREATED = "campaign.created"
    NO_POSITIVE_REPLY_FOR_X_DAYS = "no_positive_reply_for_x_days"
    NO_REPLY_FOR_X_DAYS = "no_reply_for_x_days"


class ScopeType(enum.Enum):
    """Target scope type enumeration"""

    CLIENTS = "clients"
    CAMPAIGNS = "campaigns"
    USERS = "users"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# ========================================
# Webhook tables
# ========================================


class WebhookModel(Base):
    """Subscriber webhook endpoint table"""

    __tablename__ = "webhooks"

    id = Column(String(36), primary_key=True, default=_new_id)
    admin_uuid = Column(String(36), nullable=False, comment="Owner admin id")
    name = Column(String(255), nullable=False, default="", comment="Display name")
    url = Column(String(2048), nullable=False, comment="Delivery URL")
    headers = Column(JSON, nullable=True, comment="Static request headers")
    is_active = Column(Boolean, nullable=False, default=True, comment="Is active")
    retry_count = Column(
        Integer, nullable=False, default=3, comment="Total delivery attempts"
    )
    timeout_seconds = Column(
        Integer, nullable=False, default=30, comment="Request timeout"
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    last_triggered_at = Column(
        DateTime, nullable=True, comment="Last completed delivery time"
    )
    failure_count = Column(
        Integer, nullable=False, default=0, comment="Cumulative failed deliveries"
    )

    event_configs = relationship(
        "WebhookEventConfigModel",
        back_populates="webhook",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_webhook_admin", "admin_uuid"),
        Index("idx_webhook_active", "is_active"),
        {"comment": "Subscriber webhook endpoints"},
    )


class WebhookEventConfigModel(Base):
    """Monitoring configuration table"""

    __tablename__ = "webhook_event_configs"

    id = Column(String(36), primary_key=True, default=_new_id)
    admin_uuid = Column(String(36), nullable=False, comment="Owner admin id")
    webhook_id = Column(
        String(36),
        ForeignKey("webhooks.id", ondelete="CASCADE"),
        nullable=False,
        comment="Target webhook",
    )
    event_type = Column(
        Enum(
            WebhookEventType,
            values_callable=_enum_values,
            native_enum=False,
            length=64,
        ),
        nullable=False,
        comment="Event type",
    )
    name = Column(String(255), nullable=False, comment="Display name")
    description = Column(Text, nullable=True, comment="Description")
    config_parameters = Column(
        JSON, nullable=False, default=dict, comment="Event type parameters"
    )
    target_scope = Column(
        JSON, nullable=False, comment="Scope descriptor {type, ids}"
    )
    is_active = Column(Boolean, nullable=False, default=True, comment="Is active")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    last_checked_at = Column(DateTime, nullable=True, comment="Last evaluation time")
    last_triggered_at = Column(DateTime, nullable=True, comment="Last firing time")

    webhook = relationship("WebhookModel", back_populates="event_configs")

    __table_args__ = (
        Index("idx_event_config_admin", "admin_uuid"),
        Index("idx_event_config_active_type", "is_active", "event_type"),
        Index("idx_event_config_webhook", "webhook_id"),
        {"comment": "Webhook monitoring configurations"},
    )


class WebhookEventTriggerModel(Base):
    """Trigger and delivery outcome table"""

    __tablename__ = "webhook_event_triggers"

    id = Column(String(36), primary_key=True, default=_new_id)
    event_config_id = Column(
        String(36),
        ForeignKey("webhook_event_configs.id", ondelete="CASCADE"),
        nullable=False,
    )
    webhook_id = Column(
        String(36), ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False
    )
    event_type = Column(String(64), nullable=False, comment="Event type value")
    campaign_id = Column(String(64), nullable=False, comment="Affected campaign")
    campaign_name = Column(String(255), nullable=False, default="")
    trigger_data = Column(JSON, nullable=False, comment="Delivered payload")
    status_code = Column(Integer, nullable=True, comment="Last HTTP status")
    response_body = Column(Text, nullable=True, comment="Truncated response body")
    error_message = Column(Text, nullable=True, comment="Last delivery error")
    is_success = Column(Boolean, nullable=False, default=False)
    attempt_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    delivered_at = Column(DateTime, nullable=True, comment="Delivery completion time")

    __table_args__ = (
        Index("idx_trigger_config", "event_config_id"),
        Index("idx_trigger_webhook", "webhook_id"),
        Index("idx_trigger_pending", "delivered_at", "created_at"),
        {"comment": "Webhook event triggers"},
    )


class CampaignCheckStateModel(Base):
    """Per-campaign evaluation watermarks of a configuration"""

    __tablename__ = "webhook_event_campaign_states"

    event_config_id = Column(
        String(36),
        ForeignKey("webhook_event_configs.id", ondelete="CASCADE"),
        primary_key=True,
    )
    campaign_id = Column(String(64), primary_key=True)
    last_checked_at = Column(DateTime, nullable=True)
    last_triggered_at = Column(DateTime, nullable=True)


# ========================================
# Campaign data tables (read-only feed)
# ========================================


class ClientModel(Base):
    """Client table"""

    __tablename__ = "clients"

    id = Column(String(64), primary_key=True)
    admin_uuid = Column(String(36), nullable=False)
    name = Column(String(255), nullable=False, default="")


class CampaignModel(Base):
    """Campaign table"""

    __tablename__ = "campaigns"

    id = Column(String(64), primary_key=True)
    admin_uuid = Column(String(36), nullable=False)
    client_id = Column(String(64), ForeignKey("clients.id"), nullable=True)
    name = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    client = relationship("ClientModel")

    __table_args__ = (Index("idx_campaign_client", "client_id"),)


class UserClientAssignmentModel(Base):
    """User to client assignment table"""

    __tablename__ = "user_client_assignments"

    user_id = Column(String(36), primary_key=True)
    client_id = Column(String(64), ForeignKey("clients.id"), primary_key=True)


class EmailAccountModel(Base):
    """Sending email account table"""

    __tablename__ = "email_accounts"

    id = Column(Integer, primary_key=True)
    admin_uuid = Column(String(36), nullable=False)
    email = Column(String(320), nullable=False)
    name = Column(String(255), nullable=True)


class CampaignDailyStatModel(Base):
    """Campaign daily statistics table"""

    __tablename__ = "campaign_daily_stat_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_id = Column(String(64), nullable=False)
    stat_date = Column(Date, nullable=False)
    sent = Column(Integer, nullable=False, default=0)
    opened = Column(Integer, nullable=False, default=0)
    clicked = Column(Integer, nullable=False, default=0)
    replied = Column(Integer, nullable=False, default=0)
    positive_replies = Column(Integer, nullable=False, default=0)
    bounced = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("campaign_id", "stat_date", name="uq_campaign_stat_date"),
        Index("idx_campaign_stat_date", "campaign_id", "stat_date"),
    )


class EmailAccountDailyStatModel(Base):
    """Email account daily statistics table, per campaign"""

    __tablename__ = "email_account_daily_stat_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email_account_id = Column(Integer, ForeignKey("email_accounts.id"), nullable=False)
    campaign_id = Column(String(64), nullable=False)
    stat_date = Column(Date, nullable=False)
    sent = Column(Integer, nullable=False, default=0)
    opened = Column(Integer, nullable=False, default=0)
    replied = Column(Integer, nullable=False, default=0)
    positive_replies = Column(Integer, nullable=False, default=0)
    bounced = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "email_account_id",
            "campaign_id",
            "stat_date",
            name="uq_email_account_stat_date",
        ),
        Index("idx_email_account_stat_campaign", "campaign_id", "stat_date"),
    )
