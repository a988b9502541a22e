from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from campaign_webhooks.mysql.model import (
    CampaignCheckStateModel,
    WebhookEventConfigModel,
    WebhookEventTriggerModel,
    WebhookEventType,
    WebhookModel,
)
from campaign_webhooks.webhook_monitor.event_types import (
    parse_event_type,
    validate_config_parameters,
    validate_target_scope,
)
from campaign_webhooks.webhook_monitor.exceptions import ConfigurationError


# ========================================
# Webhooks
# ========================================


def db_create_webhook(
    db: Session,
    admin_uuid: str,
    url: str,
    name: str = "",
    headers: Optional[Dict[str, str]] = None,
    retry_count: int = 3,
    timeout_seconds: int = 30,
    is_active: bool = True,
) -> WebhookModel:
    if not url or not url.lower().startswith(("http://", "https://")):
        raise ConfigurationError(f"Invalid webhook URL: {url}")
    if retry_count < 1:
        raise ConfigurationError("retry_count must be at least 1")
    if timeout_seconds < 1:
        raise ConfigurationError("timeout_seconds must be at least 1")

    webhook = WebhookModel(
        admin_uuid=admin_uuid,
        url=url,
        name=name,
        headers=headers or {},
        retry_count=retry_count,
        timeout_seconds=timeout_seconds,
        is_active=is_active,
    )
    db.add(webhook)
    db.flush()
    return webhook


def db_get_webhook(db: Session, webhook_id: str) -> Optional[WebhookModel]:
    return db.query(WebhookModel).filter(WebhookModel.id == webhook_id).first()


def db_set_webhook_active(db: Session, webhook_id: str, is_active: bool) -> bool:
    """Explicit (re)activation clears the failure counter"""
    values: Dict[str, Any] = {"is_active": is_active, "updated_at": datetime.utcnow()}
    if is_active:
        values["failure_count"] = 0
    result = db.execute(
        update(WebhookModel).where(WebhookModel.id == webhook_id).values(**values)
    )
    return result.rowcount > 0


def db_record_webhook_outcome(
    db: Session, webhook_id: str, success: bool, completed_at: datetime
) -> bool:
    """Fold a delivery outcome into the endpoint in one atomic UPDATE"""
    values: Dict[str, Any] = {"last_triggered_at": completed_at}
    if not success:
        values["failure_count"] = WebhookModel.failure_count + 1
    result = db.execute(
        update(WebhookModel).where(WebhookModel.id == webhook_id).values(**values)
    )
    return result.rowcount > 0


def db_deactivate_failing_webhook(db: Session, webhook_id: str, threshold: int) -> bool:
    result = db.execute(
        update(WebhookModel)
        .where(
            WebhookModel.id == webhook_id,
            WebhookModel.is_active.is_(True),
            WebhookModel.failure_count >= threshold,
        )
        .values(is_active=False, updated_at=datetime.utcnow())
    )
    return result.rowcount > 0


# ========================================
# Event configurations
# ========================================


def db_create_event_config(
    db: Session,
    admin_uuid: str,
    webhook_id: str,
    event_type: str,
    name: str,
    config_parameters: Optional[Dict[str, Any]] = None,
    target_scope: Optional[Dict[str, Any]] = None,
    description: str = "",
    is_active: bool = True,
) -> WebhookEventConfigModel:
    event_enum = parse_event_type(event_type)
    parameters = validate_config_parameters(event_enum, config_parameters)
    scope = validate_target_scope(target_scope)

    webhook = db_get_webhook(db, webhook_id)
    if not webhook or webhook.admin_uuid != admin_uuid:
        raise ConfigurationError(f"Webhook {webhook_id} not found")

    config = WebhookEventConfigModel(
        admin_uuid=admin_uuid,
        webhook_id=webhook_id,
        event_type=event_enum,
        name=name,
        description=description,
        config_parameters=parameters.to_config(),
        target_scope=scope.to_config(),
        is_active=is_active,
    )
    db.add(config)
    db.flush()
    return config


def db_update_event_config(
    db: Session,
    config_id: str,
    name: Optional[str] = None,
    description: Optional[str] = None,
    config_parameters: Optional[Dict[str, Any]] = None,
    target_scope: Optional[Dict[str, Any]] = None,
    is_active: Optional[bool] = None,
) -> Optional[WebhookEventConfigModel]:
    config = db_get_event_config(db, config_id)
    if not config:
        return None

    if config_parameters is not None:
        config.config_parameters = validate_config_parameters(
            config.event_type, config_parameters
        ).to_config()
    if target_scope is not None:
        config.target_scope = validate_target_scope(target_scope).to_config()
    if name is not None:
        config.name = name
    if description is not None:
        config.description = description
    if is_active is not None:
        config.is_active = is_active
    config.updated_at = datetime.utcnow()
    db.flush()
    return config


def db_get_event_config(
    db: Session, config_id: str
) -> Optional[WebhookEventConfigModel]:
    return (
        db.query(WebhookEventConfigModel)
        .filter(WebhookEventConfigModel.id == config_id)
        .first()
    )


def db_get_active_event_configs(
    db: Session,
    event_types: Iterable[WebhookEventType],
    admin_uuid: Optional[str] = None,
) -> List[WebhookEventConfigModel]:
    """Active configs of the given types whose webhook is also active"""
    query = (
        db.query(WebhookEventConfigModel)
        .join(WebhookModel, WebhookModel.id == WebhookEventConfigModel.webhook_id)
        .filter(
            WebhookEventConfigModel.is_active.is_(True),
            WebhookModel.is_active.is_(True),
            WebhookEventConfigModel.event_type.in_(list(event_types)),
        )
    )
    if admin_uuid is not None:
        query = query.filter(WebhookEventConfigModel.admin_uuid == admin_uuid)
    return query.order_by(WebhookEventConfigModel.created_at).all()


def db_update_config_watermarks(
    db: Session,
    config_id: str,
    checked_at: datetime,
    triggered_at: Optional[datetime] = None,
):
    values: Dict[str, Any] = {"last_checked_at": checked_at}
    if triggered_at is not None:
        values["last_triggered_at"] = triggered_at
    db.execute(
        update(WebhookEventConfigModel)
        .where(WebhookEventConfigModel.id == config_id)
        .values(**values)
    )


# ========================================
# Per-campaign watermarks
# ========================================


def db_get_campaign_states(
    db: Session, config_id: str
) -> Dict[str, CampaignCheckStateModel]:
    states = (
        db.query(CampaignCheckStateModel)
        .filter(CampaignCheckStateModel.event_config_id == config_id)
        .all()
    )
    return {state.campaign_id: state for state in states}


def db_upsert_campaign_state(
    db: Session,
    config_id: str,
    campaign_id: str,
    checked_at: Optional[datetime] = None,
    triggered_at: Optional[datetime] = None,
) -> CampaignCheckStateModel:
    state = db.get(CampaignCheckStateModel, (config_id, campaign_id))
    if not state:
        state = CampaignCheckStateModel(
            event_config_id=config_id, campaign_id=campaign_id
        )
        db.add(state)
    if checked_at is not None:
        state.last_checked_at = checked_at
    if triggered_at is not None:
        state.last_triggered_at = triggered_at
    return state


# ========================================
# Triggers
# ========================================


def db_create_trigger(
    db: Session,
    config_id: str,
    webhook_id: str,
    event_type: str,
    campaign_id: str,
    campaign_name: str,
    trigger_data: Dict[str, Any],
    created_at: Optional[datetime] = None,
) -> WebhookEventTriggerModel:
    trigger = WebhookEventTriggerModel(
        event_config_id=config_id,
        webhook_id=webhook_id,
        event_type=event_type,
        campaign_id=campaign_id,
        campaign_name=campaign_name,
        trigger_data=trigger_data,
        attempt_count=0,
        created_at=created_at or datetime.utcnow(),
    )
    db.add(trigger)
    db.flush()
    return trigger


def db_get_trigger(db: Session, trigger_id: str) -> Optional[WebhookEventTriggerModel]:
    return (
        db.query(WebhookEventTriggerModel)
        .filter(WebhookEventTriggerModel.id == trigger_id)
        .first()
    )


def db_get_triggers_for_config(
    db: Session, config_id: str, limit: int = 50
) -> List[WebhookEventTriggerModel]:
    return (
        db.query(WebhookEventTriggerModel)
        .filter(WebhookEventTriggerModel.event_config_id == config_id)
        .order_by(WebhookEventTriggerModel.created_at.desc())
        .limit(limit)
        .all()
    )


def db_get_pending_triggers(
    db: Session, created_after: datetime
) -> List[WebhookEventTriggerModel]:
    return (
        db.query(WebhookEventTriggerModel)
        .filter(
            WebhookEventTriggerModel.delivered_at.is_(None),
            WebhookEventTriggerModel.created_at >= created_after,
        )
        .order_by(WebhookEventTriggerModel.created_at)
        .all()
    )


def db_record_trigger_attempt(db: Session, trigger_id: str, attempt_count: int):
    db.execute(
        update(WebhookEventTriggerModel)
        .where(
            WebhookEventTriggerModel.id == trigger_id,
            WebhookEventTriggerModel.delivered_at.is_(None),
        )
        .values(attempt_count=attempt_count)
    )


def db_complete_trigger(
    db: Session,
    trigger_id: str,
    is_success: bool,
    attempt_count: int,
    status_code: Optional[int],
    response_body: Optional[str],
    error_message: Optional[str],
    delivered_at: datetime,
) -> bool:
    """Write the final delivery outcome; completed triggers are never rewritten"""
    result = db.execute(
        update(WebhookEventTriggerModel)
        .where(
            WebhookEventTriggerModel.id == trigger_id,
            WebhookEventTriggerModel.delivered_at.is_(None),
        )
        .values(
            is_success=is_success,
            attempt_count=attempt_count,
            status_code=status_code,
            response_body=response_body,
            error_message=error_message,
            delivered_at=delivered_at,
        )
    )
    return result.rowcount > 0
