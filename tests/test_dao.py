"""
Tests for the webhook store access functions.
"""
from datetime import timedelta

import pytest

from campaign_webhooks.mysql.dao import (
    db_complete_trigger,
    db_create_event_config,
    db_create_trigger,
    db_create_webhook,
    db_get_active_event_configs,
    db_get_pending_triggers,
    db_get_trigger,
    db_get_triggers_for_config,
    db_record_trigger_attempt,
    db_set_webhook_active,
    db_update_event_config,
)
from campaign_webhooks.mysql.db import get_db
from campaign_webhooks.mysql.model import WebhookEventType
from campaign_webhooks.webhook_monitor.event_types import SCHEDULED_EVENT_TYPES
from campaign_webhooks.webhook_monitor.exceptions import ConfigurationError

from conftest import ADMIN, NOW

RATE_PARAMS = {"thresholdPercent": 5, "monitoringPeriodDays": 7}


class TestWebhooks:
    """Tests for webhook creation."""

    @pytest.mark.parametrize(
        "url,kwargs",
        [
            ("ftp://hooks.example.com", {}),
            ("", {}),
            ("https://hooks.example.com", {"retry_count": 0}),
            ("https://hooks.example.com", {"timeout_seconds": 0}),
        ],
    )
    def test_invalid_webhook_rejected(self, database, url, kwargs):
        with pytest.raises(ConfigurationError):
            with get_db() as db:
                db_create_webhook(db, ADMIN, url, **kwargs)

    def test_defaults(self, database):
        with get_db() as db:
            webhook = db_create_webhook(db, ADMIN, "https://hooks.example.com/a")

            assert webhook.retry_count == 3
            assert webhook.timeout_seconds == 30
            assert webhook.failure_count == 0
            assert webhook.is_active is True


class TestEventConfigs:
    """Tests for event config creation and lookup."""

    def test_parameters_normalized(self, make_webhook):
        webhook_id = make_webhook()
        with get_db() as db:
            config = db_create_event_config(
                db,
                ADMIN,
                webhook_id,
                "reply_rate_drop",
                "Drop",
                {"threshold_percent": 5, "monitoringPeriodDays": 7, "unused": True},
                {"type": "campaigns", "ids": ["c1"]},
            )

            assert config.event_type == WebhookEventType.REPLY_RATE_DROP
            assert config.config_parameters == {"thresholdPercent": 5.0, "monitoringPeriodDays": 7}

    def test_invalid_parameters_rejected(self, make_webhook):
        webhook_id = make_webhook()
        with pytest.raises(ConfigurationError):
            with get_db() as db:
                db_create_event_config(
                    db, ADMIN, webhook_id, "no_reply_for_x_days", "Quiet", {}, {"type": "clients", "ids": ["x"]}
                )

    def test_foreign_webhook_rejected(self, make_webhook):
        webhook_id = make_webhook(admin="admin-2")
        with pytest.raises(ConfigurationError):
            with get_db() as db:
                db_create_event_config(
                    db, ADMIN, webhook_id, "reply_rate_drop", "Drop", RATE_PARAMS, {"type": "clients", "ids": ["x"]}
                )

    def test_update_revalidates(self, make_webhook, make_config):
        config_id = make_config(make_webhook(), "reply_rate_drop", RATE_PARAMS)

        with pytest.raises(ConfigurationError):
            with get_db() as db:
                db_update_event_config(db, config_id, config_parameters={"thresholdPercent": 500})

        with get_db() as db:
            config = db_update_event_config(db, config_id, name="Renamed", is_active=False)
            assert config.name == "Renamed"
            assert config.config_parameters == {"thresholdPercent": 5.0, "monitoringPeriodDays": 7}

    def test_active_configs_need_active_webhook(self, make_webhook, make_config):
        active_id = make_config(make_webhook(), "reply_rate_drop", RATE_PARAMS)
        paused_webhook = make_webhook()
        make_config(paused_webhook, "reply_rate_drop", RATE_PARAMS)
        make_config(make_webhook(), "reply_rate_drop", RATE_PARAMS, is_active=False)
        make_config(make_webhook(), "campaign.created")

        with get_db() as db:
            db_set_webhook_active(db, paused_webhook, False)

        with get_db() as db:
            configs = db_get_active_event_configs(db, SCHEDULED_EVENT_TYPES)
            assert [c.id for c in configs] == [active_id]


class TestTriggers:
    """Tests for trigger bookkeeping."""

    @pytest.fixture
    def trigger_id(self, make_webhook, make_config):
        webhook_id = make_webhook()
        config_id = make_config(webhook_id, "reply_rate_drop", RATE_PARAMS)
        with get_db() as db:
            trigger = db_create_trigger(
                db, config_id, webhook_id, "reply_rate_drop", "c1", "Campaign c1", {"a": 1}, created_at=NOW
            )
            return trigger.id

    def test_completed_trigger_is_immutable(self, trigger_id):
        with get_db() as db:
            first = db_complete_trigger(db, trigger_id, True, 1, 200, "ok", None, NOW)
        with get_db() as db:
            second = db_complete_trigger(db, trigger_id, False, 3, 500, "late", "boom", NOW)
            db_record_trigger_attempt(db, trigger_id, 9)

        with get_db() as db:
            trigger = db_get_trigger(db, trigger_id)
            assert first is True
            assert second is False
            assert trigger.is_success is True
            assert trigger.attempt_count == 1
            assert trigger.status_code == 200

    def test_pending_triggers(self, trigger_id):
        with get_db() as db:
            assert [t.id for t in db_get_pending_triggers(db, NOW - timedelta(hours=1))] == [trigger_id]
            assert db_get_pending_triggers(db, NOW + timedelta(hours=1)) == []

        with get_db() as db:
            db_complete_trigger(db, trigger_id, False, 3, 500, None, "boom", NOW)

        with get_db() as db:
            assert db_get_pending_triggers(db, NOW - timedelta(hours=1)) == []

    def test_attempts_recorded_while_pending(self, trigger_id):
        with get_db() as db:
            db_record_trigger_attempt(db, trigger_id, 2)

        with get_db() as db:
            trigger = db_get_trigger(db, trigger_id)
            assert trigger.attempt_count == 2
            assert trigger.delivered_at is None
            assert db_get_triggers_for_config(db, trigger.event_config_id)[0].id == trigger_id
