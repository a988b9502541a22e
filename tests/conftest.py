"""
Shared fixtures: a throwaway SQLite database per test and seeding helpers.
"""

from datetime import date, datetime, timedelta

import pytest

from campaign_webhooks.mysql import db as db_module
from campaign_webhooks.mysql.dao import db_create_event_config, db_create_webhook
from campaign_webhooks.mysql.db import Base, configure_database, get_db, init_db
from campaign_webhooks.mysql.model import (
    CampaignDailyStatModel,
    CampaignModel,
    ClientModel,
    EmailAccountDailyStatModel,
    EmailAccountModel,
    UserClientAssignmentModel,
)

# Wednesday
NOW = datetime(2026, 3, 18, 12, 0, 0)
TODAY = NOW.date()
ADMIN = "admin-1"


def days_ago(days: int) -> date:
    return TODAY - timedelta(days=days)


@pytest.fixture
def database(tmp_path):
    """Bind the session factory to a fresh SQLite file"""
    configure_database(f"sqlite:///{tmp_path / 'webhooks.db'}")
    init_db()
    yield
    Base.metadata.drop_all(bind=db_module.engine)
    db_module.engine.dispose()


@pytest.fixture
def seed_campaign(database):
    """Create a campaign (and its client) owned by ADMIN"""

    def _seed(campaign_id, client_id="client-1", client_name="Acme", name=None, admin=ADMIN):
        with get_db() as db:
            if client_id and not db.get(ClientModel, client_id):
                db.add(ClientModel(id=client_id, admin_uuid=admin, name=client_name))
                db.flush()
            db.add(
                CampaignModel(
                    id=campaign_id,
                    admin_uuid=admin,
                    client_id=client_id,
                    name=name or f"Campaign {campaign_id}",
                )
            )

    return _seed


@pytest.fixture
def seed_stats(database):
    """Add a campaign daily stat row"""

    def _seed(campaign_id, day, sent=0, replied=0, positive=0, bounced=0):
        with get_db() as db:
            db.add(
                CampaignDailyStatModel(
                    campaign_id=campaign_id,
                    stat_date=day,
                    sent=sent,
                    replied=replied,
                    positive_replies=positive,
                    bounced=bounced,
                )
            )

    return _seed


@pytest.fixture
def seed_account_stats(database):
    """Add an email account daily stat row, creating the account if needed"""

    def _seed(campaign_id, account_id, day, sent=0, replied=0, positive=0, bounced=0):
        with get_db() as db:
            if not db.get(EmailAccountModel, account_id):
                db.add(
                    EmailAccountModel(
                        id=account_id,
                        admin_uuid=ADMIN,
                        email=f"sender{account_id}@example.com",
                    )
                )
                db.flush()
            db.add(
                EmailAccountDailyStatModel(
                    email_account_id=account_id,
                    campaign_id=campaign_id,
                    stat_date=day,
                    sent=sent,
                    replied=replied,
                    positive_replies=positive,
                    bounced=bounced,
                )
            )

    return _seed


@pytest.fixture
def assign_user(database):
    def _assign(user_id, client_id):
        with get_db() as db:
            db.add(UserClientAssignmentModel(user_id=user_id, client_id=client_id))

    return _assign


@pytest.fixture
def make_webhook(database):
    """Create a webhook and return its id"""

    def _make(url="https://hooks.example.com/campaigns", **kwargs):
        with get_db() as db:
            webhook = db_create_webhook(db, kwargs.pop("admin", ADMIN), url, **kwargs)
            return webhook.id

    return _make


@pytest.fixture
def make_config(database):
    """Create an event config and return its id"""

    def _make(webhook_id, event_type, parameters=None, scope=None, **kwargs):
        with get_db() as db:
            config = db_create_event_config(
                db,
                kwargs.pop("admin", ADMIN),
                webhook_id,
                event_type,
                kwargs.pop("name", f"{event_type} config"),
                config_parameters=parameters or {},
                target_scope=scope or {"type": "clients", "ids": ["client-1"]},
                **kwargs,
            )
            return config.id

    return _make
