"""
Campaign metrics feed

Read-only access to the daily send/open/reply/bounce counts aggregated
per campaign and per sending email account.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from campaign_webhooks.mysql.db import get_db
from campaign_webhooks.mysql.model import (
    CampaignDailyStatModel,
    EmailAccountDailyStatModel,
    EmailAccountModel,
)
from campaign_webhooks.webhook_monitor.exceptions import FeedError
from campaign_webhooks.webhook_monitor.types import EmailAccountMetrics, MetricsSnapshot


class MetricsFeed(ABC):
    """Source of aggregated campaign metrics"""

    @abstractmethod
    def get_campaign_metrics(
        self, campaign_id: str, start: date, end: date
    ) -> MetricsSnapshot:
        """Campaign totals for the inclusive date range"""

    @abstractmethod
    def get_email_account_metrics(
        self, campaign_id: str, start: date, end: date
    ) -> List[EmailAccountMetrics]:
        """Per email account totals of a campaign for the inclusive date range"""

    @abstractmethod
    def get_last_reply_date(
        self, campaign_id: str, positive_only: bool = False, as_of: Optional[date] = None
    ) -> Optional[date]:
        """Most recent day with a (positive) reply, or None if there never was one"""

    @abstractmethod
    def get_email_account_last_reply_dates(
        self, campaign_id: str, positive_only: bool = False, as_of: Optional[date] = None
    ) -> Dict[int, date]:
        """Most recent (positive) reply day of each email account in a campaign"""


class SqlMetricsFeed(MetricsFeed):
    """Metrics feed backed by the daily statistics tables"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("campaign_webhooks.metrics_feed")

    def get_campaign_metrics(
        self, campaign_id: str, start: date, end: date
    ) -> MetricsSnapshot:
        try:
            with get_db() as db:
                row = (
                    db.query(
                        func.coalesce(func.sum(CampaignDailyStatModel.sent), 0),
                        func.coalesce(func.sum(CampaignDailyStatModel.opened), 0),
                        func.coalesce(func.sum(CampaignDailyStatModel.replied), 0),
                        func.coalesce(
                            func.sum(CampaignDailyStatModel.positive_replies), 0
                        ),
                        func.coalesce(func.sum(CampaignDailyStatModel.bounced), 0),
                    )
                    .filter(
                        CampaignDailyStatModel.campaign_id == campaign_id,
                        CampaignDailyStatModel.stat_date >= start,
                        CampaignDailyStatModel.stat_date <= end,
                    )
                    .one()
                )
                return MetricsSnapshot(
                    sent=int(row[0]),
                    opened=int(row[1]),
                    replied=int(row[2]),
                    positive_replied=int(row[3]),
                    bounced=int(row[4]),
                )
        except SQLAlchemyError as e:
            raise FeedError(
                f"Failed to load metrics for campaign {campaign_id}",
                details={"start": start.isoformat(), "end": end.isoformat()},
                original_error=e,
            )

    def get_email_account_metrics(
        self, campaign_id: str, start: date, end: date
    ) -> List[EmailAccountMetrics]:
        try:
            with get_db() as db:
                rows = (
                    db.query(
                        EmailAccountDailyStatModel.email_account_id,
                        func.max(EmailAccountModel.email),
                        func.coalesce(func.sum(EmailAccountDailyStatModel.sent), 0),
                        func.coalesce(func.sum(EmailAccountDailyStatModel.opened), 0),
                        func.coalesce(func.sum(EmailAccountDailyStatModel.replied), 0),
                        func.coalesce(
                            func.sum(EmailAccountDailyStatModel.positive_replies), 0
                        ),
                        func.coalesce(func.sum(EmailAccountDailyStatModel.bounced), 0),
                    )
                    .outerjoin(
                        EmailAccountModel,
                        EmailAccountModel.id == EmailAccountDailyStatModel.email_account_id,
                    )
                    .filter(
                        EmailAccountDailyStatModel.campaign_id == campaign_id,
                        EmailAccountDailyStatModel.stat_date >= start,
                        EmailAccountDailyStatModel.stat_date <= end,
                    )
                    .group_by(EmailAccountDailyStatModel.email_account_id)
                    .all()
                )
                return [
                    EmailAccountMetrics(
                        email_account_id=row[0],
                        email_address=row[1] or "",
                        sent=int(row[2]),
                        opened=int(row[3]),
                        replied=int(row[4]),
                        positive_replied=int(row[5]),
                        bounced=int(row[6]),
                    )
                    for row in rows
                ]
        except SQLAlchemyError as e:
            raise FeedError(
                f"Failed to load email account metrics for campaign {campaign_id}",
                details={"start": start.isoformat(), "end": end.isoformat()},
                original_error=e,
            )

    def get_last_reply_date(
        self, campaign_id: str, positive_only: bool = False, as_of: Optional[date] = None
    ) -> Optional[date]:
        column = (
            CampaignDailyStatModel.positive_replies
            if positive_only
            else CampaignDailyStatModel.replied
        )
        try:
            with get_db() as db:
                query = db.query(func.max(CampaignDailyStatModel.stat_date)).filter(
                    CampaignDailyStatModel.campaign_id == campaign_id, column > 0
                )
                if as_of is not None:
                    query = query.filter(CampaignDailyStatModel.stat_date <= as_of)
                return query.scalar()
        except SQLAlchemyError as e:
            raise FeedError(
                f"Failed to load last reply date for campaign {campaign_id}",
                original_error=e,
            )

    def get_email_account_last_reply_dates(
        self, campaign_id: str, positive_only: bool = False, as_of: Optional[date] = None
    ) -> Dict[int, date]:
        column = (
            EmailAccountDailyStatModel.positive_replies
            if positive_only
            else EmailAccountDailyStatModel.replied
        )
        try:
            with get_db() as db:
                query = db.query(
                    EmailAccountDailyStatModel.email_account_id,
                    func.max(EmailAccountDailyStatModel.stat_date),
                ).filter(EmailAccountDailyStatModel.campaign_id == campaign_id, column > 0)
                if as_of is not None:
                    query = query.filter(EmailAccountDailyStatModel.stat_date <= as_of)
                rows = query.group_by(EmailAccountDailyStatModel.email_account_id).all()
                return {account_id: last_date for account_id, last_date in rows}
        except SQLAlchemyError as e:
            raise FeedError(
                f"Failed to load email account reply dates for campaign {campaign_id}",
                original_error=e,
            )
