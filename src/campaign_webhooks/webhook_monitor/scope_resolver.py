import logging
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from campaign_webhooks.mysql.db import get_db
from campaign_webhooks.mysql.model import (
    CampaignModel,
    ClientModel,
    ScopeType,
    UserClientAssignmentModel,
)
from campaign_webhooks.webhook_monitor.event_types import TargetScope
from campaign_webhooks.webhook_monitor.exceptions import FeedError
from campaign_webhooks.webhook_monitor.types import ScopeCampaign

# ========================================
# Scope Resolver
# ========================================


class ScopeResolver:
    """Expands a target scope into the campaigns it covers"""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("campaign_webhooks.scope_resolver")

    def resolve(self, scope: TargetScope) -> List[ScopeCampaign]:
        """
        Resolve a scope into a deduplicated, ordered campaign list

        Unknown ids simply contribute nothing; an empty result is not an error.
        """
        try:
            with get_db() as db:
                if scope.type == ScopeType.CAMPAIGNS:
                    rows = self._campaign_rows(db, scope.ids)
                    known = {row.campaign_id: row for row in rows}
                    campaigns = [
                        known.get(campaign_id, ScopeCampaign(campaign_id=campaign_id))
                        for campaign_id in scope.ids
                    ]
                elif scope.type == ScopeType.CLIENTS:
                    campaigns = self._client_campaigns(db, scope.ids)
                elif scope.type == ScopeType.USERS:
                    campaigns = self._user_campaigns(db, scope.ids)
                else:
                    campaigns = []
        except SQLAlchemyError as e:
            raise FeedError(
                f"Failed to resolve {scope.type.value} scope",
                details={"ids": list(scope.ids)},
                original_error=e,
            )

        resolved = self._deduplicate(campaigns)
        self.logger.debug(
            f"Resolved {scope.type.value} scope ({len(scope.ids)} ids) to {len(resolved)} campaigns"
        )
        return resolved

    def get_campaign(self, campaign_id: str) -> Optional[ScopeCampaign]:
        try:
            with get_db() as db:
                rows = self._campaign_rows(db, [campaign_id])
        except SQLAlchemyError as e:
            raise FeedError(
                f"Failed to load campaign {campaign_id}", original_error=e
            )
        return rows[0] if rows else None

    def _campaign_rows(self, db, campaign_ids: List[str]) -> List[ScopeCampaign]:
        rows = (
            db.query(CampaignModel, ClientModel)
            .outerjoin(ClientModel, ClientModel.id == CampaignModel.client_id)
            .filter(CampaignModel.id.in_(campaign_ids))
            .all()
        )
        return [self._to_scope_campaign(campaign, client) for campaign, client in rows]

    def _client_campaigns(self, db, client_ids: List[str]) -> List[ScopeCampaign]:
        rows = (
            db.query(CampaignModel, ClientModel)
            .join(ClientModel, ClientModel.id == CampaignModel.client_id)
            .filter(CampaignModel.client_id.in_(client_ids))
            .order_by(CampaignModel.created_at, CampaignModel.id)
            .all()
        )
        by_client: Dict[str, List[ScopeCampaign]] = {}
        for campaign, client in rows:
            by_client.setdefault(campaign.client_id, []).append(
                self._to_scope_campaign(campaign, client)
            )
        # Keep the scope's client order
        return [c for client_id in client_ids for c in by_client.get(client_id, [])]

    def _user_campaigns(self, db, user_ids: List[str]) -> List[ScopeCampaign]:
        assignments = (
            db.query(UserClientAssignmentModel)
            .filter(UserClientAssignmentModel.user_id.in_(user_ids))
            .all()
        )
        client_ids: List[str] = []
        for user_id in user_ids:
            for assignment in assignments:
                if assignment.user_id == user_id and assignment.client_id not in client_ids:
                    client_ids.append(assignment.client_id)

        if not client_ids:
            return []
        return self._client_campaigns(db, client_ids)

    @staticmethod
    def _to_scope_campaign(campaign: CampaignModel, client: Optional[ClientModel]) -> ScopeCampaign:
        return ScopeCampaign(
            campaign_id=campaign.id,
            campaign_name=campaign.name or "",
            client_id=campaign.client_id,
            client_name=client.name if client else "",
            admin_uuid=campaign.admin_uuid,
        )

    @staticmethod
    def _deduplicate(campaigns: List[ScopeCampaign]) -> List[ScopeCampaign]:
        seen = set()
        unique = []
        for campaign in campaigns:
            if campaign.campaign_id in seen:
                continue
            seen.add(campaign.campaign_id)
            unique.append(campaign)
        return unique
