"""AdPilot — Status Tracker.

Read-only projection of where a campaign is in its publish lifecycle, built
from the audit log and the recorded remote resources. A live refresh asks the
platform for each ad's status; if that fails the local view is returned,
marked stale.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel
from sqlmodel import Session

from adpilot.connectors.meta.client import MetaClient
from adpilot.core.logging import get_logger
from adpilot.core.retry import RetryPolicy
from adpilot.models.publish_models import CampaignRecord, DraftRecord
from adpilot.publishing.audit import (
    BUDGET_CONFIRMED,
    LIFECYCLE_ACTIONS,
    PUBLISH_FAILED,
    PUBLISH_STARTED,
    PUBLISHED,
    AuditLog,
)
from adpilot.publishing.credentials import CredentialResolver
from adpilot.publishing.resources import ADSET, CAMPAIGN, ResourceStore

logger = get_logger("publishing.status")

LIVE_FIELDS = ["status", "effective_status"]


class PublishState(str, Enum):
    UNPUBLISHED = "unpublished"
    BUDGET_CONFIRMED = "budget_confirmed"
    PUBLISHING = "publishing"
    ACTIVE = "active"
    PUBLISH_FAILED = "publish_failed"


ACTION_TO_STATE = {
    BUDGET_CONFIRMED: PublishState.BUDGET_CONFIRMED,
    PUBLISH_STARTED: PublishState.PUBLISHING,
    PUBLISHED: PublishState.ACTIVE,
    PUBLISH_FAILED: PublishState.PUBLISH_FAILED,
}


class AdStatus(BaseModel):
    draft_id: str
    remote_ad_id: str
    ad_status: str = "active"
    effective_status: Optional[str] = None


class CampaignStatus(BaseModel):
    campaign_id: str
    state: PublishState
    remote_ids: Dict[str, str] = {}
    ads: List[AdStatus] = []
    last_action: Optional[str] = None
    last_action_at: Optional[datetime] = None
    live: bool = False
    stale: bool = False
    live_error: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "remoteIds": {
                **self.remote_ids,
                "ads": [a.remote_ad_id for a in self.ads],
            },
            "ads": [a.model_dump() for a in self.ads],
            "lastAction": self.last_action,
            "lastActionAt": self.last_action_at,
            "live": self.live,
            "stale": self.stale,
            "liveError": self.live_error,
        }


class StatusTracker:
    def __init__(
        self,
        session: Session,
        client_factory: Callable[[str], MetaClient] | None = None,
    ):
        self.session = session
        self.audit = AuditLog(session)
        self.resources = ResourceStore(session)
        self.credentials = CredentialResolver(session)
        self.client_factory = client_factory or (
            lambda token: MetaClient(token, retry_policy=RetryPolicy.from_settings())
        )

    def local_status(self, campaign_id: str) -> CampaignStatus:
        remote_ids: Dict[str, str] = {}
        for resource_type in (CAMPAIGN, ADSET):
            row = self.resources.live(resource_type, campaign_id)
            if row is not None:
                remote_ids[resource_type] = row.remote_id

        ads: List[AdStatus] = []
        for row in self.resources.live_ads(campaign_id):
            draft = self.session.get(DraftRecord, row.draft_id) if row.draft_id else None
            ads.append(
                AdStatus(
                    draft_id=row.draft_id or "",
                    remote_ad_id=row.remote_id,
                    ad_status=draft.ad_status if draft else "active",
                    effective_status=draft.effective_status if draft else None,
                )
            )

        actions = LIFECYCLE_ACTIONS
        if ads:
            # a later confirmation never moves a live campaign back
            actions = tuple(a for a in LIFECYCLE_ACTIONS if a != BUDGET_CONFIRMED)
        latest = self.audit.latest(campaign_id, actions)
        if latest is not None:
            state = ACTION_TO_STATE[latest.action]
        elif ads:
            state = PublishState.ACTIVE
        elif remote_ids:
            state = PublishState.PUBLISHING
        else:
            state = PublishState.UNPUBLISHED

        return CampaignStatus(
            campaign_id=campaign_id,
            state=state,
            remote_ids=remote_ids,
            ads=ads,
            last_action=latest.action if latest else None,
            last_action_at=latest.created_at if latest else None,
        )

    async def get_status(self, campaign_id: str, live: bool = False) -> CampaignStatus:
        """Project the campaign's publish state. Never raises on a live failure."""
        status = self.local_status(campaign_id)
        if not live or not status.ads:
            return status

        try:
            await self._refresh(campaign_id, status)
        except Exception as e:
            logger.warning(
                f"Live status refresh failed, serving local state: {e}",
                extra={"campaign_id": campaign_id},
            )
            status.stale = True
            status.live_error = str(e)
            return status

        status.live = True
        return status

    async def _refresh(self, campaign_id: str, status: CampaignStatus) -> None:
        campaign = self.session.get(CampaignRecord, campaign_id)
        if campaign is None:
            raise LookupError(f"Campaign {campaign_id} has no owner record")
        credential = self.credentials.resolve(campaign.owner_id)

        async with self.client_factory(credential.token) as client:
            for ad in status.ads:
                remote = await client.get_object(ad.remote_ad_id, LIVE_FIELDS)
                if remote.get("status"):
                    ad.ad_status = str(remote["status"]).lower()
                ad.effective_status = remote.get("effective_status")
