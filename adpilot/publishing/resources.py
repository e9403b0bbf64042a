"""AdPilot — Remote resource store.

Append-only record of platform ids. Campaign and ad set rows are scoped to
the internal campaign, ad rows to the draft.
"""

import json
from typing import Dict, List, Optional

from sqlmodel import Session, select

from adpilot.core.logging import get_logger
from adpilot.models.publish_models import RemoteResourceRecord

logger = get_logger("publishing.resources")

CAMPAIGN = "campaign"
ADSET = "adset"
AD = "ad"

CREATION_ORDER = (CAMPAIGN, ADSET, AD)

DEFAULT_CAPABILITIES = {"pause": True, "resume": True}


class ResourceStore:
    def __init__(self, session: Session):
        self.session = session

    @staticmethod
    def scope_for(resource_type: str, campaign_id: str, draft_id: str) -> str:
        return draft_id if resource_type == AD else campaign_id

    def live(self, resource_type: str, scope_id: str) -> Optional[RemoteResourceRecord]:
        return self.session.exec(
            select(RemoteResourceRecord)
            .where(RemoteResourceRecord.scope_id == scope_id)
            .where(RemoteResourceRecord.resource_type == resource_type)
            .where(RemoteResourceRecord.superseded == False)  # noqa: E712
            .order_by(RemoteResourceRecord.id.desc())
        ).first()

    def live_for_draft(self, campaign_id: str, draft_id: str) -> Dict[str, str]:
        """Remote ids already created for this draft, by resource type."""
        found: Dict[str, str] = {}
        for resource_type in CREATION_ORDER:
            row = self.live(
                resource_type, self.scope_for(resource_type, campaign_id, draft_id)
            )
            if row is not None:
                found[resource_type] = row.remote_id
        return found

    def live_ads(self, campaign_id: str) -> List[RemoteResourceRecord]:
        return list(
            self.session.exec(
                select(RemoteResourceRecord)
                .where(RemoteResourceRecord.campaign_id == campaign_id)
                .where(RemoteResourceRecord.resource_type == AD)
                .where(RemoteResourceRecord.superseded == False)  # noqa: E712
                .order_by(RemoteResourceRecord.id)
            ).all()
        )

    def record(
        self,
        resource_type: str,
        remote_id: str,
        campaign_id: str,
        draft_id: str,
        capabilities: Dict[str, bool] | None = None,
    ) -> RemoteResourceRecord:
        """Persist one created resource and commit straight away."""
        scope_id = self.scope_for(resource_type, campaign_id, draft_id)
        if self.live(resource_type, scope_id) is not None:
            raise ValueError(
                f"Live {resource_type} already recorded for {scope_id}; "
                "supersede it before recording another"
            )
        row = RemoteResourceRecord(
            scope_id=scope_id,
            resource_type=resource_type,
            remote_id=remote_id,
            campaign_id=campaign_id,
            draft_id=draft_id,
            capabilities_json=json.dumps(capabilities or DEFAULT_CAPABILITIES),
        )
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        logger.info(
            f"Recorded {resource_type} {remote_id}",
            extra={"campaign_id": campaign_id, "draft_id": draft_id},
        )
        return row

    def supersede(self, resource_type: str, scope_id: str) -> Optional[RemoteResourceRecord]:
        row = self.live(resource_type, scope_id)
        if row is None:
            return None
        row.superseded = True
        self.session.add(row)
        self.session.commit()
        logger.info(f"Superseded {resource_type} {row.remote_id} for {scope_id}")
        return row
