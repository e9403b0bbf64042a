"""AdPilot — Append-only campaign audit log."""

import json
from typing import Any, Dict, Optional

from sqlmodel import Session, select

from adpilot.core.logging import get_logger
from adpilot.models.publish_models import AuditRecord

logger = get_logger("publishing.audit")

BUDGET_CONFIRMED = "budget_confirmed"
PUBLISH_STARTED = "publish_started"
PUBLISHED = "published"
PUBLISH_FAILED = "publish_failed"
AD_PAUSED = "ad_paused"
AD_RESUMED = "ad_resumed"
AD_STATUS_FAILED = "ad_status_failed"

# Actions that move a campaign through its publish lifecycle
LIFECYCLE_ACTIONS = (BUDGET_CONFIRMED, PUBLISH_STARTED, PUBLISHED, PUBLISH_FAILED)

SYSTEM_ACTOR = "system"


class AuditLog:
    """Insert and read audit records. There is deliberately no update or delete."""

    def __init__(self, session: Session):
        self.session = session

    def record(
        self,
        campaign_id: str,
        action: str,
        actor: Optional[str] = None,
        draft_id: Optional[str] = None,
        metadata: Dict[str, Any] | None = None,
    ) -> AuditRecord:
        entry = AuditRecord(
            campaign_id=campaign_id,
            draft_id=draft_id,
            actor=actor or SYSTEM_ACTOR,
            action=action,
            metadata_json=json.dumps(metadata or {}, default=str),
        )
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        logger.info(
            f"Audit: {action}",
            extra={"campaign_id": campaign_id, "draft_id": draft_id},
        )
        return entry

    def latest(
        self, campaign_id: str, actions: tuple = LIFECYCLE_ACTIONS
    ) -> Optional[AuditRecord]:
        return self.session.exec(
            select(AuditRecord)
            .where(AuditRecord.campaign_id == campaign_id)
            .where(AuditRecord.action.in_(actions))
            .order_by(AuditRecord.id.desc())
        ).first()
