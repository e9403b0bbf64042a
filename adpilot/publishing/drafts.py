"""AdPilot — Draft and campaign record access for the publish pipeline."""

from typing import Tuple

from sqlmodel import Session

from adpilot.core.errors import DraftNotFoundError, NotFoundError
from adpilot.models.draft_models import Draft
from adpilot.models.publish_models import CampaignRecord, DraftRecord, _utcnow


class DraftStore:
    def __init__(self, session: Session):
        self.session = session

    def get_record(self, draft_id: str) -> DraftRecord:
        record = self.session.get(DraftRecord, draft_id)
        if record is None:
            raise DraftNotFoundError(f"Draft {draft_id} not found", draft_id=draft_id)
        return record

    def load(self, draft_id: str) -> Tuple[DraftRecord, Draft]:
        record = self.get_record(draft_id)
        return record, Draft.model_validate_json(record.payload_json)

    def campaign(self, campaign_id: str) -> CampaignRecord:
        record = self.session.get(CampaignRecord, campaign_id)
        if record is None:
            raise NotFoundError(
                f"Campaign {campaign_id} not found", campaign_id=campaign_id
            )
        return record

    def save(self, draft: Draft) -> DraftRecord:
        """Store a draft, creating its campaign record on first sight."""
        if self.session.get(CampaignRecord, draft.campaign_id) is None:
            self.session.add(
                CampaignRecord(
                    id=draft.campaign_id, owner_id=draft.owner_id, name=draft.name
                )
            )
        record = self.session.get(DraftRecord, draft.id)
        if record is None:
            record = DraftRecord(
                id=draft.id,
                campaign_id=draft.campaign_id,
                owner_id=draft.owner_id,
                payload_json=draft.model_dump_json(),
            )
        else:
            record.payload_json = draft.model_dump_json()
            record.updated_at = _utcnow()
        self.session.add(record)
        self.session.commit()
        self.session.refresh(record)
        return record

    def update_campaign(self, campaign: CampaignRecord, **fields) -> CampaignRecord:
        for key, value in fields.items():
            setattr(campaign, key, value)
        campaign.updated_at = _utcnow()
        self.session.add(campaign)
        self.session.commit()
        return campaign

    def update_draft(self, record: DraftRecord, **fields) -> DraftRecord:
        for key, value in fields.items():
            setattr(record, key, value)
        record.updated_at = _utcnow()
        self.session.add(record)
        self.session.commit()
        return record
