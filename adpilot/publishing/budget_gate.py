"""AdPilot — Budget confirmation gate.

Two explicit phases: ``propose`` returns the budget the user is about to
commit to and the fields a confirmation must carry; ``confirm`` checks those
fields against the draft and records the confirmation.
"""

from typing import List, Optional

from pydantic import BaseModel
from sqlmodel import Session

from adpilot.core.errors import BudgetNotConfirmedError, DraftValidationError
from adpilot.core.logging import get_logger
from adpilot.models.draft_models import to_minor_units
from adpilot.models.publish_models import AuditRecord
from adpilot.publishing.audit import BUDGET_CONFIRMED, AuditLog
from adpilot.publishing.drafts import DraftStore

logger = get_logger("publishing.budget")

CONFIRMED_STATUSES = {"confirmed", "active"}


class BudgetProposal(BaseModel):
    campaign_id: str
    draft_id: str
    daily_budget: float
    daily_budget_minor: int
    currency: str
    duration_days: Optional[int] = None
    lifetime_budget_minor: Optional[int] = None
    required_fields: List[str] = ["confirmed_daily_budget", "currency"]


class BudgetConfirmation(BaseModel):
    draft_id: str
    confirmed_daily_budget: float
    currency: str


class BudgetGate:
    def __init__(self, session: Session):
        self.session = session
        self.drafts = DraftStore(session)
        self.audit = AuditLog(session)

    def propose(self, draft_id: str) -> BudgetProposal:
        _, draft = self.drafts.load(draft_id)
        if draft.budget is None:
            raise DraftValidationError(
                "Draft has no budget to confirm", violations=["budget"]
            )
        budget = draft.budget
        days = budget.duration_days
        return BudgetProposal(
            campaign_id=draft.campaign_id,
            draft_id=draft.id,
            daily_budget=budget.daily_budget,
            daily_budget_minor=budget.daily_budget_minor,
            currency=budget.currency.upper(),
            duration_days=days,
            lifetime_budget_minor=budget.daily_budget_minor * days if days else None,
        )

    def confirm(
        self, confirmation: BudgetConfirmation, actor: Optional[str] = None
    ) -> AuditRecord:
        proposal = self.propose(confirmation.draft_id)
        currency = confirmation.currency.upper()
        confirmed_minor = to_minor_units(confirmation.confirmed_daily_budget, currency)

        if currency != proposal.currency or confirmed_minor != proposal.daily_budget_minor:
            raise BudgetNotConfirmedError(
                f"Confirmed budget {confirmation.confirmed_daily_budget} {currency} "
                f"does not match draft budget {proposal.daily_budget} {proposal.currency}",
                draft_id=confirmation.draft_id,
            )

        campaign = self.drafts.campaign(proposal.campaign_id)
        if campaign.budget_status != "active":
            self.drafts.update_campaign(campaign, budget_status="confirmed")

        logger.info(
            f"Budget confirmed: {proposal.daily_budget_minor} {currency}/day",
            extra={"campaign_id": proposal.campaign_id, "draft_id": proposal.draft_id},
        )
        return self.audit.record(
            proposal.campaign_id,
            BUDGET_CONFIRMED,
            actor=actor or campaign.owner_id,
            draft_id=proposal.draft_id,
            metadata=proposal.model_dump(exclude={"required_fields"}),
        )

    def is_confirmed(self, campaign_id: str) -> bool:
        return self.drafts.campaign(campaign_id).budget_status in CONFIRMED_STATUSES

    def require_confirmed(self, campaign_id: str) -> None:
        if not self.is_confirmed(campaign_id):
            raise BudgetNotConfirmedError(
                f"Budget for campaign {campaign_id} has not been confirmed",
                campaign_id=campaign_id,
            )
