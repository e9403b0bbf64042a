"""AdPilot — Publish & Status API Routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlmodel import Session

from adpilot.api.errors import http_error
from adpilot.core.errors import PublishPipelineError
from adpilot.core.logging import get_logger
from adpilot.database import get_session
from adpilot.publishing.budget_gate import BudgetConfirmation, BudgetGate, BudgetProposal
from adpilot.publishing.drafts import DraftStore
from adpilot.publishing.orchestrator import PublishOrchestrator
from adpilot.publishing.status import StatusTracker

logger = get_logger("api.publish")

router = APIRouter(prefix="/campaigns", tags=["Publish"])


# ── Request Models ──


class PublishRequest(BaseModel):
    """Request body for POST /campaigns/{campaign_id}/drafts/{draft_id}/publish."""

    owner_id: str
    confirmed_daily_budget: Optional[float] = None
    """Daily budget the user confirmed, in major currency units."""
    currency: Optional[str] = None
    republish: bool = False
    """Supersede the draft's existing ad and create a new one."""

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"owner_id": "user_1", "confirmed_daily_budget": 20, "currency": "USD"},
                {"owner_id": "user_1"},
            ]
        }
    }


def _load_in_campaign(session: Session, campaign_id: str, draft_id: str):
    record = DraftStore(session).get_record(draft_id)
    if record.campaign_id != campaign_id:
        raise HTTPException(
            status_code=404,
            detail=f"Draft {draft_id} is not part of campaign {campaign_id}",
        )
    return record


# ── Endpoints ──


@router.post("/{campaign_id}/drafts/{draft_id}/prepare-publish", response_model=BudgetProposal)
async def prepare_publish(
    campaign_id: str,
    draft_id: str,
    session: Session = Depends(get_session),
):
    """Return the budget the caller must confirm before publishing."""
    try:
        _load_in_campaign(session, campaign_id, draft_id)
        return BudgetGate(session).propose(draft_id)
    except PublishPipelineError as e:
        raise http_error(e)


@router.post("/{campaign_id}/drafts/{draft_id}/publish")
async def publish_draft(
    campaign_id: str,
    draft_id: str,
    request: PublishRequest,
    session: Session = Depends(get_session),
):
    """Publish one draft as campaign → ad set → ad.

    A budget confirmation in the body is recorded first. Publishing is refused
    until the campaign's budget has been confirmed at least once.
    """
    try:
        record = _load_in_campaign(session, campaign_id, draft_id)
        if record.owner_id != request.owner_id:
            raise HTTPException(status_code=403, detail="Draft belongs to another owner")

        gate = BudgetGate(session)
        if request.confirmed_daily_budget is not None and request.currency:
            gate.confirm(
                BudgetConfirmation(
                    draft_id=draft_id,
                    confirmed_daily_budget=request.confirmed_daily_budget,
                    currency=request.currency,
                ),
                actor=request.owner_id,
            )
        gate.require_confirmed(campaign_id)

        orchestrator = PublishOrchestrator(session)
        try:
            result = await orchestrator.publish(
                draft_id,
                owner_id=request.owner_id,
                actor=request.owner_id,
                republish=request.republish,
            )
        finally:
            await orchestrator.pipeline.close()
        return result.to_response()
    except PublishPipelineError as e:
        logger.error(f"Publish failed: {e}", extra={"draft_id": draft_id})
        raise http_error(e)


@router.get("/{campaign_id}/status")
async def campaign_status(
    campaign_id: str,
    live: bool = Query(False, description="Also ask the platform for each ad's status"),
    session: Session = Depends(get_session),
):
    """Where the campaign is in its publish lifecycle."""
    status = await StatusTracker(session).get_status(campaign_id, live=live)
    return status.to_response()
