"""AdPilot — Ad Lifecycle API Routes."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from adpilot.api.errors import http_error
from adpilot.core.errors import PublishPipelineError
from adpilot.core.logging import get_logger
from adpilot.database import get_session
from adpilot.publishing.lifecycle import LifecycleController

logger = get_logger("api.ads")

router = APIRouter(prefix="/ads", tags=["Ads"])


class PauseRequest(BaseModel):
    actor: Optional[str] = None


class ResumeRequest(BaseModel):
    actor: Optional[str] = None
    access_token: Optional[str] = None
    """Use this token instead of the stored one."""


@router.post("/{ad_id}/pause")
async def pause_ad(
    ad_id: str,
    request: Optional[PauseRequest] = None,
    session: Session = Depends(get_session),
):
    """Pause one published ad."""
    request = request or PauseRequest()
    try:
        result = await LifecycleController(session).pause(ad_id, actor=request.actor)
    except PublishPipelineError as e:
        logger.warning(f"Pause failed: {e}", extra={"draft_id": ad_id})
        raise http_error(e)
    return {"status": result.status, "changed": result.changed}


@router.post("/{ad_id}/resume")
async def resume_ad(
    ad_id: str,
    request: Optional[ResumeRequest] = None,
    session: Session = Depends(get_session),
):
    """Resume one paused ad, optionally with an out-of-band token."""
    request = request or ResumeRequest()
    try:
        result = await LifecycleController(session).resume(
            ad_id, credential_override=request.access_token, actor=request.actor
        )
    except PublishPipelineError as e:
        logger.warning(f"Resume failed: {e}", extra={"draft_id": ad_id})
        raise http_error(e)
    return {"status": result.status, "changed": result.changed}
