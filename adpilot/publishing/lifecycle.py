"""AdPilot — Lifecycle Controller: pause / resume of one published ad."""

from typing import Callable, Optional

from pydantic import BaseModel
from sqlmodel import Session

from adpilot.connectors.meta.client import MetaClient
from adpilot.core.errors import (
    CapabilityDisabledError,
    NotPublishedError,
    PublishPipelineError,
)
from adpilot.core.logging import get_logger
from adpilot.core.retry import RetryPolicy
from adpilot.publishing.audit import AD_PAUSED, AD_RESUMED, AD_STATUS_FAILED, AuditLog
from adpilot.publishing.credentials import Credential, CredentialResolver
from adpilot.publishing.drafts import DraftStore
from adpilot.publishing.resources import AD, ResourceStore

logger = get_logger("publishing.lifecycle")

TRANSITIONS = {
    "pause": ("PAUSED", "paused", AD_PAUSED),
    "resume": ("ACTIVE", "active", AD_RESUMED),
}


class LifecycleResult(BaseModel):
    draft_id: str
    remote_ad_id: str
    status: str
    changed: bool = True


class LifecycleController:
    """Pause and resume single ads. Sibling ads and parents are never touched."""

    def __init__(
        self,
        session: Session,
        client_factory: Callable[[str], MetaClient] | None = None,
    ):
        self.session = session
        self.resources = ResourceStore(session)
        self.drafts = DraftStore(session)
        self.audit = AuditLog(session)
        self.credentials = CredentialResolver(session)
        self.client_factory = client_factory or (
            lambda token: MetaClient(token, retry_policy=RetryPolicy.from_settings())
        )

    async def pause(self, ad_id: str, actor: Optional[str] = None) -> LifecycleResult:
        return await self._transition(ad_id, "pause", None, actor)

    async def resume(
        self,
        ad_id: str,
        credential_override: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> LifecycleResult:
        return await self._transition(ad_id, "resume", credential_override, actor)

    async def _transition(
        self,
        ad_id: str,
        operation: str,
        credential_override: Optional[str],
        actor: Optional[str],
    ) -> LifecycleResult:
        remote_status, local_status, action = TRANSITIONS[operation]

        resource = self.resources.live(AD, ad_id)
        if resource is None:
            raise NotPublishedError(
                f"Ad {ad_id} has not been published yet", ad_id=ad_id
            )
        if not resource.capabilities.get(operation, False):
            raise CapabilityDisabledError(
                f"{operation} is disabled for ad {ad_id}", ad_id=ad_id
            )

        record = self.drafts.get_record(ad_id)
        if record.ad_status == local_status:
            logger.info(f"Ad {ad_id} already {local_status}", extra={"draft_id": ad_id})
            return LifecycleResult(
                draft_id=ad_id,
                remote_ad_id=resource.remote_id,
                status=local_status,
                changed=False,
            )

        try:
            if credential_override:
                credential = Credential.from_override(credential_override, record.owner_id)
            else:
                credential = self.credentials.resolve(record.owner_id)

            async with self.client_factory(credential.token) as client:
                await client.update_status(resource.remote_id, remote_status)
        except PublishPipelineError as e:
            logger.error(
                f"{operation} failed for ad {resource.remote_id}: {e.kind.value}: {e.message}",
                extra={"draft_id": ad_id, "campaign_id": record.campaign_id},
            )
            self.audit.record(
                record.campaign_id,
                AD_STATUS_FAILED,
                actor=actor or record.owner_id,
                draft_id=ad_id,
                metadata={
                    "remote_ad_id": resource.remote_id,
                    "operation": operation,
                    "error_kind": e.kind.value,
                    "message": e.message,
                },
            )
            raise

        self.drafts.update_draft(record, ad_status=local_status)
        self.audit.record(
            record.campaign_id,
            action,
            actor=actor or record.owner_id,
            draft_id=ad_id,
            metadata={
                "remote_ad_id": resource.remote_id,
                "status": remote_status,
                "credential": credential.token_type,
            },
        )
        logger.info(
            f"Ad {resource.remote_id} → {remote_status}",
            extra={"draft_id": ad_id, "campaign_id": record.campaign_id},
        )
        return LifecycleResult(
            draft_id=ad_id, remote_ad_id=resource.remote_id, status=local_status
        )
