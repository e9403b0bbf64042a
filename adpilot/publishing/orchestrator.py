"""AdPilot — Publish Orchestrator.

Turns one validated draft into live platform resources:

    credential → images → campaign → ad set → ad

Each created id is committed before the next call is made, so an attempt that
dies halfway leaves a record of exactly what exists remotely. Calling
``publish`` again resumes at the first missing resource. Nothing created
remotely is ever rolled back.
"""

import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel
from sqlmodel import Session

from adpilot.config import settings
from adpilot.connectors.meta import payloads
from adpilot.connectors.meta.client import MetaClient
from adpilot.core.errors import (
    CredentialRejectedError,
    ErrorKind,
    NoCredentialError,
    OwnershipError,
    PublishPipelineError,
)
from adpilot.core.logging import ContextAdapter, get_logger, with_context
from adpilot.core.retry import RetryPolicy
from adpilot.images.cache import SQLAssetCache
from adpilot.images.pipeline import AssetResult, ImagePipeline
from adpilot.models.draft_models import Draft
from adpilot.models.publish_models import CampaignRecord
from adpilot.publishing.audit import (
    PUBLISH_FAILED,
    PUBLISH_STARTED,
    PUBLISHED,
    AuditLog,
)
from adpilot.publishing.credentials import CredentialResolver
from adpilot.publishing.drafts import DraftStore
from adpilot.publishing.resources import AD, ADSET, CAMPAIGN, CREATION_ORDER, ResourceStore

logger = get_logger("publishing.orchestrator")

ClientFactory = Callable[[str], MetaClient]


class PublishResult(BaseModel):
    """Outcome of one publish attempt."""

    success: bool
    draft_id: str
    campaign_id: str = ""
    remote_ids: Dict[str, str] = {}
    created: List[str] = []
    failed_step: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    assets: List[AssetResult] = []
    warnings: List[str] = []
    already_published: bool = False

    def to_response(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "remoteIds": self.remote_ids}
        return {
            "success": False,
            "error": {
                "step": self.failed_step,
                "kind": self.error_kind,
                "message": self.error_message,
                "remoteIds": self.remote_ids,
            },
        }


class PublishOrchestrator:
    def __init__(
        self,
        session: Session,
        pipeline: ImagePipeline | None = None,
        client_factory: ClientFactory | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.session = session
        self.drafts = DraftStore(session)
        self.resources = ResourceStore(session)
        self.audit = AuditLog(session)
        self.credentials = CredentialResolver(session)
        self.pipeline = pipeline or ImagePipeline(cache=SQLAssetCache(session))
        policy = retry_policy or RetryPolicy.from_settings()
        self.client_factory = client_factory or (
            lambda token: MetaClient(token, retry_policy=policy)
        )

    async def publish(
        self,
        draft_id: str,
        owner_id: str | None = None,
        actor: str | None = None,
        republish: bool = False,
    ) -> PublishResult:
        """Run one publish attempt for ``draft_id``.

        Ownership and budget confirmation are the caller's checks; a mismatched
        ``owner_id`` is still refused here as a last line.
        """
        record, draft = self.drafts.load(draft_id)
        if owner_id is not None and draft.owner_id != owner_id:
            raise OwnershipError(
                f"Draft {draft_id} does not belong to {owner_id}", draft_id=draft_id
            )
        actor = actor or draft.owner_id
        campaign_id = draft.campaign_id
        started = time.perf_counter()
        log = with_context(logger, draft_id=draft_id, campaign_id=campaign_id)

        result = PublishResult(success=False, draft_id=draft_id, campaign_id=campaign_id)

        issues = draft.validate_for_publish()
        if issues:
            log.warning(f"Draft failed validation with {len(issues)} issue(s)")
            return self._fail(
                result,
                draft,
                actor,
                step="validate",
                kind=ErrorKind.VALIDATION.value,
                message="; ".join(f"{i.field}: {i.message}" for i in issues),
                extra={"issues": [i.model_dump() for i in issues]},
            )

        result.remote_ids = self.resources.live_for_draft(campaign_id, draft_id)
        replaced_ad = result.remote_ids.pop(AD, None) if republish else None
        if all(step in result.remote_ids for step in CREATION_ORDER):
            log.info("Draft already published, nothing to create")
            result.success = True
            result.already_published = True
            return result

        campaign = self.drafts.campaign(campaign_id)
        missing = [s for s in CREATION_ORDER if s not in result.remote_ids]
        self.audit.record(
            campaign_id,
            PUBLISH_STARTED,
            actor=actor,
            draft_id=draft_id,
            metadata={
                "resume_from": missing[0],
                "existing": dict(result.remote_ids),
                "republish": republish,
                "replaces_ad": replaced_ad,
            },
        )
        self.drafts.update_campaign(campaign, published_status="publishing")

        try:
            failure = await self._run(result, draft, actor, replaced_ad, log)
        except Exception as e:
            log.error(f"Publish aborted by {type(e).__name__}: {e}")
            self._fail(
                result,
                draft,
                actor,
                step="unexpected",
                kind=ErrorKind.FATAL_PAYLOAD.value,
                message=f"{type(e).__name__}: {e}",
            )
            raise
        if failure is not None:
            return failure

        result.success = True
        self.audit.record(
            campaign_id,
            PUBLISHED,
            actor=actor,
            draft_id=draft_id,
            metadata={
                "remote_ids": result.remote_ids,
                "created": result.created,
                "assets": self._asset_summary(result.assets),
                "warnings": result.warnings,
            },
        )
        self.drafts.update_campaign(
            campaign, published_status="active", budget_status="active"
        )
        ad_status = "paused" if settings.publish_initial_status == "PAUSED" else "active"
        self.drafts.update_draft(record, ad_status=ad_status)

        log.info(
            f"Published: {result.remote_ids} (created {result.created})",
            extra={"duration_ms": round((time.perf_counter() - started) * 1000)},
        )
        return result

    async def _run(
        self,
        result: PublishResult,
        draft: Draft,
        actor: str,
        replaced_ad: Optional[str],
        log: ContextAdapter,
    ) -> Optional[PublishResult]:
        """Credential, images, then remote resources. Returns only on failure."""
        # ── Credential ──
        try:
            credential = self.credentials.resolve(draft.owner_id)
        except NoCredentialError as e:
            return self._fail_with(result, draft, actor, "credential", e)

        client = self.client_factory(credential.token)
        async with client:
            # ── Images ──
            account = draft.normalized_ad_account_id
            try:
                result.assets = await self.pipeline.run_batch(
                    draft.creatives, account, client
                )
            except CredentialRejectedError as e:
                return self._fail_with(result, draft, actor, "images", e)

            for asset in result.assets:
                result.warnings.extend(f"{asset.ref}: {w}" for w in asset.warnings)
                if not asset.success and not asset.required:
                    result.warnings.append(
                        f"Optional creative {asset.ref} skipped: {asset.error_message}"
                    )

            failed_required = [a for a in result.assets if a.required and not a.success]
            if failed_required:
                first = failed_required[0]
                return self._fail(
                    result,
                    draft,
                    actor,
                    step="images",
                    kind=first.error_kind or ErrorKind.FATAL_PAYLOAD.value,
                    message="; ".join(
                        f"{a.ref}: {a.error_message}" for a in failed_required
                    ),
                )

            image_hashes = [a.image_hash for a in result.assets if a.success]

            # ── Remote resources, strictly in order ──
            for step in CREATION_ORDER:
                if step in result.remote_ids:
                    continue
                try:
                    if step == AD and replaced_ad:
                        await client.update_status(replaced_ad, "PAUSED")
                        self.resources.supersede(AD, draft.id)
                        log.info(f"Paused superseded ad {replaced_ad}")
                    remote_id = await self._create(
                        step, client, draft, result.remote_ids, image_hashes
                    )
                except PublishPipelineError as e:
                    log.error(
                        f"Creating {step} failed: {e.kind.value}: {e.message}",
                        extra={"stage": step},
                    )
                    return self._fail_with(result, draft, actor, step, e)

                self.resources.record(step, remote_id, draft.campaign_id, draft.id)
                result.remote_ids[step] = remote_id
                result.created.append(step)
        return None

    async def _create(
        self,
        step: str,
        client: MetaClient,
        draft: Draft,
        remote_ids: Dict[str, str],
        image_hashes: List[str],
    ) -> str:
        account = draft.normalized_ad_account_id
        if step == CAMPAIGN:
            return await client.create_campaign(
                account, payloads.build_campaign_payload(draft)
            )
        if step == ADSET:
            return await client.create_adset(
                account, payloads.build_adset_payload(draft, remote_ids[CAMPAIGN])
            )
        return await client.create_ad(
            account, payloads.build_ad_payload(draft, remote_ids[ADSET], image_hashes)
        )

    @staticmethod
    def _asset_summary(assets: List[AssetResult]) -> List[Dict[str, Any]]:
        return [
            a.model_dump(include={"ref", "required", "success", "cached", "error_kind"})
            for a in assets
        ]

    def _fail_with(
        self,
        result: PublishResult,
        draft: Draft,
        actor: str,
        step: str,
        error: PublishPipelineError,
    ) -> PublishResult:
        return self._fail(
            result, draft, actor, step=step, kind=error.kind.value, message=error.message
        )

    def _fail(
        self,
        result: PublishResult,
        draft: Draft,
        actor: str,
        step: str,
        kind: str,
        message: str,
        extra: Dict[str, Any] | None = None,
    ) -> PublishResult:
        """Record the failure and return it. Created resources stay in place."""
        result.success = False
        result.failed_step = step
        result.error_kind = kind
        result.error_message = message

        self.audit.record(
            draft.campaign_id,
            PUBLISH_FAILED,
            actor=actor,
            draft_id=draft.id,
            metadata={
                "step": step,
                "error_kind": kind,
                "message": message,
                "remote_ids": result.remote_ids,
                "created": result.created,
                "assets": self._asset_summary(result.assets),
                **(extra or {}),
            },
        )
        campaign = self.session.get(CampaignRecord, draft.campaign_id)
        if campaign is not None:
            self.drafts.update_campaign(campaign, published_status="error")
        return result
