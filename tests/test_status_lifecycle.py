"""Tests for the status tracker and the lifecycle controller."""

import httpx
import pytest
from sqlmodel import select

from adpilot.core.errors import (
    CapabilityDisabledError,
    CredentialRejectedError,
    NotPublishedError,
)
from adpilot.models.publish_models import (
    AuditRecord,
    DraftRecord,
    MetaToken,
    RemoteResourceRecord,
)
from adpilot.publishing.budget_gate import BudgetConfirmation, BudgetGate
from adpilot.publishing.lifecycle import LifecycleController
from adpilot.publishing.status import PublishState, StatusTracker
from adpilot.scheduler.jobs import sync_campaign_statuses


@pytest.mark.asyncio
class TestStatusTracker:
    async def test_unpublished(self, session, seeded, platform):
        status = await StatusTracker(session, platform.client_factory).get_status(
            seeded.campaign_id
        )
        assert status.state == PublishState.UNPUBLISHED
        assert status.remote_ids == {}

    async def test_budget_confirmed(self, session, seeded, platform):
        BudgetGate(session).confirm(
            BudgetConfirmation(draft_id=seeded.id, confirmed_daily_budget=20, currency="usd")
        )
        status = await StatusTracker(session, platform.client_factory).get_status(
            seeded.campaign_id
        )
        assert status.state == PublishState.BUDGET_CONFIRMED

    async def test_active_after_publish(self, session, seeded, orchestrator, platform):
        result = await orchestrator.publish(seeded.id)
        calls = len(platform.requests)
        status = await StatusTracker(session, platform.client_factory).get_status(
            seeded.campaign_id
        )
        assert status.state == PublishState.ACTIVE
        assert status.remote_ids == {
            "campaign": result.remote_ids["campaign"],
            "adset": result.remote_ids["adset"],
        }
        assert [a.remote_ad_id for a in status.ads] == [result.remote_ids["ad"]]
        assert status.last_action == "published"
        assert len(platform.requests) == calls

    async def test_later_confirmation_keeps_live_campaign_active(
        self, session, seeded, orchestrator, platform
    ):
        await orchestrator.publish(seeded.id)
        BudgetGate(session).confirm(
            BudgetConfirmation(draft_id=seeded.id, confirmed_daily_budget=20, currency="USD")
        )
        again = await orchestrator.publish(seeded.id)
        assert again.already_published

        status = await StatusTracker(session, platform.client_factory).get_status(
            seeded.campaign_id
        )
        assert status.state == PublishState.ACTIVE
        assert status.last_action == "published"

    async def test_pause_does_not_change_publish_state(
        self, session, seeded, orchestrator, platform
    ):
        await orchestrator.publish(seeded.id)
        await LifecycleController(session, platform.client_factory).pause(seeded.id)
        status = await StatusTracker(session, platform.client_factory).get_status(
            seeded.campaign_id
        )
        assert status.state == PublishState.ACTIVE
        assert status.ads[0].ad_status == "paused"

    async def test_publish_failed(self, session, seeded, orchestrator, platform):
        platform.fail("ads", "timeout", "timeout", "timeout")
        await orchestrator.publish(seeded.id)
        status = await StatusTracker(session, platform.client_factory).get_status(
            seeded.campaign_id
        )
        assert status.state == PublishState.PUBLISH_FAILED
        assert set(status.remote_ids) == {"campaign", "adset"}

    async def test_resources_without_audit_are_publishing(self, session, platform):
        session.add(
            RemoteResourceRecord(
                scope_id="camp_9", resource_type="campaign", remote_id="c1",
                campaign_id="camp_9",
            )
        )
        session.commit()
        status = await StatusTracker(session, platform.client_factory).get_status("camp_9")
        assert status.state == PublishState.PUBLISHING

    async def test_live_refresh(self, session, seeded, orchestrator, platform):
        result = await orchestrator.publish(seeded.id)
        platform.statuses[result.remote_ids["ad"]] = "PAUSED"

        status = await StatusTracker(session, platform.client_factory).get_status(
            seeded.campaign_id, live=True
        )
        assert status.live and not status.stale
        assert status.ads[0].effective_status == "PAUSED"
        assert status.ads[0].ad_status == "paused"

    async def test_live_failure_degrades_to_local(
        self, session, seeded, orchestrator, platform
    ):
        await orchestrator.publish(seeded.id)
        for token in session.exec(select(MetaToken)).all():
            session.delete(token)
        session.commit()

        status = await StatusTracker(session, platform.client_factory).get_status(
            seeded.campaign_id, live=True
        )
        assert status.state == PublishState.ACTIVE
        assert status.stale
        assert not status.live
        assert "No Meta access token" in status.live_error


@pytest.mark.asyncio
class TestLifecycleController:
    async def test_resume_unpublished_makes_no_call(self, session, seeded, platform):
        controller = LifecycleController(session, platform.client_factory)
        with pytest.raises(NotPublishedError):
            await controller.resume(seeded.id)
        assert platform.requests == []

    async def test_pause_then_resume(self, session, seeded, orchestrator, platform):
        result = await orchestrator.publish(seeded.id)
        ad_remote_id = result.remote_ids["ad"]
        controller = LifecycleController(session, platform.client_factory)

        paused = await controller.pause(seeded.id, actor="owner_1")
        assert paused.status == "paused" and paused.changed
        assert platform.statuses == {ad_remote_id: "PAUSED"}
        assert session.get(DraftRecord, seeded.id).ad_status == "paused"

        resumed = await controller.resume(seeded.id)
        assert resumed.status == "active"
        assert platform.statuses == {ad_remote_id: "ACTIVE"}

        actions = [
            a.action for a in session.exec(select(AuditRecord).order_by(AuditRecord.id))
        ]
        assert actions[-2:] == ["ad_paused", "ad_resumed"]

    async def test_only_addressed_ad_is_touched(
        self, session, seeded, orchestrator, platform
    ):
        from adpilot.publishing.drafts import DraftStore
        from conftest import make_draft

        first = await orchestrator.publish(seeded.id)
        DraftStore(session).save(make_draft(id="draft_2"))
        await orchestrator.publish("draft_2")

        await LifecycleController(session, platform.client_factory).pause(seeded.id)

        assert platform.statuses == {first.remote_ids["ad"]: "PAUSED"}
        assert session.get(DraftRecord, "draft_2").ad_status == "active"

    async def test_already_paused_is_noop(self, session, seeded, orchestrator, platform):
        await orchestrator.publish(seeded.id)
        controller = LifecycleController(session, platform.client_factory)
        await controller.pause(seeded.id)
        calls = len(platform.requests)

        again = await controller.pause(seeded.id)
        assert not again.changed
        assert len(platform.requests) == calls

    async def test_resume_with_credential_override(
        self, session, seeded, orchestrator, platform
    ):
        await orchestrator.publish(seeded.id)
        controller = LifecycleController(session, platform.client_factory)
        await controller.pause(seeded.id)

        await controller.resume(seeded.id, credential_override="oob-token")
        assert platform.tokens[-1] == "Bearer oob-token"

    async def test_rejected_status_change_is_audited(
        self, session, seeded, orchestrator, platform
    ):
        result = await orchestrator.publish(seeded.id)
        ad_remote_id = result.remote_ids["ad"]
        platform.fail(
            ad_remote_id,
            httpx.Response(401, json={"error": {"code": 190, "message": "expired"}}),
        )

        with pytest.raises(CredentialRejectedError):
            await LifecycleController(session, platform.client_factory).pause(seeded.id)

        failed = session.exec(
            select(AuditRecord).where(AuditRecord.action == "ad_status_failed")
        ).one()
        assert failed.metadata_dict["operation"] == "pause"
        assert failed.metadata_dict["error_kind"] == "fatal_credential"
        assert session.get(DraftRecord, seeded.id).ad_status == "active"

    async def test_capability_disabled(self, session, seeded, orchestrator, platform):
        await orchestrator.publish(seeded.id)
        ad = session.exec(
            select(RemoteResourceRecord).where(RemoteResourceRecord.resource_type == "ad")
        ).one()
        ad.capabilities_json = '{"pause": false, "resume": true}'
        session.add(ad)
        session.commit()
        calls = len(platform.requests)

        with pytest.raises(CapabilityDisabledError):
            await LifecycleController(session, platform.client_factory).pause(seeded.id)
        assert len(platform.requests) == calls


@pytest.mark.asyncio
class TestStatusSyncJob:
    async def test_writes_effective_status(self, session, seeded, orchestrator, platform):
        result = await orchestrator.publish(seeded.id)
        platform.statuses[result.remote_ids["ad"]] = "PAUSED"

        updated = await sync_campaign_statuses(
            session, StatusTracker(session, platform.client_factory)
        )

        assert updated == 1
        record = session.get(DraftRecord, seeded.id)
        assert record.effective_status == "PAUSED"
        assert record.ad_status == "paused"
