"""AdPilot — Persistence Models for the publish pipeline."""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlmodel import SQLModel, Field, UniqueConstraint


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CampaignRecord(SQLModel, table=True):
    """Internal campaign. Groups the drafts that publish under one remote campaign."""

    __tablename__ = "campaigns"

    id: str = Field(primary_key=True)
    owner_id: str = Field(index=True)
    name: str = Field(default="")
    budget_status: str = Field(default="draft", description="draft | confirmed | active")
    published_status: str = Field(
        default="unpublished", description="unpublished | publishing | active | error"
    )
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class DraftRecord(SQLModel, table=True):
    """Stored Draft. ``payload_json`` holds the full ``Draft`` document."""

    __tablename__ = "drafts"

    id: str = Field(primary_key=True)
    campaign_id: str = Field(index=True)
    owner_id: str = Field(index=True)
    payload_json: str = Field(description="Draft as JSON")
    ad_status: str = Field(default="draft", description="draft | active | paused")
    effective_status: Optional[str] = Field(
        default=None, description="Last status observed on the platform"
    )
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class MetaToken(SQLModel, table=True):
    """Stored access token. At most one per (owner, type)."""

    __tablename__ = "meta_tokens"
    __table_args__ = (
        UniqueConstraint("owner_id", "token_type", name="uq_meta_token_owner_type"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    token_type: str = Field(description="user | system")
    token: str
    app_id: str = Field(default="")
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)


class RemoteResourceRecord(SQLModel, table=True):
    """Platform identifier of a created entity. Append-only.

    ``scope_id`` is what the resource belongs to locally: the campaign id for
    campaign and adset resources, the draft id for ads.
    """

    __tablename__ = "remote_resources"

    id: Optional[int] = Field(default=None, primary_key=True)
    scope_id: str = Field(index=True)
    resource_type: str = Field(index=True, description="campaign | adset | ad")
    remote_id: str
    campaign_id: str = Field(index=True)
    draft_id: Optional[str] = Field(default=None, index=True)
    capabilities_json: str = Field(default='{"pause": true, "resume": true}')
    superseded: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def capabilities(self) -> Dict[str, bool]:
        return json.loads(self.capabilities_json or "{}")


class AuditRecord(SQLModel, table=True):
    """Immutable history entry. Inserted, never updated or deleted."""

    __tablename__ = "campaign_audit_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    campaign_id: str = Field(index=True)
    draft_id: Optional[str] = Field(default=None, index=True)
    actor: str
    action: str = Field(index=True)
    metadata_json: str = Field(default="{}")
    created_at: datetime = Field(default_factory=_utcnow, index=True)

    @property
    def metadata_dict(self) -> Dict[str, Any]:
        return json.loads(self.metadata_json or "{}")


class AssetCacheEntry(SQLModel, table=True):
    """Uploaded image handle keyed by processed-content checksum."""

    __tablename__ = "asset_cache"

    ad_account_id: str = Field(primary_key=True)
    checksum: str = Field(primary_key=True)
    image_hash: str
    image_url: str = Field(default="")
    created_at: datetime = Field(default_factory=_utcnow)
