"""AdPilot — Asset cache (stage 4).

Maps (ad account, processed-content checksum) to an uploaded image handle.
Entries are written once and never change; concurrent writers for the same
key converge on whichever entry landed first.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from adpilot.core.logging import get_logger
from adpilot.models.publish_models import AssetCacheEntry

logger = get_logger("images.cache")


@dataclass(frozen=True)
class CachedImage:
    image_hash: str
    image_url: str = ""


class AssetCache(ABC):
    """Abstract checksum → uploaded-image store."""

    @abstractmethod
    def get(self, ad_account_id: str, checksum: str) -> Optional[CachedImage]:
        ...

    @abstractmethod
    def put(self, ad_account_id: str, checksum: str, image: CachedImage) -> CachedImage:
        """Store ``image`` unless the key exists; return the stored entry."""
        ...


class InMemoryAssetCache(AssetCache):
    def __init__(self):
        self._entries: Dict[Tuple[str, str], CachedImage] = {}

    def get(self, ad_account_id: str, checksum: str) -> Optional[CachedImage]:
        return self._entries.get((ad_account_id, checksum))

    def put(self, ad_account_id: str, checksum: str, image: CachedImage) -> CachedImage:
        return self._entries.setdefault((ad_account_id, checksum), image)


class SQLAssetCache(AssetCache):
    """Cache persisted in the ``asset_cache`` table."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, ad_account_id: str, checksum: str) -> Optional[CachedImage]:
        entry = self.session.get(AssetCacheEntry, (ad_account_id, checksum))
        if entry is None:
            return None
        return CachedImage(image_hash=entry.image_hash, image_url=entry.image_url)

    def put(self, ad_account_id: str, checksum: str, image: CachedImage) -> CachedImage:
        existing = self.get(ad_account_id, checksum)
        if existing is not None:
            return existing

        self.session.add(
            AssetCacheEntry(
                ad_account_id=ad_account_id,
                checksum=checksum,
                image_hash=image.image_hash,
                image_url=image.image_url,
            )
        )
        try:
            self.session.commit()
        except IntegrityError:
            # Another writer got there first
            self.session.rollback()
            winner = self.get(ad_account_id, checksum)
            if winner is None:
                raise
            logger.info(f"Cache entry for {checksum[:12]} already written, keeping it")
            return winner
        return image
