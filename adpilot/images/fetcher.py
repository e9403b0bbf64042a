"""AdPilot — Creative storage fetcher (pipeline stage 1)."""

from dataclasses import dataclass
from typing import Optional

import httpx

from adpilot.config import settings
from adpilot.core.errors import (
    FetchError,
    NetworkTimeoutError,
    NotFoundError,
    ValidationError,
)
from adpilot.core.logging import get_logger
from adpilot.core.retry import RetryPolicy, retry_transient

logger = get_logger("images.fetcher")


@dataclass(frozen=True)
class FetchedImage:
    ref: str
    data: bytes
    content_type: str = ""


class ImageFetcher:
    """Retrieve raw image bytes from creative storage by reference.

    A reference is either an absolute URL or a path relative to
    ``storage_base_url``. Missing objects fail permanently; everything that
    looks like an outage is retried.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.storage_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.storage_api_key
        self.retry_policy = retry_policy or RetryPolicy.from_settings(
            settings.fetch_max_attempts
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "image/*", "User-Agent": "AdPilot/1.0"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                timeout=settings.fetch_timeout,
                transport=self._transport,
                headers=headers,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def resolve_url(self, ref: str) -> str:
        if ref.startswith(("http://", "https://")):
            return ref
        if not self.base_url:
            raise NotFoundError(f"Relative reference '{ref}' with no storage base URL")
        return f"{self.base_url}/{ref.lstrip('/')}"

    async def _fetch_once(self, ref: str, url: str) -> FetchedImage:
        client = await self._get_client()
        try:
            resp = await client.get(url)
        except httpx.TimeoutException as e:
            raise NetworkTimeoutError(f"Fetching {ref} timed out") from e
        except httpx.RequestError as e:
            raise FetchError(f"Storage unreachable for {ref}: {e}") from e

        if resp.status_code in (404, 410):
            raise NotFoundError(f"Image not found: {ref}")
        if resp.status_code == 429 or resp.status_code >= 500:
            raise FetchError(f"Storage returned HTTP {resp.status_code} for {ref}")
        if resp.status_code >= 400:
            raise NotFoundError(f"Storage refused {ref}: HTTP {resp.status_code}")

        data = resp.content
        if len(data) > settings.image_max_file_size:
            raise ValidationError(
                f"Image {ref} is {len(data)} bytes, over the "
                f"{settings.image_max_file_size} byte limit",
                violations=["FILE_TOO_LARGE"],
            )
        return FetchedImage(
            ref=ref, data=data, content_type=resp.headers.get("content-type", "")
        )

    async def fetch(self, ref: str) -> FetchedImage:
        url = self.resolve_url(ref)
        image = await retry_transient(
            lambda: self._fetch_once(ref, url),
            self.retry_policy,
            label=f"fetch {ref}",
        )
        logger.info(f"Fetched {ref} ({len(image.data)} bytes)", extra={"stage": "fetch"})
        return image
