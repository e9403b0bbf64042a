"""AdPilot — Meta Marketing API Client.

Handles bearer authentication, timeouts, error classification and retry of
transient failures. Every call is a suspension point; nothing blocks.
"""

import json
from typing import Any, Dict, List, Optional

import httpx

from adpilot.config import settings
from adpilot.core.errors import (
    NetworkTimeoutError,
    PlatformRejectionError,
    PlatformUnavailableError,
    build_platform_error,
)
from adpilot.core.logging import get_logger
from adpilot.core.retry import RetryPolicy, retry_transient

logger = get_logger("meta.client")


def _encode_form(payload: Dict[str, Any]) -> Dict[str, str]:
    """Graph API form encoding: scalars as strings, structures as JSON."""
    encoded: Dict[str, str] = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        elif isinstance(value, (dict, list)):
            encoded[key] = json.dumps(value, separators=(",", ":"))
        else:
            encoded[key] = str(value)
    return encoded


def _parse_retry_after(resp: httpx.Response) -> Optional[float]:
    """Seconds to wait, from Retry-After or the business-use-case usage header."""
    header = resp.headers.get("retry-after")
    if header:
        try:
            return float(header)
        except ValueError:
            pass
    usage = resp.headers.get("x-business-use-case-usage")
    if usage:
        try:
            entries = json.loads(usage)
        except ValueError:
            return None
        minutes = [
            item.get("estimated_time_to_regain_access", 0)
            for bucket in entries.values()
            for item in (bucket or [])
        ]
        if minutes and max(minutes) > 0:
            return float(max(minutes) * 60)
    return None


class MetaClient:
    """Async HTTP client for the Meta Marketing API, bound to one access token."""

    def __init__(
        self,
        access_token: str,
        retry_policy: RetryPolicy | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        base_url: str | None = None,
    ):
        self.access_token = access_token
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self.base_url = base_url or settings.meta_graph_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=settings.meta_request_timeout,
                transport=self._transport,
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "MetaClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    # ── Core Request Method ──

    async def _request_once(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        data: Dict[str, Any] | None = None,
        files: Dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Dict[str, Any]:
        client = await self._get_client()
        url = f"{self.base_url}/{path.lstrip('/')}"
        kwargs: Dict[str, Any] = {"params": params}
        if data is not None:
            kwargs["data"] = _encode_form(data)
        if files is not None:
            kwargs["files"] = files
        if timeout is not None:
            kwargs["timeout"] = timeout

        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkTimeoutError(f"{method} {path} timed out: {e}") from e
        except httpx.RequestError as e:
            raise PlatformUnavailableError(f"{method} {path} failed: {e}") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code >= 400 or (isinstance(body, dict) and "error" in body):
            err = build_platform_error(
                resp.status_code, body, retry_after=_parse_retry_after(resp)
            )
            logger.warning(
                f"Meta API error on {method} {path}: {err.kind.value}: {err}",
                extra={"status_code": resp.status_code},
            )
            raise err

        if not isinstance(body, dict):
            raise PlatformRejectionError(
                f"Unexpected response from {path}", status_code=resp.status_code
            )
        return body

    async def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any] | None = None,
        data: Dict[str, Any] | None = None,
        files: Dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Dict[str, Any]:
        """Make a request with retry + rate-limit handling."""
        return await retry_transient(
            lambda: self._request_once(method, path, params, data, files, timeout),
            self.retry_policy,
            label=f"{method} {path}",
        )

    async def _create(self, path: str, payload: Dict[str, Any]) -> str:
        result = await self._request("POST", path, data=payload)
        remote_id = result.get("id")
        if not remote_id:
            raise PlatformRejectionError(f"Create on {path} returned no id")
        return str(remote_id)

    # ── Resource Creation ──

    async def create_campaign(self, ad_account_id: str, payload: Dict[str, Any]) -> str:
        return await self._create(f"{ad_account_id}/campaigns", payload)

    async def create_adset(self, ad_account_id: str, payload: Dict[str, Any]) -> str:
        return await self._create(f"{ad_account_id}/adsets", payload)

    async def create_ad(self, ad_account_id: str, payload: Dict[str, Any]) -> str:
        return await self._create(f"{ad_account_id}/ads", payload)

    async def upload_image(
        self, ad_account_id: str, data: bytes, filename: str
    ) -> Dict[str, str]:
        """Upload JPEG bytes to the ad account image library.

        Returns ``{"hash": ..., "url": ...}``.
        """
        result = await self._request(
            "POST",
            f"{ad_account_id}/adimages",
            files={"filename": (filename, data, "image/jpeg")},
            timeout=settings.meta_upload_timeout,
        )
        images = result.get("images") or {}
        entry = images.get(filename) or next(iter(images.values()), None)
        if not entry or not entry.get("hash"):
            raise PlatformRejectionError("Image upload returned no hash")
        return {"hash": entry["hash"], "url": entry.get("url", "")}

    # ── Status ──

    async def update_status(self, object_id: str, status: str) -> Dict[str, Any]:
        return await self._request("POST", object_id, data={"status": status})

    async def get_object(self, object_id: str, fields: List[str]) -> Dict[str, Any]:
        return await self._request(
            "GET", object_id, params={"fields": ",".join(fields)}
        )
