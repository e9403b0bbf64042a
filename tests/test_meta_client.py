"""Tests for the Meta client: encoding, errors, retries, uploads."""

import json

import httpx
import pytest

from adpilot.connectors.meta.client import MetaClient, _encode_form, _parse_retry_after
from adpilot.core.errors import (
    CredentialRejectedError,
    NetworkTimeoutError,
    PlatformRejectionError,
    RateLimitError,
)
from conftest import FAST_RETRY


def _client(handler) -> MetaClient:
    return MetaClient(
        "tok",
        retry_policy=FAST_RETRY,
        transport=httpx.MockTransport(handler),
        base_url="https://graph.test/v24.0",
    )


class TestHelpers:
    def test_encode_form(self):
        encoded = _encode_form(
            {"name": "x", "special_ad_categories": [], "targeting": {"age_min": 18},
             "flag": True, "skip": None, "budget": 500}
        )
        assert encoded == {
            "name": "x",
            "special_ad_categories": "[]",
            "targeting": '{"age_min":18}',
            "flag": "true",
            "budget": "500",
        }

    def test_retry_after_header(self):
        resp = httpx.Response(429, headers={"retry-after": "7"})
        assert _parse_retry_after(resp) == 7.0

    def test_business_usage_header(self):
        usage = {"123": [{"type": "ads_management", "estimated_time_to_regain_access": 2}]}
        resp = httpx.Response(400, headers={"x-business-use-case-usage": json.dumps(usage)})
        assert _parse_retry_after(resp) == 120.0

    def test_no_hint(self):
        assert _parse_retry_after(httpx.Response(400)) is None


@pytest.mark.asyncio
class TestMetaClient:
    async def test_create_sends_bearer_and_returns_id(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["authorization"]
            seen["path"] = request.url.path
            return httpx.Response(200, json={"id": "120001"})

        async with _client(handler) as client:
            remote_id = await client.create_campaign("act_1", {"name": "C"})
        assert remote_id == "120001"
        assert seen == {"auth": "Bearer tok", "path": "/v24.0/act_1/campaigns"}

    async def test_payload_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(
                400, json={"error": {"code": 100, "message": "Invalid parameter"}}
            )

        async with _client(handler) as client:
            with pytest.raises(PlatformRejectionError, match="Invalid parameter"):
                await client.create_ad("act_1", {})
        assert len(calls) == 1

    async def test_credential_rejection_not_retried(self):
        calls = []

        def handler(request):
            calls.append(1)
            return httpx.Response(
                401, json={"error": {"code": 190, "message": "Session has expired"}}
            )

        async with _client(handler) as client:
            with pytest.raises(CredentialRejectedError):
                await client.get_object("ad_1", ["status"])
        assert len(calls) == 1

    async def test_server_error_retried_then_succeeds(self):
        calls = []

        def handler(request):
            calls.append(1)
            if len(calls) < 3:
                return httpx.Response(500, json={"error": {"code": 1}})
            return httpx.Response(200, json={"id": "adset_9"})

        async with _client(handler) as client:
            assert await client.create_adset("act_1", {}) == "adset_9"
        assert len(calls) == 3

    async def test_timeouts_exhaust_attempts(self):
        calls = []

        def handler(request):
            calls.append(1)
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            with pytest.raises(NetworkTimeoutError):
                await client.create_ad("act_1", {})
        assert len(calls) == 3

    async def test_rate_limit_surfaces_after_attempts(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"code": 17, "message": "limit"}})

        async with _client(handler) as client:
            with pytest.raises(RateLimitError):
                await client.update_status("ad_1", "PAUSED")

    async def test_upload_image_returns_hash(self):
        def handler(request):
            assert b"filename=\"abc.jpg\"" in request.content
            return httpx.Response(
                200, json={"images": {"abc.jpg": {"hash": "h1", "url": "https://cdn/x"}}}
            )

        async with _client(handler) as client:
            result = await client.upload_image("act_1", b"\xff\xd8data", "abc.jpg")
        assert result == {"hash": "h1", "url": "https://cdn/x"}

    async def test_upload_without_hash_is_rejection(self):
        def handler(request):
            return httpx.Response(200, json={"images": {}})

        async with _client(handler) as client:
            with pytest.raises(PlatformRejectionError):
                await client.upload_image("act_1", b"data", "abc.jpg")
