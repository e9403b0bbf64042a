"""Shared fixtures: in-memory database, fake platform and storage, images."""

import io
from typing import Dict, List
from urllib.parse import parse_qs

import httpx
import pytest
from PIL import Image, ImageDraw
from sqlmodel import Session

from adpilot.connectors.meta.client import MetaClient
from adpilot.core.retry import RetryPolicy
from adpilot.database import build_engine, init_db
from adpilot.images.cache import InMemoryAssetCache
from adpilot.images.fetcher import ImageFetcher
from adpilot.images.pipeline import ImagePipeline
from adpilot.models.draft_models import (
    Budget,
    CopyVariant,
    CreativeAsset,
    Destination,
    DestinationType,
    Draft,
    Goal,
    LocationTarget,
    Targeting,
)
from adpilot.models.publish_models import MetaToken
from adpilot.publishing.drafts import DraftStore
from adpilot.publishing.orchestrator import PublishOrchestrator

FAST_RETRY = RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)
STORAGE_URL = "https://storage.test"


def make_image(width: int, height: int, fmt: str = "JPEG", mode: str = "RGB") -> bytes:
    """Render a simple non-uniform test image."""
    fill = (30, 120, 200, 255) if mode == "RGBA" else (30, 120, 200)
    img = Image.new(mode, (width, height), fill[: len(mode)] if mode != "L" else 120)
    draw = ImageDraw.Draw(img)
    draw.rectangle([width // 4, height // 4, width // 2, height // 2], fill=None, outline="black")
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def make_draft(**overrides) -> Draft:
    fields = dict(
        id="draft_1",
        owner_id="owner_1",
        campaign_id="camp_1",
        name="Spring Sale",
        goal=Goal.WEBSITE_VISITS,
        ad_account_id="123456",
        creatives=[CreativeAsset(ref="images/hero.jpg")],
        copy_variants=[
            CopyVariant(primary_text="Everything 20% off this week", headline="Spring Sale")
        ],
        targeting=Targeting(locations=[LocationTarget(kind="country", key="US")]),
        destination=Destination(
            type=DestinationType.WEBSITE, page_id="page_1", url="https://example.com"
        ),
        budget=Budget(daily_budget=20, currency="USD"),
    )
    fields.update(overrides)
    return Draft(**fields)


class FakePlatform:
    """Stand-in for the Graph API behind an httpx.MockTransport.

    ``fail(endpoint, *outcomes)`` queues responses (or the string
    ``"timeout"``) returned before normal handling resumes.
    """

    def __init__(self):
        self.requests: List[tuple] = []
        self.tokens: List[str] = []
        self.forms: List[Dict[str, str]] = []
        self.failures: Dict[str, list] = {}
        self.statuses: Dict[str, str] = {}
        self.counter = 0

    def fail(self, endpoint: str, *outcomes) -> None:
        self.failures.setdefault(endpoint, []).extend(outcomes)

    def count(self, endpoint: str) -> int:
        return sum(1 for _, path in self.requests if path.split("/")[-1] == endpoint)

    def handler(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.strip("/").split("/")[1:]
        path = "/".join(parts)
        endpoint = parts[-1]
        self.requests.append((request.method, path))
        self.tokens.append(request.headers.get("authorization", ""))

        queued = self.failures.get(endpoint)
        if queued:
            outcome = queued.pop(0)
            if outcome == "timeout":
                raise httpx.ReadTimeout("timed out", request=request)
            return outcome

        if request.method == "POST" and endpoint == "adimages":
            self.counter += 1
            return httpx.Response(
                200,
                json={
                    "images": {
                        "upload.jpg": {
                            "hash": f"imghash_{self.counter}",
                            "url": f"https://cdn.test/{self.counter}.jpg",
                        }
                    }
                },
            )

        if request.method == "POST":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            self.forms.append(form)
            if endpoint in ("campaigns", "adsets", "ads"):
                self.counter += 1
                return httpx.Response(200, json={"id": f"{endpoint[:-1]}_{self.counter}"})
            self.statuses[endpoint] = form.get("status", "")
            return httpx.Response(200, json={"success": True})

        status = self.statuses.get(endpoint, "ACTIVE")
        return httpx.Response(
            200, json={"id": endpoint, "status": status, "effective_status": status}
        )

    def client_factory(self, token: str) -> MetaClient:
        return MetaClient(
            token,
            retry_policy=FAST_RETRY,
            transport=httpx.MockTransport(self.handler),
            base_url="https://graph.test/v24.0",
        )


class FakeStorage:
    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.failures: List[httpx.Response] = []
        self.requests: List[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.lstrip("/")
        self.requests.append(path)
        if self.failures:
            return self.failures.pop(0)
        if path not in self.objects:
            return httpx.Response(404)
        return httpx.Response(
            200, content=self.objects[path], headers={"content-type": "image/jpeg"}
        )

    def fetcher(self) -> ImageFetcher:
        return ImageFetcher(
            base_url=STORAGE_URL,
            retry_policy=FAST_RETRY,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def session():
    engine = build_engine("sqlite://")
    init_db(engine)
    with Session(engine) as session:
        yield session


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def storage():
    storage = FakeStorage()
    storage.objects["images/hero.jpg"] = make_image(800, 800)
    return storage


@pytest.fixture
def pipeline(storage):
    return ImagePipeline(fetcher=storage.fetcher(), cache=InMemoryAssetCache())


@pytest.fixture
def orchestrator(session, platform, pipeline):
    return PublishOrchestrator(
        session, pipeline=pipeline, client_factory=platform.client_factory
    )


def add_token(session: Session, owner_id: str, token_type: str, token: str) -> None:
    session.add(MetaToken(owner_id=owner_id, token_type=token_type, token=token))
    session.commit()


@pytest.fixture
def seeded(session):
    """Stored draft plus a user token for its owner."""
    draft = make_draft()
    DraftStore(session).save(draft)
    add_token(session, draft.owner_id, "user", "user-token")
    return draft
