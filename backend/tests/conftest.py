"""Shared fixtures and fakes for the image pipeline tests."""

import io
import random

import httpx
import pytest
from PIL import Image

from app.core.cache import PageCache
from app.services.firecrawl import ScrapedPage
from app.services.pipeline import ImagePipeline, PipelineOptions


def noise_image(seed: int, size: int = 256, fmt: str = "PNG") -> bytes:
    """Deterministic random-noise image; distinct seeds give distant pHashes."""
    rng = random.Random(seed)
    pixels = bytes(rng.randrange(256) for _ in range(size * size))
    img = Image.frombytes("L", (size, size), pixels).convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format=fmt, **({"quality": 95} if fmt == "JPEG" else {}))
    return buf.getvalue()


def image_response(data: bytes, content_type: str = "image/png", sized: bool = True):
    resp = httpx.Response(200, content=data, headers={"content-type": content_type})
    if not sized:
        del resp.headers["content-length"]
    return resp


class FakeRedis:
    """Minimal async key/value store with the page cache's surface."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail_get = False
        self.fail_set = False

    async def get(self, key):
        if self.fail_get:
            raise RuntimeError("redis unavailable")
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        if self.fail_set:
            raise RuntimeError("redis unavailable")
        self.store[key] = value
        self.ttls[key] = ttl
        return True


class FakeLLM:
    """Returns canned replies per model; records every call."""

    def __init__(self, replies: dict | None = None):
        self.replies = replies or {}
        self.calls: list[dict] = []

    async def complete(self, model, messages, **kwargs):
        self.calls.append({"model": model, "messages": messages, **kwargs})
        reply = self.replies.get(model, "[]")
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(messages)
        return reply

    def calls_for(self, model: str) -> list[dict]:
        return [c for c in self.calls if c["model"] == model]


class FakeFetcher:
    """Stands in for the Firecrawl client."""

    def __init__(self, pages: dict | None = None):
        self.pages = pages or {}
        self.calls: list[dict] = []

    async def scrape(self, url, formats, only_main_content=False, cache_bypass=False):
        self.calls.append(
            {
                "url": url,
                "formats": formats,
                "only_main_content": only_main_content,
                "cache_bypass": cache_bypass,
            }
        )
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        if page is None:
            return ScrapedPage()
        return page


class Router:
    """httpx MockTransport handler keyed by full URL, recording requests."""

    def __init__(self, routes: dict | None = None):
        self.routes = routes or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(str(request.url))
        if route is None:
            return httpx.Response(404)
        if callable(route):
            return route(request)
        if isinstance(route, Exception):
            raise route
        # Fresh copy per request so one canned response can be served repeatedly
        resp = httpx.Response(route.status_code, headers=route.headers, content=route.content)
        if "content-length" not in route.headers:
            resp.headers.pop("content-length", None)
        return resp

    def hits(self, url: str) -> int:
        return sum(1 for r in self.requests if str(r.url) == url)


# Fast, deterministic options for pipeline tests
TEST_OPTIONS = PipelineOptions(
    link_filter_model="filter-model",
    fallback_model="fallback-model",
    describe_model="describe-model",
    webhook_max_retries=3,
    webhook_timeout=1.0,
    image_fetch_timeout=1.0,
)


@pytest.fixture
def router():
    return Router()


@pytest.fixture
async def http(router):
    async with httpx.AsyncClient(transport=httpx.MockTransport(router)) as client:
        yield client


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def make_pipeline(http, fake_redis):
    def _make(fetcher, llm, options: PipelineOptions = TEST_OPTIONS) -> ImagePipeline:
        return ImagePipeline(
            fetcher=fetcher,
            cache=PageCache(fake_redis, ttl=86400),
            llm=llm,
            http=http,
            options=options,
        )

    return _make


@pytest.fixture
async def client():
    from app.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
