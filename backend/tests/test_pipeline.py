"""End-to-end tests for the image extraction pipeline with faked collaborators."""
import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.core.exceptions import InvalidInputError, UpstreamFetchError
from app.services.firecrawl import ScrapedPage
from app.services.pipeline import parse_request
from app.services.webhook import sign_payload
from tests.conftest import FakeFetcher, FakeLLM, image_response, noise_image

HOME = "https://x.com/"
HOOK = "https://hooks.example.com/jobs"


def page(html: str = "", links: list[str] | None = None) -> ScrapedPage:
    return ScrapedPage(raw_html=html, links=links or [])


def hook_events(router) -> list[dict]:
    return [json.loads(r.content) for r in router.requests if str(r.url) == HOOK]


class TestParseRequest:
    @pytest.mark.parametrize(
        "raw, message",
        [
            (b"", "body missing"),
            (None, "body missing"),
            (b"{not json", "invalid JSON body"),
            (b"[1, 2]", "body must be a JSON object"),
            (b"{}", "url missing"),
            (b'{"url": "   "}', "url missing"),
            (b'{"url": "ftp://x.com"}', "url must start with http/https"),
            (b'{"url": "https://x.com", "webhook_url": "nope"}', "webhook_url must start with http/https"),
            (b'{"url": "https://x.com", "force_refresh": "sometimes"}', "invalid request body"),
        ],
    )
    def test_rejections(self, raw, message):
        with pytest.raises(InvalidInputError) as exc:
            parse_request(raw)
        assert exc.value.message == message

    def test_accepts_dict(self):
        request = parse_request({"url": " https://x.com ", "force_refresh": True})
        assert request.url == "https://x.com"
        assert request.force_refresh is True


class TestImagePipeline:
    @pytest.mark.asyncio
    async def test_identical_images_collapse(self, make_pipeline, router):
        """Two identical JPEGs behind different query strings plus one PNG."""
        jpeg = noise_image(1, fmt="JPEG")
        router.routes = {
            "https://x.com/a.jpg?v=1": image_response(jpeg, "image/jpeg"),
            "https://x.com/a.jpg?v=2": image_response(jpeg, "image/jpeg"),
            "https://x.com/b.png": image_response(noise_image(2)),
        }
        html = '<img src="/a.jpg?v=1"><img src="/a.jpg?v=2"><img src="/b.png" alt="Board">'
        pipeline = make_pipeline(FakeFetcher({HOME: page(html)}), FakeLLM())

        outcome = await pipeline.run({"url": HOME})

        assert outcome.status_code == 200
        body = outcome.body
        assert body["status"] == "completed"
        assert body["source_url"] == HOME
        assert [i["url"] for i in body["images"]] == ["https://x.com/a.jpg?v=1", "https://x.com/b.png"]
        assert body["images"][1]["alt"] == "Board"
        assert all(i["landing_page"] == HOME for i in body["images"])
        assert all(len(i["hash"]) == 16 for i in body["images"])

    @pytest.mark.asyncio
    async def test_fallback_extractor_when_nothing_harvested(self, make_pipeline, router):
        router.routes = {"https://x/a.png": image_response(noise_image(3))}
        llm = FakeLLM({"fallback-model": '["https://x/a.png"]'})
        pipeline = make_pipeline(FakeFetcher({HOME: page("<p>Nothing to see</p>")}), llm)

        outcome = await pipeline.run({"url": HOME})

        assert outcome.status_code == 200
        images = outcome.body["images"]
        assert len(images) == 1
        assert images[0]["url"] == "https://x/a.png"
        assert images[0]["alt"] == ""
        assert "type" not in images[0]
        assert len(llm.calls_for("fallback-model")) == 1

    @pytest.mark.asyncio
    async def test_missing_url_fails_with_400(self, make_pipeline):
        fetcher = FakeFetcher()
        outcome = await make_pipeline(fetcher, FakeLLM()).run(b'{"force_refresh": true}')

        assert outcome.status_code == 400
        assert outcome.body["status"] == "failed"
        assert "url missing" in outcome.body["error"]
        assert "details" not in outcome.body
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_unparseable_link_filter_reply_scrapes_homepage_only(self, make_pipeline, router):
        router.routes = {"https://x.com/hero.png": image_response(noise_image(4))}
        fetcher = FakeFetcher(
            {HOME: page('<img src="/hero.png">', links=["https://x.com/features", "https://x.com/tour"])}
        )
        llm = FakeLLM({"filter-model": "I think /features is best"})

        outcome = await make_pipeline(fetcher, llm).run({"url": HOME})

        assert outcome.status_code == 200
        assert [c["url"] for c in fetcher.calls] == [HOME]
        assert [i["url"] for i in outcome.body["images"]] == ["https://x.com/hero.png"]

    @pytest.mark.asyncio
    async def test_subpages_scraped_and_failures_tolerated(self, make_pipeline, router):
        router.routes = {
            "https://x.com/hero.png": image_response(noise_image(5)),
            "https://x.com/tour/shot.png": image_response(noise_image(6)),
        }
        fetcher = FakeFetcher(
            {
                HOME: page('<img src="/hero.png">', links=[HOME, "https://x.com/features", "https://x.com/tour"]),
                "https://x.com/features": UpstreamFetchError("Page fetch failed", "HTTP 502"),
                "https://x.com/tour": page('<img src="/tour/shot.png">'),
            }
        )
        llm = FakeLLM({"filter-model": '["https://x.com/features", "https://x.com/tour"]'})

        outcome = await make_pipeline(fetcher, llm).run({"url": HOME})

        assert outcome.status_code == 200
        images = outcome.body["images"]
        assert [i["url"] for i in images] == ["https://x.com/hero.png", "https://x.com/tour/shot.png"]
        assert images[1]["landing_page"] == "https://x.com/tour"

        # Homepage itself is never offered to the link filter
        offered = json.loads(llm.calls_for("filter-model")[0]["messages"][1]["content"])
        assert HOME not in offered
        sub_calls = [c for c in fetcher.calls if c["url"] != HOME]
        assert all(c["only_main_content"] for c in sub_calls)

    @pytest.mark.asyncio
    async def test_enrichment_merged_by_canonical_url(self, make_pipeline, router):
        router.routes = {"https://x.com/a.png?w=800": image_response(noise_image(7))}
        reply = json.dumps(
            {"images": [{"image_url": "https://x.com/a.png", "alt": "Analytics dashboard", "type": "ui_screenshot", "confidence": 0.93}]}
        )
        pipeline = make_pipeline(
            FakeFetcher({HOME: page('<img src="/a.png?w=800">')}), FakeLLM({"describe-model": reply})
        )

        outcome = await pipeline.run({"url": HOME})

        image = outcome.body["images"][0]
        assert image["alt"] == "Analytics dashboard"
        assert image["type"] == "ui_screenshot"
        assert image["confidence"] == 0.93

    @pytest.mark.asyncio
    async def test_homepage_cached_between_jobs(self, make_pipeline, router):
        router.routes = {"https://x.com/a.png": image_response(noise_image(8))}
        fetcher = FakeFetcher({HOME: page('<img src="/a.png">')})
        pipeline = make_pipeline(fetcher, FakeLLM())

        first = await pipeline.run({"url": HOME})
        second = await pipeline.run({"url": HOME})

        assert len(fetcher.calls) == 1
        assert first.body["images"] == second.body["images"]
        assert first.body["job_id"] != second.body["job_id"]

    @pytest.mark.asyncio
    async def test_force_refresh_refetches(self, make_pipeline, router):
        fetcher = FakeFetcher({HOME: page("<p></p>")})
        pipeline = make_pipeline(fetcher, FakeLLM())

        await pipeline.run({"url": HOME})
        await pipeline.run({"url": HOME, "force_refresh": True})

        assert len(fetcher.calls) == 2
        assert fetcher.calls[1]["cache_bypass"] is True

    @pytest.mark.asyncio
    async def test_no_images_anywhere_completes_empty(self, make_pipeline):
        outcome = await make_pipeline(FakeFetcher({HOME: page("")}), FakeLLM()).run({"url": HOME})
        assert outcome.status_code == 200
        assert outcome.body["images"] == []

    @pytest.mark.asyncio
    async def test_unfetchable_image_urls_are_skipped(self, make_pipeline, router):
        router.routes = {"https://x.com/a.png": image_response(noise_image(12, size=400))}
        html = (
            '<img src="/a.png">'
            '<img src="/b\x01c.png">'
            f'<img src="/{"x" * 70_000}.png">'
        )
        pipeline = make_pipeline(FakeFetcher({HOME: page(html)}), FakeLLM())

        outcome = await pipeline.run({"url": HOME})

        assert outcome.status_code == 200
        assert [i["url"] for i in outcome.body["images"]] == ["https://x.com/a.png"]

    @pytest.mark.asyncio
    async def test_downloaded_dimensions_reused_by_quality_filter(self, make_pipeline, router):
        url = "https://x.com/thumb.png"
        router.routes = {url: image_response(noise_image(13, size=120), sized=False)}
        pipeline = make_pipeline(FakeFetcher({HOME: page('<img src="/thumb.png">')}), FakeLLM())

        outcome = await pipeline.run({"url": HOME})

        # 120px is under the 300px floor; decided without a second download
        assert outcome.body["images"] == []
        assert router.hits(url) == 1

    @pytest.mark.asyncio
    async def test_caller_job_id_is_used(self, make_pipeline):
        outcome = await make_pipeline(FakeFetcher(), FakeLLM()).run({"url": HOME, "job_id": "job-42"})
        assert outcome.body["job_id"] == "job-42"

    @pytest.mark.asyncio
    async def test_homepage_fetch_failure_fails_job(self, make_pipeline):
        fetcher = FakeFetcher({HOME: UpstreamFetchError("Page fetch failed for https://x.com/", "HTTP 500")})
        outcome = await make_pipeline(fetcher, FakeLLM()).run({"url": HOME})

        assert outcome.status_code == 400
        assert outcome.body["error"] == "Page fetch failed for https://x.com/"
        assert outcome.body["details"] == "HTTP 500"
        assert outcome.body["source_url"] == HOME


class TestPipelineWebhooks:
    @pytest.mark.asyncio
    async def test_started_then_completed(self, make_pipeline, router):
        router.routes = {
            HOOK: httpx.Response(200),
            "https://x.com/a.png": image_response(noise_image(9)),
        }
        pipeline = make_pipeline(FakeFetcher({HOME: page('<img src="/a.png">')}), FakeLLM())

        outcome = await pipeline.run({"url": HOME, "webhook_url": HOOK, "job_id": "j-1"})

        events = hook_events(router)
        assert [e["status"] for e in events] == ["started", "completed"]
        assert all(e["job_id"] == "j-1" for e in events)
        assert events[1] == outcome.body

    @pytest.mark.asyncio
    async def test_webhook_failure_does_not_change_result(self, make_pipeline, router):
        router.routes = {
            HOOK: httpx.Response(500),
            "https://x.com/a.png": image_response(noise_image(10)),
        }
        pipeline = make_pipeline(FakeFetcher({HOME: page('<img src="/a.png">')}), FakeLLM())

        with patch("app.services.webhook.asyncio.sleep", new=AsyncMock()):
            outcome = await pipeline.run({"url": HOME, "webhook_url": HOOK})

        assert outcome.status_code == 200
        assert len(outcome.body["images"]) == 1
        # 3 attempts for started, 3 for completed
        assert router.hits(HOOK) == 6

    @pytest.mark.asyncio
    async def test_unexpected_error_reported_as_failed(self, make_pipeline, router):
        router.routes = {HOOK: httpx.Response(200)}
        fetcher = FakeFetcher({HOME: RuntimeError("kaboom")})

        outcome = await make_pipeline(fetcher, FakeLLM()).run({"url": HOME, "webhook_url": HOOK})

        assert outcome.status_code == 400
        assert outcome.body["error"] == "kaboom"
        assert outcome.body["details"] == "RuntimeError"
        assert [e["status"] for e in hook_events(router)] == ["started", "failed"]

    @pytest.mark.asyncio
    async def test_signed_when_secret_given(self, make_pipeline, router):
        router.routes = {HOOK: httpx.Response(200)}
        await make_pipeline(FakeFetcher(), FakeLLM()).run(
            {"url": HOME, "webhook_url": HOOK, "webhook_secret": "s"}
        )
        assert all("X-ProductShots-Signature" in r.headers for r in router.requests if str(r.url) == HOOK)

    @pytest.mark.asyncio
    async def test_invalid_input_reports_failed_event(self, make_pipeline, router):
        router.routes = {HOOK: httpx.Response(200)}
        outcome = await make_pipeline(FakeFetcher(), FakeLLM()).run(
            {"url": "ftp://x.com", "webhook_url": HOOK, "job_id": "bad-1"}
        )

        assert outcome.status_code == 400
        events = hook_events(router)
        assert len(events) == 1
        assert events[0] == outcome.body
        assert events[0]["status"] == "failed"
        assert events[0]["job_id"] == "bad-1"

    @pytest.mark.asyncio
    async def test_invalid_input_signed_with_peeked_secret(self, make_pipeline, router):
        router.routes = {HOOK: httpx.Response(200)}
        await make_pipeline(FakeFetcher(), FakeLLM()).run(
            {"webhook_url": HOOK, "webhook_secret": "s"}
        )
        assert router.requests[0].headers["X-ProductShots-Signature"] == sign_payload(
            "s", router.requests[0].content
        )

    @pytest.mark.asyncio
    async def test_unusable_webhook_url_sends_nothing(self, make_pipeline, router):
        outcome = await make_pipeline(FakeFetcher(), FakeLLM()).run(
            {"url": HOME, "webhook_url": "not-a-url"}
        )
        assert outcome.status_code == 400
        assert router.requests == []
