"""Tests for LLM reply decoding, link prioritisation and the fallback extractor."""
import json

import pytest

from app.services.fallback_extract import extract_image_urls
from app.services.link_filter import prioritize_links
from app.services.llm import decode_json_array, decode_json_object
from tests.conftest import FakeLLM


class TestDecode:
    def test_array(self):
        decoded = decode_json_array('["https://a.com", 3, "https://b.com"]')
        assert decoded.ok
        assert decoded.value == ["https://a.com", "https://b.com"]

    def test_code_fence(self):
        decoded = decode_json_array('```json\n["https://a.com"]\n```')
        assert decoded.value == ["https://a.com"]

    @pytest.mark.parametrize("text", [None, "", "nope", '{"a": 1}', "```"])
    def test_array_errors(self, text):
        decoded = decode_json_array(text)
        assert not decoded.ok
        assert decoded.value is None

    def test_object(self):
        assert decode_json_object('{"images": []}').value == {"images": []}
        assert not decode_json_object("[1, 2]").ok


class TestPrioritizeLinks:
    @pytest.mark.asyncio
    async def test_caps_to_top_k_in_model_order(self):
        links = [f"https://x.com/p{i}" for i in range(10)]
        reply = json.dumps(list(reversed(links)))
        llm = FakeLLM({"m": reply})
        kept = await prioritize_links(llm, links, model="m", top_k=4)
        assert kept == ["https://x.com/p9", "https://x.com/p8", "https://x.com/p7", "https://x.com/p6"]
        sent = llm.calls[0]["messages"]
        assert sent[0]["role"] == "system"
        assert json.loads(sent[1]["content"]) == links

    @pytest.mark.asyncio
    async def test_unparseable_reply_gives_nothing(self):
        llm = FakeLLM({"m": "Sure! Here are the links: /features"})
        assert await prioritize_links(llm, ["https://x.com/features"], model="m") == []

    @pytest.mark.asyncio
    async def test_non_http_entries_dropped(self):
        llm = FakeLLM({"m": '["/features", "https://x.com/tour", "mailto:a@b.c"]'})
        assert await prioritize_links(llm, ["https://x.com/tour"], model="m") == ["https://x.com/tour"]

    @pytest.mark.asyncio
    async def test_no_links_no_call(self):
        llm = FakeLLM()
        assert await prioritize_links(llm, [], model="m") == []
        assert llm.calls == []


class TestFallbackExtract:
    @pytest.mark.asyncio
    async def test_returns_candidates(self):
        reply = json.dumps(
            ["https://x.com/a.png", "https://x.com/a.png", "/relative.png", "https://x.com/b.jpg"]
        )
        llm = FakeLLM({"fb": reply})
        out = await extract_image_urls(llm, "<html>...</html>", "https://x.com/", model="fb")
        assert [c.url for c in out] == ["https://x.com/a.png", "https://x.com/b.jpg"]
        assert all(c.landing_page == "https://x.com/" for c in out)
        assert llm.calls[0]["temperature"] == 0

    @pytest.mark.asyncio
    async def test_truncates_html(self):
        llm = FakeLLM({"fb": "[]"})
        await extract_image_urls(llm, "x" * 500, "https://x.com/", model="fb", max_chars=100)
        assert len(llm.calls[0]["messages"][-1]["content"]) == 100

    @pytest.mark.asyncio
    async def test_caps_results(self):
        reply = json.dumps([f"https://x.com/{i}.png" for i in range(10)])
        out = await extract_image_urls(FakeLLM({"fb": reply}), "<p>", "https://x.com/", model="fb", max_images=3)
        assert len(out) == 3

    @pytest.mark.asyncio
    async def test_parse_failure(self):
        out = await extract_image_urls(FakeLLM({"fb": "no"}), "<p>", "https://x.com/", model="fb")
        assert out == []

    @pytest.mark.asyncio
    async def test_empty_html_skips_call(self):
        llm = FakeLLM()
        assert await extract_image_urls(llm, "", "https://x.com/", model="fb") == []
        assert llm.calls == []
