"""Tests for the navigation orchestrator."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from lite_reader.config import ReaderConfig
from lite_reader.models import Heading, Paragraph
from lite_reader.navigator import Navigator, load_local_page, run_reader
from lite_reader.script import SoupDom
from lite_reader.transport import Transport
from tests._fakes import PNG_BYTES, FakeResponse, FakeSession, html_response, image_response

ARTICLE = (
    "<html><head><title>T</title></head><body><article><h1>Hi</h1>"
    "<p>Hello world this is long enough text.</p></article></body></html>"
)


def _navigator(session: FakeSession, **kwargs) -> Navigator:
    config = kwargs.pop("config", None) or ReaderConfig(query_variants=())
    return Navigator(config, transport=Transport(config, session=session), **kwargs)


class TestNavigate:
    @pytest.mark.asyncio
    async def test_end_to_end_article(self, session):
        session.add("https://example.com/story", html_response(ARTICLE))
        view = await _navigator(session).navigate("https://example.com/story")
        assert view.title == "T"
        assert view.content.strategy == "semantic"
        assert list(view.content) == [Heading("Hi"), Paragraph("Hello world this is long enough text.")]
        assert view.snippet is None

    @pytest.mark.asyncio
    async def test_signals_in_order(self, session):
        session.add("https://example.com/story", html_response(ARTICLE))
        events = []
        navigator = _navigator(
            session,
            on_loading_state_changed=lambda value: events.append(("loading", value)),
            on_title_changed=lambda value: events.append(("title", value)),
            on_navigation_completed=lambda value: events.append(("completed", value)),
        )
        await navigator.navigate("https://example.com/story")
        assert events == [
            ("loading", True),
            ("title", "T"),
            ("loading", False),
            ("completed", "https://example.com/story"),
        ]

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_abort(self, session):
        session.add("https://example.com/story", html_response(ARTICLE))
        completed = MagicMock()
        navigator = _navigator(
            session,
            on_title_changed=MagicMock(side_effect=RuntimeError("ui went away")),
            on_navigation_completed=completed,
        )
        view = await navigator.navigate("https://example.com/story")
        assert view.title == "T"
        completed.assert_called_once_with("https://example.com/story")

    @pytest.mark.asyncio
    async def test_bare_host_is_normalized(self, session):
        session.add("https://example.com", html_response(ARTICLE))
        view = await _navigator(session).navigate("example.com")
        assert session.urls[0] == "https://example.com"
        assert view.url == "https://example.com"

    @pytest.mark.asyncio
    async def test_redirect_updates_url(self, session):
        session.add("https://example.com/old", html_response(ARTICLE, url="https://example.com/new"))
        navigator = _navigator(session)
        view = await navigator.navigate("https://example.com/old")
        assert view.url == "https://example.com/new"
        assert navigator.current_url == "https://example.com/new"

    @pytest.mark.asyncio
    async def test_fetch_failure_still_completes(self, session):
        completed = MagicMock()
        view = await _navigator(session, on_navigation_completed=completed).navigate("https://down.example.com/")
        assert view.is_empty
        assert view.title == "down.example.com"
        completed.assert_called_once_with("https://down.example.com/")

    @pytest.mark.asyncio
    async def test_snippet_when_nothing_extracted(self, session):
        session.add("https://example.com/", html_response("<html><body><span>hi</span></body></html>"))
        view = await _navigator(session).navigate("https://example.com/")
        assert view.content is None
        assert view.snippet == "<html><body><span>hi</span></body></html>"
        assert view.title == "example.com"

    @pytest.mark.asyncio
    async def test_extraction_failure_is_isolated(self, session):
        session.add("https://example.com/story", html_response(ARTICLE))
        with patch("lite_reader.navigator.extract_content", side_effect=RuntimeError("boom")):
            view = await _navigator(session).navigate("https://example.com/story")
        assert view.content is None
        assert view.snippet.startswith("<html>")
        assert view.title == "T"

    @pytest.mark.asyncio
    async def test_gate_is_resolved(self, session):
        session.add(
            "https://example.com/a",
            html_response('<meta http-equiv="refresh" content="0;url=/b">'),
        )
        session.add("https://example.com/b", html_response(ARTICLE))
        navigator = _navigator(session)
        view = await navigator.navigate("https://example.com/a")
        assert view.url == "https://example.com/b"
        assert view.title == "T"
        assert navigator.current_url == "https://example.com/b"

    @pytest.mark.asyncio
    async def test_binary_page_gets_one_hardened_retry(self, session):
        binary = FakeResponse(b"\x00\x01\x02\x03" * 64)
        session.add("https://example.com/", binary, html_response(ARTICLE))
        view = await _navigator(session).navigate("https://example.com/")
        assert session.urls[:2] == ["https://example.com/", "https://example.com/"]
        assert session.calls[1].headers["Cache-Control"] == "no-cache"
        assert view.title == "T"


class TestMedia:
    PAGE = (
        "<html><head><title>Gallery</title></head><body>"
        '<div style="background-image:url(/hero.png);height:200px"></div>'
        '<article><h1>Pics</h1><img src="/a.png"><p>caption</p></article>'
        '<img src="/a.png"><img src="/missing.png">'
        "</body></html>"
    )

    @pytest.mark.asyncio
    async def test_backgrounds_and_images_are_fetched(self, session):
        session.add("https://example.com/g", html_response(self.PAGE))
        session.add("https://example.com/hero.png", image_response(PNG_BYTES, "image/png"))
        session.add("https://example.com/a.png", image_response(PNG_BYTES, "image/png"))
        view = await _navigator(session).navigate("https://example.com/g")

        assert [spec.url for spec, _ in view.backgrounds] == ["https://example.com/hero.png"]
        assert view.backgrounds[0][0].height == 200.0
        assert list(view.images) == ["https://example.com/a.png"]
        assert session.urls.count("https://example.com/a.png") == 1
        assert session.calls_to("https://example.com/a.png")[0].headers["Referer"] == "https://example.com/g"

    @pytest.mark.asyncio
    async def test_image_cache_spans_navigations(self, session):
        session.add("https://example.com/g", html_response(self.PAGE))
        session.add("https://example.com/a.png", image_response(PNG_BYTES, "image/png"))
        navigator = _navigator(session)
        await navigator.navigate("https://example.com/g")
        await navigator.navigate("https://example.com/g")
        assert session.urls.count("https://example.com/a.png") == 1

    @pytest.mark.asyncio
    async def test_images_can_be_disabled(self, session):
        session.add("https://example.com/g", html_response(self.PAGE))
        config = ReaderConfig(query_variants=(), fetch_images=False)
        view = await _navigator(session, config=config).navigate("https://example.com/g")
        assert session.urls == ["https://example.com/g"]
        assert view.images == {}
        assert [spec.url for spec in view.background_specs] == ["https://example.com/hero.png"]

    @pytest.mark.asyncio
    async def test_close_clears_cache(self, session):
        session.add("https://example.com/g", html_response(self.PAGE))
        session.add("https://example.com/a.png", image_response(PNG_BYTES, "image/png"))
        navigator = _navigator(session)
        await navigator.navigate("https://example.com/g")
        assert len(navigator.image_cache) == 1
        navigator.close()
        assert len(navigator.image_cache) == 0
        assert session.closed


class TestStaleness:
    @pytest.mark.asyncio
    async def test_older_navigation_is_discarded(self, session):
        session.add("https://example.com/new", html_response(ARTICLE))
        completed = []
        navigator = _navigator(session, on_navigation_completed=completed.append)
        release = asyncio.Event()
        original_load = navigator._load_html

        async def slow_load(ctx):
            if ctx.url.endswith("/old"):
                await release.wait()
                return "<article><p>stale</p></article>"
            return await original_load(ctx)

        navigator._load_html = slow_load
        older = asyncio.create_task(navigator.navigate("https://example.com/old"))
        await asyncio.sleep(0)
        newer = await navigator.navigate("https://example.com/new")
        release.set()

        assert await older is None
        assert newer.generation == 2
        assert navigator.generation == 2
        assert completed == ["https://example.com/new"]


class TestLocalPages:
    @pytest.mark.asyncio
    async def test_bundled_start_page(self, session):
        view = await _navigator(session).navigate("res://start.html")
        assert view.title == "Lite Reader"
        assert view.content.strategy == "semantic"
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_file_url(self, session, tmp_path):
        page = tmp_path / "page.html"
        page.write_text(ARTICLE, encoding="utf-8")
        view = await _navigator(session).navigate(page.as_uri())
        assert view.title == "T"
        assert session.calls == []

    def test_missing_and_escaping_resources(self, tmp_path):
        assert load_local_page("res://nope.html") is None
        assert load_local_page("res://../navigator.py") is None
        assert load_local_page((tmp_path / "absent.html").as_uri()) is None


class TestDomAndScript:
    @pytest.mark.asyncio
    async def test_body_is_handed_to_dom(self, session):
        session.add("https://example.com/story", html_response(ARTICLE))
        dom = SoupDom()
        await _navigator(session, dom=dom).navigate("https://example.com/story")
        assert "<h1>Hi</h1>" in dom.get_body_inner_html()

    @pytest.mark.asyncio
    async def test_script_fetch_resolves_against_current_url(self, session):
        session.add("https://example.com/story", html_response(ARTICLE))
        session.add("https://example.com/api/data.json", FakeResponse('{"ok": true}', headers={"Content-Type": "application/json"}))
        navigator = _navigator(session)
        await navigator.navigate("https://example.com/story")
        body = await navigator.execute_script("fetch('/api/data.json').then(r => r.json())")
        assert body == '{"ok": true}'
        assert session.calls[-1].headers["Referer"] == "https://example.com/story"

    @pytest.mark.asyncio
    async def test_unrecognised_script(self, session):
        assert await _navigator(session).execute_script("console.log(1)") == ""
        assert session.calls == []


class TestRunReader:
    @pytest.mark.asyncio
    async def test_writes_markdown_and_images(self, tmp_path):
        session = FakeSession()
        session.add("https://example.com/g", html_response(TestMedia.PAGE))
        session.add("https://example.com/a.png", image_response(PNG_BYTES, "image/png"))
        session.add("https://example.com/hero.png", image_response(PNG_BYTES, "image/png"))
        config = ReaderConfig(query_variants=(), output_root=tmp_path)

        with patch("lite_reader.navigator.Transport", return_value=Transport(config, session=session)):
            results = await run_reader(["https://example.com/g", "https://example.com/missing"], config)

        assert len(results) == 1
        result = results[0]
        assert result.output_path == tmp_path / "example-com" / "gallery" / "index.md"
        markdown = result.output_path.read_text(encoding="utf-8")
        assert "title: Gallery" in markdown
        assert "![](images/image-01-a.png)" in markdown
        assert "![background](images/image-02-hero.png)" in markdown
        assert (tmp_path / "example-com" / "gallery" / "images" / "image-01-a.png").exists()

    @pytest.mark.asyncio
    async def test_unsniffable_image_named_from_content_type(self, tmp_path):
        session = FakeSession()
        session.add("https://example.com/g", html_response(TestMedia.PAGE))
        session.add("https://example.com/a.png", image_response(b"opaque image data", "image/gif"))
        session.add("https://example.com/hero.png", image_response(PNG_BYTES, "image/png"))
        config = ReaderConfig(query_variants=(), output_root=tmp_path)

        with patch("lite_reader.navigator.Transport", return_value=Transport(config, session=session)):
            results = await run_reader(["https://example.com/g"], config)

        markdown = results[0].output_path.read_text(encoding="utf-8")
        assert "![](images/image-01-a.gif)" in markdown
        saved = tmp_path / "example-com" / "gallery" / "images" / "image-01-a.gif"
        assert saved.read_bytes() == b"opaque image data"
