"""Tests for gate resolution (redirect, consent and mobile interstitials)."""

from __future__ import annotations

from unittest.mock import patch

from lite_reader.gates import (
    apply_inline_cookies,
    find_link_href,
    find_meta_refresh_url,
    parse_cookie_string,
    resolve_gates,
    with_query_variant,
)
from lite_reader.tokenizer import parse
from tests._fakes import html_response

LONG_BODY = "<html><body>" + "<p>mobile article text</p>" * 20 + "</body></html>"


class TestFinders:
    def test_meta_refresh(self):
        root = parse('<meta http-equiv="Refresh" content="0; URL=\'/x\'">')
        assert find_meta_refresh_url(root) == "/x"

    def test_meta_refresh_keeps_semicolons_in_target(self):
        root = parse('<meta http-equiv="refresh" content="0;url=https://h/x?a=1;b=2">')
        assert find_meta_refresh_url(root) == "https://h/x?a=1;b=2"

    def test_meta_refresh_without_url(self):
        root = parse('<meta http-equiv="refresh" content="30">')
        assert find_meta_refresh_url(root) is None

    def test_link_rel_must_match_exactly(self):
        root = parse(
            '<link rel="alternate stylesheet" href="/s.css">'
            '<link rel="alternate" href="/m">'
        )
        assert find_link_href(root, "alternate") == "/m"


class TestCookies:
    def test_defaults(self):
        cookie = parse_cookie_string("consent=yes", "https://www.example.com/a")
        assert cookie.name == "consent"
        assert cookie.value == "yes"
        assert cookie.domain == "www.example.com"
        assert cookie.path == "/"
        assert cookie.expires is None
        assert not cookie.secure

    def test_attributes(self):
        cookie = parse_cookie_string(
            "gdpr=1; domain=.example.com; path=/news; expires=Wed, 21 Oct 2037 07:28:00 GMT; secure",
            "https://www.example.com/a",
        )
        assert cookie.domain == "example.com"
        assert cookie.path == "/news"
        assert cookie.expires == 2139722880
        assert cookie.secure

    def test_invalid_expiry_is_ignored(self):
        cookie = parse_cookie_string("a=b; expires=someday", "https://h/")
        assert cookie.expires is None

    def test_rejects_nameless(self):
        assert parse_cookie_string("=oops", "https://h/") is None
        assert parse_cookie_string("novalue", "https://h/") is None

    def test_apply_writes_jar(self, transport):
        html = "<script>document.cookie = 'consent=yes; path=/'; document.cookie=\"seen=1\";</script>"
        added = apply_inline_cookies(html, "https://h/a", transport.cookies)
        assert [cookie.name for cookie in added] == ["consent", "seen"]
        assert transport.cookies.get("consent", domain="h") == "yes"


class TestQueryVariant:
    def test_appends_to_bare_url(self):
        assert with_query_variant("https://h/a#frag", "amp=1") == "https://h/a?amp=1"

    def test_appends_to_existing_query(self):
        assert with_query_variant("https://h/a?id=3", "m=1") == "https://h/a?id=3&m=1"


class TestResolveGates:
    def test_meta_refresh_is_followed(self, transport, session):
        session.add("https://h/x", html_response("<p>real page</p>"))
        html = '<html><head><meta http-equiv="refresh" content="0; url=/x"></head></html>'
        resolution = resolve_gates(html, "https://h/a", transport)
        assert resolution.url == "https://h/x"
        assert resolution.html == "<p>real page</p>"
        assert session.calls[0].headers["Referer"] == "https://h/a"

    def test_amphtml_is_followed(self, transport, session):
        session.add("https://h/amp/a", html_response("<p>amp</p>"))
        html = '<link rel="amphtml" href="/amp/a">'
        resolution = resolve_gates(html, "https://h/a", transport)
        assert resolution.url == "https://h/amp/a"

    def test_failed_step_falls_through(self, transport, session):
        session.add("https://h/alt", html_response("<p>alternate</p>"))
        html = '<link rel="amphtml" href="/missing"><link rel="alternate" href="/alt">'
        resolution = resolve_gates(html, "https://h/a", transport)
        assert resolution.url == "https://h/alt"
        assert session.urls == ["https://h/missing", "https://h/alt"]

    def test_inline_cookie_then_refetch(self, transport, session):
        session.add("https://h/a", html_response("<article>past the wall</article>"))
        html = "<script>document.cookie='consent=yes';</script>"
        resolution = resolve_gates(html, "https://h/a", transport)
        assert resolution.url == "https://h/a"
        assert resolution.html == "<article>past the wall</article>"
        assert session.calls[0].cookies == {"consent": "yes"}

    def test_query_variant(self, transport, session):
        session.add("https://h/a?m=1", html_response(LONG_BODY))
        resolution = resolve_gates("<p>please enable JavaScript</p>", "https://h/a", transport)
        assert resolution.url == "https://h/a?m=1"
        assert session.urls == ["https://h/a?amp=1", "https://h/a?m=1"]

    def test_short_variant_is_rejected(self, transport, session):
        session.add("https://h/a?amp=1", html_response("<p>tiny</p>"))
        assert resolve_gates("<p>x</p>", "https://h/a", transport) is None
        assert len(session.calls) == 5

    def test_variants_can_be_disabled(self, transport, session):
        assert resolve_gates("<p>x</p>", "https://h/a", transport, query_variants=()) is None
        assert session.calls == []

    def test_empty_input(self, transport, session):
        assert resolve_gates("", "https://h/a", transport) is None
        assert resolve_gates("   ", "https://h/a", transport) is None
        assert resolve_gates("<p>x</p>", None, transport) is None
        assert session.calls == []

    def test_step_exception_is_isolated(self, transport, session):
        session.add("https://h/a?amp=1", html_response(LONG_BODY))
        with patch("lite_reader.gates.find_meta_refresh_url", side_effect=RuntimeError("boom")):
            resolution = resolve_gates("<p>x</p>", "https://h/a", transport)
        assert resolution.url == "https://h/a?amp=1"
