"""Tests for fetching and CSS minification."""

from __future__ import annotations

import pytest
import requests

import page_mirror as pm

from conftest import FakeSession

URL = "https://example.com/a.css"


class TestFetch:
    def test_success_keeps_body(self):
        s = FakeSession()
        s.add(URL, b"body")
        result = pm.fetch(s, URL)
        assert result.ok
        assert result.content == b"body"
        result.raise_for_failure()

    def test_non_2xx_is_http_error(self):
        s = FakeSession()
        s.add(URL, b"gone", status=410)
        result = pm.fetch(s, URL)
        assert not result.ok
        assert result.status_code == 410
        assert result.content is None
        with pytest.raises(pm.HttpError) as info:
            result.raise_for_failure()
        assert info.value.status == 410

    def test_transport_failure(self):
        s = FakeSession()
        s.fail(URL, requests.ConnectionError("name resolution failed"))
        result = pm.fetch(s, URL)
        assert result.status_code is None
        assert "name resolution failed" in result.error
        with pytest.raises(pm.TransportError):
            result.raise_for_failure()

    def test_text_rejects_invalid_utf8(self):
        result = pm.FetchResult(URL, status_code=200, content=b"\xff\xfe\xfa")
        with pytest.raises(pm.DecodeError):
            result.text()

    def test_text_decodes_utf8(self):
        result = pm.FetchResult(URL, status_code=200, content="café".encode("utf-8"))
        assert result.text() == "café"


class TestMinify:
    CSS = """
    /* header */
    body {
        margin : 0 ;
        color:   #fff;
    }

    a:hover { text-decoration: underline; }
    """

    def test_removes_comments_and_whitespace(self):
        out = pm.minify_css(self.CSS)
        assert "header" not in out
        assert "\n" not in out
        assert "body{" in out

    def test_idempotent(self):
        once = pm.minify_css(self.CSS)
        assert pm.minify_css(once) == once

    def test_failure_becomes_minify_error(self, monkeypatch):
        def boom(text):
            raise ValueError("bad input")

        monkeypatch.setattr(pm.rcssmin, "cssmin", boom)
        with pytest.raises(pm.MinifyError):
            pm.minify_css("a{}")


class TestSettings:
    def test_defaults_are_valid(self):
        pm.Settings().validate()

    def test_unknown_collision_policy(self):
        with pytest.raises(pm.ConfigError):
            pm.Settings(collision_policy="rename").validate()

    def test_non_positive_timeout(self):
        with pytest.raises(pm.ConfigError):
            pm.Settings(timeout=0).validate()
