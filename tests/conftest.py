from __future__ import annotations

from typing import Dict, List, Optional, Tuple, Union

import pytest
import requests

PAGE_URL = "https://example.com/blog/post/"


class FakeResponse:
    def __init__(self, status_code: int, content: bytes):
        self.status_code = status_code
        self.content = content


class FakeSession:
    """Stands in for requests.Session; serves canned responses by URL."""

    def __init__(self, routes: Optional[Dict[str, Union[Tuple[int, bytes], Exception]]] = None):
        self.routes = dict(routes or {})
        self.calls: List[str] = []

    def add(self, url: str, body: Union[str, bytes] = b"", status: int = 200) -> None:
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.routes[url] = (status, body)

    def fail(self, url: str, exc: Optional[Exception] = None) -> None:
        self.routes[url] = exc or requests.ConnectionError("connection refused")

    def get(self, url: str, timeout=None) -> FakeResponse:
        self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, b"not found")
        if isinstance(route, Exception):
            raise route
        status, body = route
        return FakeResponse(status, body)


FIXTURE_HTML = """<!doctype html>
<html>
<head>
  <link rel="stylesheet" href="https://cdn.example.net/css/main.css">
  <link rel="stylesheet" href="/static/theme.css">
  <link rel="icon" href="/favicon.ico">
  <style>
    body { color : red ; }
  </style>
  <script src="https://cdn.example.net/js/app.js"></script>
</head>
<body>
  <img src="https://img.example.org/a/one.png">
  <img src="http://img.example.org/b/two.jpg">
  <img src="images/three.gif">
  <img alt="no source">
  <script>console.log("inline");</script>
</body>
</html>
"""


@pytest.fixture
def page_url() -> str:
    return PAGE_URL


@pytest.fixture
def session() -> FakeSession:
    s = FakeSession()
    s.add(PAGE_URL, FIXTURE_HTML)
    s.add("https://cdn.example.net/css/main.css", "a { margin : 0 ; }\n")
    s.add("https://example.com/static/theme.css", "/* theme */\nh1 {  font-weight: bold; }")
    s.add("https://img.example.org/a/one.png", b"\x89PNG\r\n\x1a\n\x00\x01")
    s.add("http://img.example.org/b/two.jpg", b"\xff\xd8\xff\xe0jpeg")
    s.add("https://example.com/blog/post/images/three.gif", b"GIF89a\x01\x00")
    s.add("https://cdn.example.net/js/app.js", "console.log('app');\n")
    return s
