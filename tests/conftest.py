"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from blogmigrate.context import TransformContext
from blogmigrate.extractors.urlnorm import SlugCanonicalizer

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _read_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


@pytest.fixture
def legacy_post_html() -> str:
    return _read_fixture("legacy_post.html")


@pytest.fixture
def records_path() -> Path:
    return FIXTURES_DIR / "records.json"


@pytest.fixture
def canonicalizer() -> SlugCanonicalizer:
    return SlugCanonicalizer(
        {"old-slug": "new-slug", "older-slug": "new-slug"},
        legacy_domains=["oldblog.example.com"],
    )


@pytest.fixture
def ctx(canonicalizer: SlugCanonicalizer) -> TransformContext:
    return TransformContext(slug="test-post", canonicalizer=canonicalizer)


class FakeResponse:
    """Minimal stand-in for an ``http.client.HTTPResponse``."""

    def __init__(self, body: bytes = b"", status: int = 200) -> None:
        self._body = body
        self._pos = 0
        self.status = status

    def getcode(self) -> int:
        return self.status

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = len(self._body) - self._pos
        chunk = self._body[self._pos:self._pos + size]
        self._pos += len(chunk)
        return chunk

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc: object) -> None:
        return None


@pytest.fixture
def fake_response():
    return FakeResponse
