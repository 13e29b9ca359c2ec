"""Pydantic schemas for legacy records and emitted documents."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import dateparser
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")


class PostStatus(str, Enum):
    PUBLISHED = "published"
    OTHER = "other"


def _parse_published_at(raw: Any) -> datetime:
    """Parse a legacy publish date; fall back to the current time.

    Naive datetimes are taken as UTC so ISO dates stay stable between runs.
    """
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=UTC)
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = dateparser.parse(
                _WS_RE.sub(" ", raw.strip()),
                settings={
                    "RETURN_AS_TIMEZONE_AWARE": True,
                    "TIMEZONE": "UTC",
                    "PREFER_DAY_OF_MONTH": "first",
                },
            )
        except Exception as exc:
            logger.debug("Date parse failed for %r: %s", raw, exc)
            parsed = None
        if parsed:
            return parsed
    logger.warning("Unparseable publish date %r; using current time", raw)
    return datetime.now(UTC)


def _unique_terms(values: Any) -> list[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    terms: list[str] = []
    for value in values:
        if isinstance(value, dict):
            value = value.get("name") or value.get("_") or ""
        term = _WS_RE.sub(" ", str(value)).strip()
        if term and term not in terms:
            terms.append(term)
    return terms


# ---------------------------------------------------------------------------
# Input
# ---------------------------------------------------------------------------

class SourceRecord(BaseModel):
    """One legacy post as supplied by the export collaborator."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str = ""
    raw_body: str = Field(
        default="",
        validation_alias=AliasChoices("raw_body", "body", "content", "content_encoded"),
    )
    published_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        validation_alias=AliasChoices("published_at", "date", "pubDate", "post_date"),
    )
    categories: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    status: PostStatus = PostStatus.PUBLISHED
    hero_image_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("hero_image_url", "featured_image", "image"),
    )

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _WS_RE.sub(" ", v).strip()
        return v or ""

    @field_validator("raw_body", mode="before")
    @classmethod
    def body_or_empty(cls, v: Any) -> Any:
        return v if isinstance(v, str) else ""

    @field_validator("published_at", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> datetime:
        return _parse_published_at(v)

    @field_validator("categories", "tags", mode="before")
    @classmethod
    def dedupe_terms(cls, v: Any) -> list[str]:
        return _unique_terms(v)

    @field_validator("status", mode="before")
    @classmethod
    def coerce_status(cls, v: Any) -> PostStatus:
        if isinstance(v, PostStatus):
            return v
        if isinstance(v, str) and v.strip().lower() in ("publish", "published"):
            return PostStatus.PUBLISHED
        if v is None:
            return PostStatus.PUBLISHED
        return PostStatus.OTHER

    @field_validator("hero_image_url", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip() or None
        return v

    @property
    def is_published(self) -> bool:
        return self.status is PostStatus.PUBLISHED


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------

class FrontMatter(BaseModel):
    title: str
    published_at: str  # YYYY-MM-DD
    summary: str = ""
    categories: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    hero_image: str | None = None


class OutputDocument(BaseModel):
    """A fully transformed post, ready for the document store."""

    slug: str
    front_matter: FrontMatter
    body: str = ""
    missing_assets: list[str] = Field(default_factory=list)
    unrecognized_shortcodes: list[str] = Field(default_factory=list)
