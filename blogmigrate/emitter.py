"""Document emitter: front matter + body -> one MDX file."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path

from bs4 import BeautifulSoup

from blogmigrate import settings
from blogmigrate.items import FrontMatter, OutputDocument, SourceRecord

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")
_FOOTNOTE_MARKER_RE = re.compile(r"\[\^[^\]]+\]")
_SHORTCODE_RE = re.compile(r"\[/?[a-z][\w-]*(?:\s[^\[\]\n]*)?\](?!\()", re.IGNORECASE)


def extract_summary(html: str, max_length: int = settings.SUMMARY_LENGTH) -> str:
    """Plain-text summary of a normalized body, truncated with ``...``.

    Footnote markers and leftover shortcode tags are not part of the prose
    and are dropped.
    """
    if not html or not html.strip():
        return ""
    text = BeautifulSoup(html, "lxml").get_text(" ")
    text = _SHORTCODE_RE.sub(" ", _FOOTNOTE_MARKER_RE.sub("", text))
    text = _WS_RE.sub(" ", text).strip()
    if len(text) <= max_length:
        return text
    return text[:max_length].rstrip() + "..."


def build_document(
    record: SourceRecord,
    slug: str,
    body: str,
    *,
    summary: str = "",
    hero_image: str | None = None,
    missing_assets: list[str] | None = None,
    unrecognized_shortcodes: list[str] | None = None,
) -> OutputDocument:
    front_matter = FrontMatter(
        title=record.title,
        published_at=record.published_at.date().isoformat(),
        summary=summary,
        categories=list(record.categories),
        tags=list(record.tags),
        hero_image=hero_image,
    )
    return OutputDocument(
        slug=slug,
        front_matter=front_matter,
        body=body,
        missing_assets=list(missing_assets or []),
        unrecognized_shortcodes=list(unrecognized_shortcodes or []),
    )


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _quote_list(values: list[str]) -> str:
    return "[" + ", ".join(_quote(v) for v in values) + "]"


def format_front_matter(front_matter: FrontMatter) -> str:
    lines = [
        "---",
        f"title: {_quote(front_matter.title)}",
        f"publishedAt: {_quote(front_matter.published_at)}",
        f"summary: {_quote(front_matter.summary)}",
    ]
    if front_matter.categories:
        lines.append(f"categories: {_quote_list(front_matter.categories)}")
    if front_matter.tags:
        lines.append(f"tags: {_quote_list(front_matter.tags)}")
    if front_matter.hero_image:
        lines.append(f"heroImage: {_quote(front_matter.hero_image)}")
    lines.append("---")
    return "\n".join(lines)


def format_document(document: OutputDocument) -> str:
    """Render the complete file text: front matter, blank line, body."""
    body = document.body.strip("\n")
    text = format_front_matter(document.front_matter) + "\n\n"
    if body:
        text += body + "\n"
    return text


def write_document(path: Path | str, text: str) -> bool:
    """Atomically write *text* to *path* unless it already holds it.

    Returns True when the file was (re)written.
    """
    path = Path(path)
    data = text.encode("utf-8")
    try:
        if path.read_bytes() == data:
            logger.debug("Unchanged: %s", path)
            return False
    except FileNotFoundError:
        pass

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return True
