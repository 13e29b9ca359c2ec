"""Slug generation and canonicalization of internal references."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from urllib.parse import urlparse

from blogmigrate import settings

logger = logging.getLogger(__name__)

# Filename slugs
_NON_SLUG_RE = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE_RE = re.compile(r"\s+")
_MULTI_DASH_RE = re.compile(r"-{2,}")

# References in running text
_MD_LINK_RE = re.compile(r"(?<!!)\[([^\]\n]*)\]\(([^)\s]+)\)")
_WHOLE_MD_LINK_RE = re.compile(r"^\[(.*)\]\((\S+)\)$", re.DOTALL)


class SlugMappingError(ValueError):
    """Raised when a slug mapping would not be stable under a second pass."""


def title_to_slug(title: str) -> str:
    """Derive a document slug from its title.

    Lowercase, drop everything but ``a-z``, ``0-9``, whitespace and hyphens,
    turn whitespace runs into hyphens, collapse hyphen runs.

    Example:
        "Why Footnotes?  (Part 1)" -> "why-footnotes-part-1"
    """
    slug = _NON_SLUG_RE.sub("", title.lower())
    slug = _WHITESPACE_RE.sub("-", slug.strip())
    slug = _MULTI_DASH_RE.sub("-", slug).strip("-")
    return slug or "untitled"


def unique_slug(slug: str, seen: set[str]) -> str:
    """Append -2, -3, ... until *slug* is not in *seen*."""
    candidate = slug
    counter = 2
    while candidate in seen:
        candidate = f"{slug}-{counter}"
        counter += 1
    seen.add(candidate)
    return candidate


# ---------------------------------------------------------------------------
# Slug mapping
# ---------------------------------------------------------------------------

class SlugMapping(Mapping[str, str]):
    """Static legacy-slug -> canonical-slug table.

    Many legacy slugs may share one canonical slug.  A canonical slug that is
    also a legacy key must map to itself, otherwise rewriting would not
    settle after one pass.
    """

    def __init__(self, entries: Mapping[str, str] | None = None) -> None:
        self._table: dict[str, str] = {
            str(k).strip("/"): str(v).strip("/") for k, v in (entries or {}).items()
        }
        chains = sorted(
            f"{key} -> {value} -> {self._table[value]}"
            for key, value in self._table.items()
            if value in self._table and self._table[value] != value
        )
        if chains:
            raise SlugMappingError(f"Chained slug mappings: {', '.join(chains)}")

    @classmethod
    def from_file(cls, path: Path | str) -> SlugMapping:
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise SlugMappingError(f"Cannot load slug mapping {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise SlugMappingError(f"Slug mapping {path} must be a JSON object")
        return cls(data)

    def canonical(self, slug: str) -> str:
        return self._table.get(slug, slug)

    def __getitem__(self, key: str) -> str:
        return self._table[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._table)

    def __len__(self) -> int:
        return len(self._table)


# ---------------------------------------------------------------------------
# Canonicalizer
# ---------------------------------------------------------------------------

class SlugCanonicalizer:
    """Rewrite references to legacy documents into canonical internal paths.

    Only top-level document references are rewritten: a legacy URL or a
    root-relative path with exactly one non-empty segment.  Deeper paths
    (dated archives, taxonomy listings, uploads) are returned untouched.
    """

    def __init__(
        self,
        mapping: SlugMapping | Mapping[str, str] | None = None,
        legacy_domains: Iterable[str] = (),
        prefix: str = settings.BLOG_PREFIX,
    ) -> None:
        self.mapping = mapping if isinstance(mapping, SlugMapping) else SlugMapping(mapping)
        hosts: set[str] = set()
        self.primary_host: str | None = None
        for domain in legacy_domains:
            host = domain.strip().lower()
            if host.startswith("www."):
                host = host[4:]
            if host:
                hosts.update({host, f"www.{host}"})
                self.primary_host = self.primary_host or host
        self.legacy_hosts = frozenset(hosts)
        self.prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""
        self._bare_url_re = self._compile_bare_url_re()

    def _compile_bare_url_re(self) -> re.Pattern[str] | None:
        if not self.legacy_hosts:
            return None
        hosts = "|".join(re.escape(h) for h in sorted(self.legacy_hosts, key=len, reverse=True))
        return re.compile(
            rf"(?<![\w(/\"'=])https?://(?:{hosts})(?::\d+)?"
            r"/(?:[^\s)\]\"'<>]*[^\s)\]\"'<>.,;:!?])?",
            re.IGNORECASE,
        )

    # ------------------------------------------------------------------
    # Single references
    # ------------------------------------------------------------------

    def _content_path(self, reference: str) -> str | None:
        """Return the root-relative path of *reference*, or None if external."""
        ref = reference.strip()
        if ref.startswith("/") and not ref.startswith("//"):
            return ref
        try:
            parsed = urlparse(ref)
        except ValueError:
            return None
        if parsed.scheme.lower() not in ("http", "https"):
            return None
        host = (parsed.hostname or "").lower()
        if host not in self.legacy_hosts:
            return None
        path = parsed.path or "/"
        if parsed.query:
            path += f"?{parsed.query}"
        if parsed.fragment:
            path += f"#{parsed.fragment}"
        return path

    def is_internal(self, reference: str) -> bool:
        return self._content_path(reference) is not None

    def canonicalize(self, reference: str) -> str:
        """Return *reference* with its target rewritten to a canonical slug.

        Accepts a Markdown link (``[text](target)``) or a bare URL / path.
        References that are external or point below the top level come back
        unchanged, which also makes the function idempotent.
        """
        match = _WHOLE_MD_LINK_RE.match(reference.strip())
        if match:
            text, target = match.groups()
            return f"[{text}]({self._canonical_target(target)})"
        return self._canonical_target(reference)

    def _canonical_target(self, target: str) -> str:
        path = self._content_path(target)
        if path is None:
            return target

        suffix = ""
        for sep in ("#", "?"):
            if sep in path:
                path, rest = path.split(sep, 1)
                suffix = f"{sep}{rest}{suffix}"

        segments = [s for s in path.rstrip("/").split("/") if s]
        if len(segments) != 1:
            logger.debug("Leaving non top-level reference unchanged: %s", target)
            return target

        slug = self.mapping.canonical(segments[0])
        return f"{self.prefix}/{slug}{suffix}"

    # ------------------------------------------------------------------
    # Running text
    # ------------------------------------------------------------------

    def canonicalize_links(self, text: str) -> str:
        """Rewrite the target of every Markdown link in *text*."""
        return _MD_LINK_RE.sub(
            lambda m: f"[{m.group(1)}]({self._canonical_target(m.group(2))})", text,
        )

    def canonicalize_bare_urls(self, text: str) -> str:
        """Rewrite bare legacy-domain URLs appearing in running text."""
        if self._bare_url_re is None:
            return text
        return self._bare_url_re.sub(lambda m: self._canonical_target(m.group(0)), text)

    def canonicalize_text(self, text: str) -> str:
        return self.canonicalize_bare_urls(self.canonicalize_links(text))
