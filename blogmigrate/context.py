"""Per-document transformation context.

Everything that must not leak between documents lives here: the footnote
counter, the queued footnote definitions, the memoized asset references and
the shortcodes flagged for review.  A new context is created for every record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from blogmigrate.assets import AssetReference, ResolveOutcome, url_scheme

if TYPE_CHECKING:
    from blogmigrate.assets import AssetResolver
    from blogmigrate.extractors.urlnorm import SlugCanonicalizer

logger = logging.getLogger(__name__)


@dataclass
class FootnoteEntry:
    id: str
    body: str  # markup fragment, rendered to Markdown when the body is finalized


@dataclass
class TransformContext:
    slug: str
    canonicalizer: SlugCanonicalizer | None = None
    resolver: AssetResolver | None = None
    footnotes: dict[str, FootnoteEntry] = field(default_factory=dict)
    assets: dict[str, AssetReference] = field(default_factory=dict)
    rejected_assets: list[str] = field(default_factory=list)
    unrecognized_shortcodes: list[str] = field(default_factory=list)
    _footnote_counter: int = 0
    _claimed_names: dict[str, str] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Footnotes
    # ------------------------------------------------------------------

    def next_footnote_number(self) -> int:
        self._footnote_counter += 1
        return self._footnote_counter

    def add_footnote(self, footnote_id: str, body: str) -> None:
        """Queue a definition; a reused id replaces the earlier body in place."""
        existing = self.footnotes.get(footnote_id)
        if existing is not None:
            logger.warning(
                "Duplicate footnote id %r in %s; keeping the later definition",
                footnote_id, self.slug,
            )
            existing.body = body
            return
        self.footnotes[footnote_id] = FootnoteEntry(footnote_id, body)

    # ------------------------------------------------------------------
    # Review flags
    # ------------------------------------------------------------------

    def flag_shortcode(self, tag: str) -> None:
        """Record a shortcode left in the body; each distinct tag is kept once."""
        if tag in self.unrecognized_shortcodes:
            return
        logger.warning("Unrecognized shortcode %s in %s; left verbatim", tag, self.slug)
        self.unrecognized_shortcodes.append(tag)

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    def prefetch_assets(self, urls: list[str]) -> None:
        """Resolve every not-yet-seen URL in *urls*, concurrently when allowed.

        Destinations are planned in input order before any I/O starts so the
        chosen filenames do not depend on which download finishes first.
        URLs that do not parse are never resolved; they are reported missing
        and the document keeps them as written.
        """
        if self.resolver is None:
            return
        jobs: list[tuple[str, Path, str]] = []
        seen: set[str] = set()
        for url in urls:
            if not url or url in self.assets or url in seen or url in self.rejected_assets:
                continue
            seen.add(url)
            if url_scheme(url) is None:
                logger.warning("Unparseable image URL in %s: %s", self.slug, url)
                self.rejected_assets.append(url)
                continue
            file_path, local_path = self.resolver.plan(self.slug, url, self._claimed_names)
            jobs.append((url, file_path, local_path))
        if not jobs:
            return
        outcomes = self.resolver.resolve_many([(url, path) for url, path, _ in jobs])
        for url, file_path, local_path in jobs:
            outcome = outcomes.get(url, ResolveOutcome(False))
            self.assets[url] = self.resolver.reference(url, file_path, local_path, outcome)

    def resolve_asset(self, url: str) -> AssetReference | None:
        """Return the memoized reference for *url*, resolving it on first use."""
        if url not in self.assets:
            self.prefetch_assets([url])
        return self.assets.get(url)

    @property
    def missing_assets(self) -> list[str]:
        missing = [ref.source_url for ref in self.assets.values() if ref.missing]
        return missing + self.rejected_assets
