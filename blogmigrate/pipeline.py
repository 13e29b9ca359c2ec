"""Document-at-a-time migration: normalize -> rewrite -> emit -> write.

One :class:`~blogmigrate.context.TransformContext` is created per record, so
footnote numbering, asset memoization and filename claims never leak from
one document into the next.  The slug mapping, media manifest and archive
index are the only shared state, and they are read-only once built.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from blogmigrate.assets import AssetResolver, Downloader
from blogmigrate.context import TransformContext
from blogmigrate.emitter import build_document, extract_summary, format_document, write_document
from blogmigrate.extractors.markdown import rewrite
from blogmigrate.extractors.rules import DEFAULT_RULES, RewriteRule
from blogmigrate.extractors.shortcodes import normalize_markup
from blogmigrate.extractors.urlnorm import SlugCanonicalizer, SlugMapping, title_to_slug, unique_slug
from blogmigrate.manifest import load_manifest
from blogmigrate.rate_limit import HostThrottle

if TYPE_CHECKING:
    from collections.abc import Iterable

    from blogmigrate.items import OutputDocument, SourceRecord
    from blogmigrate.settings import MigrationConfig

logger = logging.getLogger(__name__)

STATUS_WRITTEN = "written"
STATUS_UNCHANGED = "unchanged"
STATUS_SKIPPED = "skipped"
STATUS_FAILED = "failed"


@dataclass
class DocumentResult:
    slug: str
    path: Path
    status: str
    missing_assets: list[str] = field(default_factory=list)
    unrecognized_shortcodes: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class MigrationReport:
    """Outcome of one run, in input order."""

    results: list[DocumentResult] = field(default_factory=list)
    ignored: int = 0  # records that were not published

    def count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def missing_assets(self) -> list[tuple[str, str]]:
        return [(r.slug, url) for r in self.results for url in r.missing_assets]

    @property
    def unrecognized_shortcodes(self) -> list[tuple[str, str]]:
        return [(r.slug, tag) for r in self.results for tag in r.unrecognized_shortcodes]

    @property
    def failures(self) -> list[DocumentResult]:
        return [r for r in self.results if r.status == STATUS_FAILED]


class MigrationPipeline:
    def __init__(
        self,
        config: MigrationConfig,
        canonicalizer: SlugCanonicalizer | None = None,
        resolver: AssetResolver | None = None,
        rules: tuple[RewriteRule, ...] = DEFAULT_RULES,
    ) -> None:
        self.config = config
        self.canonicalizer = canonicalizer
        self.resolver = resolver
        self.rules = rules

    def document_path(self, slug: str) -> Path:
        return self.config.output_dir / f"{slug}{self.config.document_extension}"

    def transform(self, record: SourceRecord, slug: str) -> OutputDocument:
        """Run the full transformation for one record; no file is written."""
        ctx = TransformContext(slug=slug, canonicalizer=self.canonicalizer, resolver=self.resolver)
        markup = normalize_markup(record.raw_body, ctx)
        body = rewrite(markup, ctx, self.rules)

        hero_image = None
        if record.hero_image_url:
            reference = ctx.resolve_asset(record.hero_image_url)
            hero_image = reference.local_path if reference else record.hero_image_url

        return build_document(
            record,
            slug,
            body,
            summary=extract_summary(markup, self.config.summary_length),
            hero_image=hero_image,
            missing_assets=ctx.missing_assets,
            unrecognized_shortcodes=ctx.unrecognized_shortcodes,
        )

    def process_record(self, record: SourceRecord, slug: str) -> DocumentResult:
        path = self.document_path(slug)
        if self.config.skip_existing and path.exists():
            logger.info("Skipping existing document %s", path)
            return DocumentResult(slug, path, STATUS_SKIPPED)

        document = self.transform(record, slug)
        changed = write_document(path, format_document(document))
        status = STATUS_WRITTEN if changed else STATUS_UNCHANGED
        logger.info("%s: %s (%d missing assets)", status.capitalize(), path, len(document.missing_assets))
        return DocumentResult(
            slug, path, status, document.missing_assets, document.unrecognized_shortcodes,
        )

    def run(self, records: Iterable[SourceRecord]) -> MigrationReport:
        """Migrate *records* one at a time.

        A record that fails to transform is logged and reported as failed;
        nothing is written for it and the run moves on to the next record.
        """
        report = MigrationReport()
        seen: set[str] = set()
        for record in records:
            if not record.is_published:
                logger.debug("Ignoring unpublished record %r", record.title)
                report.ignored += 1
                continue
            slug = unique_slug(title_to_slug(record.title), seen)
            try:
                result = self.process_record(record, slug)
            except Exception as exc:
                logger.exception("Failed to migrate %r (%s)", record.title, slug)
                result = DocumentResult(
                    slug, self.document_path(slug), STATUS_FAILED, error=f"{type(exc).__name__}: {exc}",
                )
            report.results.append(result)
        return report


def build_pipeline(config: MigrationConfig) -> MigrationPipeline:
    """Wire the canonicalizer and resolver described by *config*.

    Raises ``SlugMappingError`` or ``ManifestError`` when those inputs are
    configured but unusable.
    """
    mapping = SlugMapping.from_file(config.slug_map_path) if config.slug_map_path else SlugMapping()
    canonicalizer = SlugCanonicalizer(mapping, config.legacy_domains, config.blog_prefix)

    manifest = None
    if config.manifest_path:
        manifest = load_manifest(config.manifest_path, config.archive_root)
        logger.info("Media manifest: %d entries", len(manifest))

    downloader = None
    if config.network:
        throttle = HostThrottle(config.download_rate_per_host) if config.download_rate_per_host > 0 else None
        downloader = Downloader(
            timeout=config.download_timeout,
            user_agent=config.user_agent,
            max_redirects=config.max_redirects,
            retries=config.download_retries,
            throttle=throttle,
        )

    resolver = AssetResolver(
        config.assets_dir,
        config.assets_url_prefix,
        manifest=manifest,
        archive_root=config.archive_root,
        downloader=downloader,
        workers=config.asset_workers,
        default_size=config.default_image_size,
    )
    return MigrationPipeline(config, canonicalizer, resolver)
