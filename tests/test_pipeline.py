"""End-to-end tests for the migration pipeline and CLI."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from blogmigrate.__main__ import MISSING_ASSETS_FILE, main
from blogmigrate.assets import AssetResolver
from blogmigrate.items import SourceRecord
from blogmigrate.manifest import MediaManifest
from blogmigrate.pipeline import (
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_UNCHANGED,
    STATUS_WRITTEN,
    MigrationPipeline,
    build_pipeline,
)
from blogmigrate.records import load_records
from blogmigrate.settings import MigrationConfig


@pytest.fixture
def config(tmp_path: Path) -> MigrationConfig:
    return MigrationConfig(
        output_dir=tmp_path / "posts",
        assets_dir=tmp_path / "images",
        legacy_domains=["oldblog.example.com"],
        network=False,
        asset_workers=1,
    )


class TestTransform:
    def test_legacy_post(self, config, canonicalizer, legacy_post_html):
        pipeline = MigrationPipeline(config, canonicalizer)
        record = SourceRecord(title="Legacy Post", raw_body=legacy_post_html, published_at="2014-06-09")
        body = pipeline.transform(record, "legacy-post").body

        assert "gallery" not in body
        assert "Welcome to the archive. This post has a note[^1] and a citation[^2]." in body
        assert "[^1]: First note with *emphasis*." in body
        assert "[^2]: Smith & Jones, 2009." in body
        assert "[the earlier post](/blog/new-slug)" in body
        assert "[the dated archive](http://oldblog.example.com/2014/06/09/post-title/)" in body
        assert "cheap pills" not in body
        assert "> Simplicity is prerequisite for reliability.\n>\n> — Edsger Dijkstra" in body
        assert "```python\ndef add(a, b):\n    return a + b\n```" in body
        assert "- First item\n- Second item" in body
        assert "Tom & Jerry forever." in body
        assert body.index("[^1]: ") > body.index("Tom & Jerry")

    def test_summary_and_front_matter(self, config):
        pipeline = MigrationPipeline(config)
        record = SourceRecord(
            title="T", raw_body="Plain first paragraph.\n\nSecond.", categories=["c"], tags=["t"],
        )
        doc = pipeline.transform(record, "t")
        assert doc.front_matter.summary == "Plain first paragraph. Second."
        assert doc.front_matter.categories == ["c"]
        assert doc.body == "Plain first paragraph.\n\nSecond."

    def test_hero_image_resolved(self, config, tmp_path: Path):
        source = tmp_path / "hero-1200x630.jpg"
        source.write_bytes(b"x")
        url = "https://oldblog.example.com/wp-content/uploads/hero-1200x630.jpg"
        resolver = AssetResolver(config.assets_dir, manifest=MediaManifest({url: source}), workers=1)
        pipeline = MigrationPipeline(config, resolver=resolver)
        doc = pipeline.transform(SourceRecord(title="H", raw_body="x", featured_image=url), "h")
        assert doc.front_matter.hero_image == "/images/blog/h/hero-1200x630.jpg"
        assert doc.missing_assets == []

    def test_summary_has_no_footnote_markers(self, config):
        record = SourceRecord(title="N", raw_body="A claim[footnote]Source.[/footnote] stands.")
        doc = MigrationPipeline(config).transform(record, "n")
        assert doc.front_matter.summary == "A claim stands."
        assert "[^1]: Source." in doc.body

    def test_unrecognized_shortcodes_carried(self, config):
        record = SourceRecord(title="S", raw_body="Hi [contact-form id=3]")
        doc = MigrationPipeline(config).transform(record, "s")
        assert doc.unrecognized_shortcodes == ["[contact-form id=3]"]
        assert "\\[contact-form id=3\\]" in doc.body


class TestRun:
    def test_one_document_per_published_record(self, config, records_path):
        report = MigrationPipeline(config).run(load_records(records_path))
        assert [r.slug for r in report.results] == ["hello-world", "hello-world-2"]
        assert report.ignored == 1
        assert sorted(p.name for p in config.output_dir.iterdir()) == ["hello-world-2.mdx", "hello-world.mdx"]

        text = (config.output_dir / "hello-world.mdx").read_text(encoding="utf-8")
        assert text.startswith("---\ntitle: 'Hello World!'\npublishedAt: '2012-03-04'\n")
        assert "categories: ['News', 'Meta']\n" in text
        assert text.endswith("---\n\nFirst post body.\n")

    def test_rerun_is_byte_identical(self, config, records_path):
        records = load_records(records_path)
        MigrationPipeline(config).run(records)
        before = {p.name: p.read_bytes() for p in config.output_dir.iterdir()}
        report = MigrationPipeline(config).run(records)
        after = {p.name: p.read_bytes() for p in config.output_dir.iterdir()}
        assert before == after
        assert report.count(STATUS_UNCHANGED) == 2
        assert report.count(STATUS_WRITTEN) == 0

    def test_rerun_does_not_redownload(self, config):
        downloader = MagicMock()

        def _download(url, dest):
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(b"img")
            from blogmigrate.assets import TIER_NETWORK, ResolveOutcome

            return ResolveOutcome(True, TIER_NETWORK, url)

        downloader.download.side_effect = _download
        resolver = AssetResolver(config.assets_dir, downloader=downloader, workers=1)
        record = SourceRecord(title="Pics", raw_body='<img src="https://cdn.example.com/a.jpg" alt="a">')

        MigrationPipeline(config, resolver=resolver).run([record])
        MigrationPipeline(config, resolver=resolver).run([record])
        assert downloader.download.call_count == 1

    def test_skip_existing(self, config, records_path):
        config.output_dir.mkdir(parents=True)
        (config.output_dir / "hello-world.mdx").write_text("hand edited\n", encoding="utf-8")
        config = config.model_copy(update={"skip_existing": True})
        report = MigrationPipeline(config).run(load_records(records_path))
        assert report.results[0].status == STATUS_SKIPPED
        assert (config.output_dir / "hello-world.mdx").read_text(encoding="utf-8") == "hand edited\n"

    def test_missing_assets_reported(self, config):
        pipeline = build_pipeline(config)
        record = SourceRecord(title="Lost", raw_body='<p><img src="https://gone.example/x.png"></p>')
        report = pipeline.run([record])
        assert report.missing_assets == [("lost", "https://gone.example/x.png")]

    def test_unparseable_image_does_not_stop_run(self, config):
        bad = SourceRecord(title="Bad", raw_body='<p><img src="http://[placeholder]/a.jpg"></p>')
        good = SourceRecord(title="Good", raw_body="<p>Fine.</p>")
        report = build_pipeline(config).run([bad, good])
        assert [r.status for r in report.results] == [STATUS_WRITTEN, STATUS_WRITTEN]
        assert report.missing_assets == [("bad", "http://[placeholder]/a.jpg")]
        assert (config.output_dir / "good.mdx").exists()

    def test_failing_record_isolated(self, config, caplog):
        records = [
            SourceRecord(title="Broken", raw_body="<p>x</p>"),
            SourceRecord(title="Fine", raw_body="<p>y</p>"),
        ]
        pipeline = MigrationPipeline(config)
        with patch(
            "blogmigrate.pipeline.rewrite",
            side_effect=[RuntimeError("boom"), "y"],
        ):
            report = pipeline.run(records)
        broken, fine = report.results
        assert broken.status == STATUS_FAILED
        assert broken.error == "RuntimeError: boom"
        assert not broken.path.exists()
        assert fine.status == STATUS_WRITTEN
        assert report.failures == [broken]
        assert "Failed to migrate" in caplog.text

    def test_unrecognized_shortcodes_reported(self, config):
        record = SourceRecord(title="Form", raw_body="Write to us [contact-form id=3]")
        report = MigrationPipeline(config).run([record])
        assert report.unrecognized_shortcodes == [("form", "[contact-form id=3]")]


class TestBuildPipeline:
    def test_wires_slug_map_and_manifest(self, config, tmp_path: Path):
        slug_map = tmp_path / "slugs.json"
        slug_map.write_text(json.dumps({"old": "new"}), encoding="utf-8")
        manifest = tmp_path / "manifest.json"
        manifest.write_text(json.dumps({"https://x.com/a.jpg": "a.jpg"}), encoding="utf-8")
        config = config.model_copy(update={"slug_map_path": slug_map, "manifest_path": manifest})

        pipeline = build_pipeline(config)
        assert pipeline.canonicalizer.canonicalize("/old") == "/blog/new"
        assert pipeline.resolver.manifest.lookup("https://x.com/a.jpg") == tmp_path / "a.jpg"
        assert pipeline.resolver.downloader is None

    def test_network_enabled(self, config):
        pipeline = build_pipeline(config.model_copy(update={"network": True}))
        assert pipeline.resolver.downloader is not None


class TestCli:
    def _args(self, tmp_path: Path, records: Path) -> list[str]:
        return [
            "--records", str(records),
            "--out", str(tmp_path / "posts"),
            "--assets-dir", str(tmp_path / "images"),
            "--legacy-domain", "oldblog.example.com",
            "--no-network",
            "--log-level", "WARNING",
        ]

    def test_run(self, tmp_path: Path, records_path: Path):
        assert main(self._args(tmp_path, records_path)) == 0
        assert (tmp_path / "posts" / "hello-world.mdx").exists()
        assert (tmp_path / "posts" / MISSING_ASSETS_FILE).read_text(encoding="utf-8") == ""

    def test_unreadable_records(self, tmp_path: Path):
        assert main(self._args(tmp_path, tmp_path / "missing.json")) == 1

    def test_bad_slug_map(self, tmp_path: Path, records_path: Path):
        slug_map = tmp_path / "slugs.json"
        slug_map.write_text(json.dumps({"a": "b", "b": "c"}), encoding="utf-8")
        assert main([*self._args(tmp_path, records_path), "--slug-map", str(slug_map)]) == 1

    def test_review_items_in_summary(self, tmp_path: Path, capsys):
        records = tmp_path / "records.json"
        records.write_text(
            json.dumps([{"title": "Form", "content": "Hi [contact-form id=3]", "status": "publish"}]),
            encoding="utf-8",
        )
        assert main(self._args(tmp_path, records)) == 0
        out = capsys.readouterr().out
        assert "Unrecognized Shortcodes" in out
        assert "contact-form" in out
