"""Tests for blogmigrate.manifest - the tier-1 media index."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from blogmigrate.manifest import (
    ManifestError,
    MediaManifest,
    load_manifest,
    manifest_key,
    upload_path,
)

MEDIA_EXPORT = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:wp="http://wordpress.org/export/1.2/">
<channel>
  <item>
    <title>photo</title>
    <guid isPermaLink="false">http://oldblog.example.com/?attachment_id=42</guid>
    <wp:attachment_url>http://oldblog.example.com/wp-content/uploads/2014/06/photo.jpg</wp:attachment_url>
  </item>
  <item>
    <title>elsewhere</title>
    <wp:attachment_url>http://cdn.example.com/misc/file.png</wp:attachment_url>
  </item>
  <item><title>no attachment</title></item>
</channel>
</rss>
"""


class TestManifestKey:
    def test_scheme_www_and_query_ignored(self):
        assert manifest_key("http://www.Example.com/a.jpg?w=300") == manifest_key("https://example.com/a.jpg")

    def test_bare_identifier(self):
        assert manifest_key("media-42?x=1") == "media-42"

    def test_unparseable_reference_kept_verbatim(self):
        assert manifest_key(" http://[placeholder]/a.jpg ") == "http://[placeholder]/a.jpg"


class TestMediaManifest:
    def test_lookup_normalized(self, tmp_path: Path):
        manifest = MediaManifest({"https://example.com/a.jpg": tmp_path / "a.jpg"})
        assert manifest.lookup("http://www.example.com/a.jpg?resize=10") == tmp_path / "a.jpg"
        assert "https://example.com/a.jpg" in manifest
        assert len(manifest) == 1

    def test_miss(self):
        assert MediaManifest().lookup("https://example.com/a.jpg") is None

    def test_unparseable_lookup_misses(self):
        assert MediaManifest({"https://example.com/a.jpg": "a.jpg"}).lookup("http://[placeholder]/a.jpg") is None


class TestUploadPath:
    def test_dated_upload(self, tmp_path: Path):
        url = "http://x.com/wp-content/uploads/2014/06/photo-800x533.jpg?w=1"
        assert upload_path(url, tmp_path) == tmp_path / "2014" / "06" / "photo-800x533.jpg"

    def test_outside_uploads(self, tmp_path: Path):
        assert upload_path("http://x.com/images/a.jpg", tmp_path) is None


class TestLoadManifest:
    def test_json_relative_paths(self, tmp_path: Path):
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps({"https://x.com/a.jpg": "img/a.jpg", "bad": ""}), encoding="utf-8")
        manifest = load_manifest(path)
        assert manifest.lookup("https://x.com/a.jpg") == tmp_path / "img" / "a.jpg"
        assert len(manifest) == 1

    def test_json_relative_to_archive_root(self, tmp_path: Path):
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps({"https://x.com/a.jpg": "a.jpg"}), encoding="utf-8")
        manifest = load_manifest(path, tmp_path / "archive")
        assert manifest.lookup("https://x.com/a.jpg") == tmp_path / "archive" / "a.jpg"

    def test_media_export(self, tmp_path: Path):
        path = tmp_path / "media.xml"
        path.write_text(MEDIA_EXPORT, encoding="utf-8")
        manifest = load_manifest(path, tmp_path / "uploads")
        expected = tmp_path / "uploads" / "2014" / "06" / "photo.jpg"
        assert manifest.lookup("https://oldblog.example.com/wp-content/uploads/2014/06/photo.jpg") == expected
        assert manifest.lookup("http://oldblog.example.com/?attachment_id=42") == expected
        assert manifest.lookup("http://cdn.example.com/misc/file.png") is None

    def test_media_export_requires_archive_root(self, tmp_path: Path):
        path = tmp_path / "media.xml"
        path.write_text(MEDIA_EXPORT, encoding="utf-8")
        with pytest.raises(ManifestError, match="archive root"):
            load_manifest(path)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ManifestError):
            load_manifest(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path: Path):
        path = tmp_path / "manifest.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ManifestError):
            load_manifest(path)

    def test_invalid_xml(self, tmp_path: Path):
        path = tmp_path / "media.xml"
        path.write_text("<rss><channel>", encoding="utf-8")
        with pytest.raises(ManifestError):
            load_manifest(path, tmp_path)
