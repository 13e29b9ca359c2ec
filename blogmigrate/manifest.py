"""Media manifest: the pre-built index behind the first resolution tier.

Two source formats are understood:

- a JSON object mapping remote URLs / media identifiers to local file paths
  (relative paths are taken relative to the archive root, or the JSON file's
  directory when no archive root is given);
- a WordPress media export (RSS with the ``wp:`` namespace), where each
  attachment's ``guid`` and ``wp:attachment_url`` map to the copy of that
  upload inside the archive root (``<root>/<YYYY>/<MM>/<file>``).

The index is built once and never mutated afterwards.
"""

from __future__ import annotations

import json
import logging
import re
import xml.etree.ElementTree as ET  # for ET.ParseError only
from collections.abc import Iterator, Mapping
from pathlib import Path
from urllib.parse import urlparse

import defusedxml.ElementTree as defused_ET

logger = logging.getLogger(__name__)

_WP_NS = "http://wordpress.org/export/1.2/"
_UPLOAD_PATH_RE = re.compile(r"wp-content/uploads/(\d{4})/(\d{2})/([^?#\s]+)")


class ManifestError(RuntimeError):
    """Raised when a manifest file exists but cannot be read or parsed."""

    def __init__(self, message: str, path: Path | str = "") -> None:
        super().__init__(message)
        self.path = str(path)


def manifest_key(reference: str) -> str:
    """Return the comparison key for a remote reference.

    Scheme, ``www.`` prefix, query string and fragment are ignored so
    ``http://www.example.com/a.jpg?w=300`` and ``https://example.com/a.jpg``
    share one entry.  Bare identifiers (no host) and references that do not
    parse are compared as-is.
    """
    ref = reference.strip()
    try:
        parsed = urlparse(ref)
    except ValueError:
        return ref
    if not parsed.netloc:
        return ref.split("?", 1)[0].split("#", 1)[0]
    host = parsed.netloc.lower()
    if host.startswith("www."):
        host = host[4:]
    return f"{host}{parsed.path}"


class MediaManifest(Mapping[str, Path]):
    """Read-only mapping of normalized remote references to archive paths."""

    def __init__(self, entries: Mapping[str, Path | str] | None = None) -> None:
        self._index: dict[str, Path] = {}
        for remote, local in (entries or {}).items():
            key = manifest_key(remote)
            if key:
                self._index.setdefault(key, Path(local))

    def lookup(self, url: str) -> Path | None:
        return self._index.get(manifest_key(url))

    def __getitem__(self, key: str) -> Path:
        return self._index[manifest_key(key)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._index)

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and manifest_key(key) in self._index


def _text(el: ET.Element | None) -> str | None:
    if el is None:
        return None
    t = (el.text or "").strip()
    return t or None


def upload_path(attachment_url: str, archive_root: Path) -> Path | None:
    """Map a ``wp-content/uploads/YYYY/MM/file`` URL into *archive_root*."""
    match = _UPLOAD_PATH_RE.search(attachment_url)
    if not match:
        return None
    year, month, filename = match.groups()
    return archive_root / year / month / filename


def _parse_media_export(xml_text: str, archive_root: Path) -> dict[str, Path]:
    root = defused_ET.fromstring(xml_text)
    channel = root.find("channel")
    items = (channel if channel is not None else root).findall("item")
    entries: dict[str, Path] = {}
    for item in items:
        attachment_url = _text(item.find(f"{{{_WP_NS}}}attachment_url"))
        if not attachment_url:
            continue
        local = upload_path(attachment_url, archive_root)
        if local is None:
            logger.debug("Attachment outside uploads tree: %s", attachment_url)
            continue
        entries.setdefault(attachment_url, local)
        guid = _text(item.find("guid"))
        if guid:
            entries.setdefault(guid, local)
    return entries


def _parse_json_manifest(text: str, base: Path) -> dict[str, Path]:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("JSON manifest must be an object")
    entries: dict[str, Path] = {}
    for remote, local in data.items():
        if not isinstance(local, str) or not local.strip():
            continue
        path = Path(local)
        entries[str(remote)] = path if path.is_absolute() else base / path
    return entries


def load_manifest(path: Path | str, archive_root: Path | str | None = None) -> MediaManifest:
    """Build a :class:`MediaManifest` from a JSON or WordPress media export file.

    Raises:
        ManifestError: if the file cannot be read or parsed.
    """
    path = Path(path)
    root = Path(archive_root) if archive_root else None
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ManifestError(f"Cannot read manifest {path}: {exc}", path) from exc

    try:
        if text.lstrip().startswith("<"):
            if root is None:
                raise ManifestError(
                    f"Media export {path} needs an archive root to map uploads", path,
                )
            entries = _parse_media_export(text, root)
        else:
            entries = _parse_json_manifest(text, root or path.parent)
    except (ET.ParseError, ValueError) as exc:
        raise ManifestError(f"Cannot parse manifest {path}: {exc}", path) from exc

    manifest = MediaManifest(entries)
    logger.info("Loaded media manifest: %d entries from %s", len(manifest), path)
    return manifest
