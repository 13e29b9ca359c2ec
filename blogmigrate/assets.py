"""Asset resolution: turn a remote image reference into a local file.

Tiers, tried in order until one succeeds:

1. ``manifest`` - the pre-built :class:`~blogmigrate.manifest.MediaManifest`
2. ``archive``  - exact filename match anywhere under the archive root
3. ``network``  - HTTP GET with an explicit, bounded redirect loop

A destination that already exists short-circuits every tier, which is what
makes re-runs cheap: only previously missing assets are looked up again.
Failure of all tiers is not an error; the asset is logged as missing and the
document still points at the path the file should live at.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import threading
import time
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote, urljoin, urlparse

from PIL import Image

from blogmigrate import settings
from blogmigrate.rate_limit import HostThrottle, parse_retry_after

if TYPE_CHECKING:
    from blogmigrate.manifest import MediaManifest

logger = logging.getLogger(__name__)

TIER_PRESENT = "present"
TIER_MANIFEST = "manifest"
TIER_ARCHIVE = "archive"
TIER_NETWORK = "network"

_REDIRECT_CODES: frozenset[int] = frozenset({301, 302, 303, 307, 308})
_RETRY_CODES: frozenset[int] = frozenset({429, 503})
_DIMENSION_HINT_RE = re.compile(r"-(\d{1,5})x(\d{1,5})\.[A-Za-z0-9]+$")


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResolveOutcome:
    """Result of one resolution attempt (a tier, or the whole chain)."""

    ok: bool
    tier: str | None = None
    detail: str = ""


@dataclass(frozen=True)
class AssetReference:
    """A remote image bound to its per-document local location."""

    source_url: str
    local_path: str   # path as referenced from the document
    file_path: Path   # where the file lives on disk
    width: int
    height: int
    tier: str | None = None  # None when every tier failed

    @property
    def missing(self) -> bool:
        return self.tier is None


# ---------------------------------------------------------------------------
# Naming and dimensions
# ---------------------------------------------------------------------------

def _url_digest(url: str) -> str:
    return hashlib.sha1(url.encode("utf-8")).hexdigest()


def url_scheme(url: str) -> str | None:
    """Lowercased scheme of *url*, or ``None`` when it does not parse."""
    try:
        return urlparse(url.strip()).scheme.lower()
    except ValueError:
        return None


def asset_filename(url: str) -> str:
    """Return the bare filename of *url* (query and fragment stripped).

    URLs without a usable last path segment, or that do not parse at all,
    get a name derived from the URL's SHA-1 so the destination stays stable
    between runs.
    """
    try:
        path = urlparse(url.strip()).path
    except ValueError:
        path = ""
    name = path.rsplit("/", 1)[-1]
    if not name or name in (".", "..") or "\\" in name:
        return f"asset-{_url_digest(url)[:12]}"
    return name


def image_dimensions(
    file_path: Path,
    default: tuple[int, int] = settings.DEFAULT_IMAGE_SIZE,
) -> tuple[int, int]:
    """Best-effort ``(width, height)`` for an image.

    The file header is authoritative when the file exists and Pillow can
    read it.  Otherwise a WordPress size suffix (``photo-800x533.jpg``) is
    used, and failing that *default*.
    """
    if file_path.is_file():
        try:
            with Image.open(file_path) as img:
                width, height = img.size
            if width > 0 and height > 0:
                return width, height
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            logger.debug("Could not read image header of %s: %s", file_path, exc)
    match = _DIMENSION_HINT_RE.search(file_path.name)
    if match:
        width, height = int(match.group(1)), int(match.group(2))
        if width > 0 and height > 0:
            return width, height
    return default


def _atomic_copy(src: Path, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    tmp = dest.with_name(dest.name + ".part")
    try:
        shutil.copyfile(src, tmp)
        os.replace(tmp, dest)
    finally:
        if tmp.exists():
            tmp.unlink()


# ---------------------------------------------------------------------------
# Network tier
# ---------------------------------------------------------------------------

class _NoRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Surface 3xx responses as HTTPError so the download loop owns redirects."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):  # noqa: ANN001
        return None


class Downloader:
    """Fetch one URL to a file, following at most *max_redirects* redirects.

    A 429 or 503 answer is retried up to *retries* times after the delay the
    host asked for in ``Retry-After``.  Retries do not use up redirect hops.

    Args:
        timeout:       Per-request timeout in seconds.
        user_agent:    ``User-Agent`` header value.
        max_redirects: Redirect hops allowed after the first request.
        retries:       Extra attempts after a 429/503 answer.
        throttle:      Optional :class:`~blogmigrate.rate_limit.HostThrottle`.
        opener:        Object with an ``open(request, timeout=...)`` method;
                       defaults to a urllib opener with redirects disabled.
    """

    def __init__(
        self,
        *,
        timeout: int = settings.DOWNLOAD_TIMEOUT,
        user_agent: str = settings.USER_AGENT,
        max_redirects: int = settings.MAX_REDIRECTS,
        retries: int = settings.DOWNLOAD_RETRIES,
        throttle: HostThrottle | None = None,
        opener: Any = None,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_redirects = max_redirects
        self.retries = retries
        self._throttle = throttle
        self._opener = opener or urllib.request.build_opener(_NoRedirectHandler)

    def download(self, url: str, dest: Path) -> ResolveOutcome:
        current = url
        hops = 0
        retries = 0
        while True:
            if url_scheme(current) not in ("http", "https"):
                return ResolveOutcome(False, detail=f"unsupported URL {current!r}")
            if self._throttle:
                self._throttle.wait(current)
            try:
                request = urllib.request.Request(
                    current,
                    headers={
                        "User-Agent": self.user_agent,
                        "Accept": "image/avif,image/webp,image/*,*/*;q=0.8",
                    },
                )
                with self._opener.open(request, timeout=self.timeout) as resp:
                    status = getattr(resp, "status", None) or resp.getcode()
                    if status != 200:
                        return ResolveOutcome(False, detail=f"HTTP {status} for {current}")
                    self._stream(resp, dest)
                    return ResolveOutcome(True, TIER_NETWORK, current)
            except urllib.error.HTTPError as exc:
                headers = exc.headers
                location = headers.get("Location") if headers else None
                retry_after = headers.get("Retry-After") if headers else None
                exc.close()
                if exc.code in _REDIRECT_CODES and location:
                    if hops >= self.max_redirects:
                        return ResolveOutcome(
                            False, detail=f"too many redirects (>{self.max_redirects}) for {url}",
                        )
                    hops += 1
                    try:
                        target = urljoin(current, location)
                    except ValueError:
                        return ResolveOutcome(False, detail=f"bad redirect {location!r} from {current}")
                    logger.debug(
                        "HTTP %d %s -> %s (hop %d/%d)",
                        exc.code, current, target, hops, self.max_redirects,
                    )
                    current = target
                    continue
                if exc.code in _RETRY_CODES and retries < self.retries:
                    retries += 1
                    delay = parse_retry_after(retry_after)
                    logger.info(
                        "HTTP %d for %s; retry %d/%d in %.1fs",
                        exc.code, current, retries, self.retries, delay,
                    )
                    if self._throttle:
                        self._throttle.back_off(current, delay)
                    else:
                        time.sleep(delay)
                    continue
                return ResolveOutcome(False, detail=f"HTTP {exc.code} for {current}")
            except (urllib.error.URLError, OSError, ValueError) as exc:
                return ResolveOutcome(False, detail=f"network error for {current}: {exc}")

    @staticmethod
    def _stream(resp: Any, dest: Path) -> None:
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(dest.name + ".part")
        try:
            with tmp.open("wb") as fh:
                shutil.copyfileobj(resp, fh)
            os.replace(tmp, dest)
        finally:
            if tmp.exists():
                tmp.unlink()


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class AssetResolver:
    """Resolve remote images into ``<assets_dir>/<document-slug>/<filename>``.

    The resolver holds only read-only, cross-document state (manifest and
    archive index).  Per-document memoization lives on the transformation
    context, which calls :meth:`plan` and :meth:`resolve_many`.
    """

    def __init__(
        self,
        assets_dir: Path | str,
        url_prefix: str = settings.ASSETS_URL_PREFIX,
        *,
        manifest: MediaManifest | None = None,
        archive_root: Path | str | None = None,
        downloader: Downloader | None = None,
        workers: int = settings.ASSET_WORKERS,
        default_size: tuple[int, int] = settings.DEFAULT_IMAGE_SIZE,
    ) -> None:
        self.assets_dir = Path(assets_dir)
        self.url_prefix = url_prefix.rstrip("/")
        self.manifest = manifest
        self.archive_root = Path(archive_root) if archive_root else None
        self.downloader = downloader
        self.workers = workers
        self.default_size = default_size
        self._archive_index: dict[str, list[Path]] | None = None
        self._index_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, slug: str, url: str, claimed: dict[str, str]) -> tuple[Path, str]:
        """Pick the destination for *url* within document *slug*.

        *claimed* maps filenames already used in this document to the URL
        that claimed them; a second URL with the same filename is prefixed
        with a short digest of its own URL.
        """
        name = asset_filename(url)
        owner = claimed.get(name)
        if owner is not None and owner != url:
            name = f"{_url_digest(url)[:8]}-{name}"
        claimed[name] = url
        file_path = self.assets_dir / slug / name
        local_path = f"{self.url_prefix}/{slug}/{name}"
        return file_path, local_path

    def reference(
        self, url: str, file_path: Path, local_path: str, outcome: ResolveOutcome,
    ) -> AssetReference:
        width, height = image_dimensions(file_path, self.default_size)
        return AssetReference(
            source_url=url,
            local_path=local_path,
            file_path=file_path,
            width=width,
            height=height,
            tier=outcome.tier if outcome.ok else None,
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, url: str, dest: Path) -> ResolveOutcome:
        """Run the tier chain for *url*, stopping at the first success."""
        if dest.exists():
            logger.debug("Asset already present: %s", dest)
            return ResolveOutcome(True, TIER_PRESENT, str(dest))

        for tier in (self._from_manifest, self._from_archive, self._from_network):
            outcome = tier(url, dest)
            if outcome.ok:
                logger.debug("Resolved %s via %s (%s)", url, outcome.tier, outcome.detail)
                return outcome
            if outcome.detail:
                logger.debug("Tier miss for %s: %s", url, outcome.detail)

        logger.warning("Image missing: %s -> %s", url, dest)
        return ResolveOutcome(False, detail="all tiers failed")

    def resolve_many(self, jobs: list[tuple[str, Path]]) -> dict[str, ResolveOutcome]:
        """Resolve several distinct ``(url, dest)`` jobs, concurrently when allowed."""
        if not jobs:
            return {}
        if self.workers <= 1 or len(jobs) == 1:
            return {url: self.resolve(url, dest) for url, dest in jobs}
        with ThreadPoolExecutor(max_workers=min(self.workers, len(jobs))) as pool:
            outcomes = list(pool.map(lambda job: self.resolve(*job), jobs))
        return {url: outcome for (url, _), outcome in zip(jobs, outcomes)}

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    def _from_manifest(self, url: str, dest: Path) -> ResolveOutcome:
        if self.manifest is None:
            return ResolveOutcome(False)
        source = self.manifest.lookup(url)
        if source is None:
            return ResolveOutcome(False)
        if not source.is_file():
            return ResolveOutcome(False, detail=f"manifest entry {source} does not exist")
        try:
            _atomic_copy(source, dest)
        except OSError as exc:
            return ResolveOutcome(False, detail=f"copy from {source} failed: {exc}")
        return ResolveOutcome(True, TIER_MANIFEST, str(source))

    def _from_archive(self, url: str, dest: Path) -> ResolveOutcome:
        if self.archive_root is None:
            return ResolveOutcome(False)
        index = self._archive()
        name = asset_filename(url)
        candidates = index.get(name) or index.get(unquote(name)) or []
        if not candidates:
            return ResolveOutcome(False)
        if len(candidates) > 1:
            logger.warning(
                "%d archive files named %r; using %s",
                len(candidates), name, candidates[0],
            )
        try:
            _atomic_copy(candidates[0], dest)
        except OSError as exc:
            return ResolveOutcome(False, detail=f"copy from {candidates[0]} failed: {exc}")
        return ResolveOutcome(True, TIER_ARCHIVE, str(candidates[0]))

    def _from_network(self, url: str, dest: Path) -> ResolveOutcome:
        if self.downloader is None:
            return ResolveOutcome(False, detail="network tier disabled")
        return self.downloader.download(url, dest)

    def _archive(self) -> dict[str, list[Path]]:
        with self._index_lock:
            if self._archive_index is None:
                self._archive_index = self._build_archive_index()
            return self._archive_index

    def _build_archive_index(self) -> dict[str, list[Path]]:
        index: dict[str, list[Path]] = {}
        root = self.archive_root
        if root is None or not root.is_dir():
            logger.warning("Archive root %s is not a directory", root)
            return index
        for dirpath, _dirnames, filenames in os.walk(root):
            for filename in filenames:
                index.setdefault(filename, []).append(Path(dirpath) / filename)
        for paths in index.values():
            paths.sort()
        logger.info("Indexed %d archive filenames under %s", len(index), root)
        return index
