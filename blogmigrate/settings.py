"""Project settings for blogmigrate.

Module-level constants are the defaults.  The CLI copies them into a
:class:`MigrationConfig`, overriding whatever was passed on the command line,
and every component reads its knobs from that config object.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

# ---------------------------------------------------------------------------
# Legacy site identity
# ---------------------------------------------------------------------------
# Comma-separated; "www." variants are matched automatically.
LEGACY_DOMAINS: tuple[str, ...] = tuple(
    d.strip().lower()
    for d in os.getenv("BLOGMIGRATE_LEGACY_DOMAINS", "").split(",")
    if d.strip()
)

# Root-relative prefix canonical document links are emitted under.
BLOG_PREFIX = "/blog"

# ---------------------------------------------------------------------------
# Output layout
# ---------------------------------------------------------------------------
OUTPUT_DIR = "./out/posts"
ASSETS_DIR = "./out/images/blog"
ASSETS_URL_PREFIX = "/images/blog"
DOCUMENT_EXTENSION = ".mdx"

# ---------------------------------------------------------------------------
# Asset resolution
# ---------------------------------------------------------------------------
MAX_REDIRECTS = 5
DOWNLOAD_TIMEOUT = 30
ASSET_WORKERS = 4
# Requests per second per host for the network tier; 0 disables throttling.
DOWNLOAD_RATE_PER_HOST = 2.0
# Extra attempts after a 429 or 503, spaced by the host's Retry-After.
DOWNLOAD_RETRIES = 2
DEFAULT_IMAGE_SIZE: tuple[int, int] = (800, 600)

USER_AGENT = "blogmigrate/0.1 (+static-site migration)"

# ---------------------------------------------------------------------------
# Front matter
# ---------------------------------------------------------------------------
SUMMARY_LENGTH = 200

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
LOG_LEVEL = "INFO"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class MigrationConfig(BaseModel):
    """Resolved configuration for one migration run."""

    output_dir: Path = Path(OUTPUT_DIR)
    assets_dir: Path = Path(ASSETS_DIR)
    assets_url_prefix: str = ASSETS_URL_PREFIX
    document_extension: str = DOCUMENT_EXTENSION

    legacy_domains: list[str] = Field(default_factory=lambda: list(LEGACY_DOMAINS))
    blog_prefix: str = BLOG_PREFIX

    manifest_path: Path | None = None
    archive_root: Path | None = None
    slug_map_path: Path | None = None

    network: bool = True
    max_redirects: int = MAX_REDIRECTS
    download_timeout: int = DOWNLOAD_TIMEOUT
    download_rate_per_host: float = DOWNLOAD_RATE_PER_HOST
    download_retries: int = DOWNLOAD_RETRIES
    asset_workers: int = ASSET_WORKERS
    default_image_size: tuple[int, int] = DEFAULT_IMAGE_SIZE
    user_agent: str = USER_AGENT

    summary_length: int = SUMMARY_LENGTH
    skip_existing: bool = False

    @field_validator("legacy_domains", mode="before")
    @classmethod
    def lower_domains(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, (list, tuple)):
            return [str(d).strip().lower() for d in v if str(d).strip()]
        return v

    @field_validator("assets_url_prefix", "blog_prefix")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return "/" + v.strip("/") if v.strip("/") else ""

    @field_validator("document_extension")
    @classmethod
    def dotted_extension(cls, v: str) -> str:
        return v if v.startswith(".") else f".{v}"

    @field_validator("asset_workers", "max_redirects", "download_retries")
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v
