"""Input record adapter: JSON array or JSON Lines -> SourceRecords.

The export parser that produced the file is not part of this package; any
producer that writes one object per post with ``title``, ``content``,
``date``, ``categories``, ``tags`` and ``status`` keys will do.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from blogmigrate.items import SourceRecord

logger = logging.getLogger(__name__)


class RecordSourceError(RuntimeError):
    """Raised when the record source cannot be read at all.

    Attributes:
        path -- the file that failed
    """

    def __init__(self, message: str, path: Path | str = "") -> None:
        super().__init__(message)
        self.path = str(path)


def _decode(text: str, path: Path) -> list[Any]:
    stripped = text.lstrip()
    if not stripped:
        return []
    if stripped.startswith("["):
        try:
            data = json.loads(stripped)
        except ValueError as exc:
            raise RecordSourceError(f"Invalid JSON in {path}: {exc}", path) from exc
        return data

    entries: list[Any] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            entries.append(json.loads(line))
        except ValueError as exc:
            raise RecordSourceError(f"Invalid JSON on line {lineno} of {path}: {exc}", path) from exc
    return entries


def iter_records(entries: list[Any]) -> Iterator[SourceRecord]:
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            logger.warning("Skipping record #%d: expected an object, got %s", index, type(entry).__name__)
            continue
        try:
            yield SourceRecord.model_validate(entry)
        except ValidationError as exc:
            logger.warning("Skipping record #%d: %s", index, exc)


def load_records(path: Path | str) -> list[SourceRecord]:
    """Read every record in *path*; raise :class:`RecordSourceError` if unreadable."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise RecordSourceError(f"Cannot read record source {path}: {exc}", path) from exc
    records = list(iter_records(_decode(text, path)))
    logger.info("Loaded %d records from %s", len(records), path)
    return records
