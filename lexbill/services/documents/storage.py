"""Filesystem storage for generated documents.

Files land under ``{root}/{year}/{internal_reference}/`` with a name
built from the document kind, a timestamp and a uuid4, so no two
documents ever share a path. Writes go to a temporary name first and
are renamed into place, so a reader never sees a half-written file.
"""

from __future__ import annotations

import asyncio
import os
import re
import uuid
from datetime import UTC, datetime
from pathlib import Path

import structlog

from lexbill.models.domain import DocumentKind

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_component(value: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", value).strip("._")
    return cleaned or "unnamed"


class DocumentStorage:
    """Writes and reads document files below a root directory."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def build_path(
        self,
        kind: DocumentKind,
        internal_reference: str,
        *,
        now: datetime | None = None,
    ) -> Path:
        now = now or datetime.now(UTC)
        filename = f"{kind.value}_{now.strftime('%Y%m%dT%H%M%S%f')}_{uuid.uuid4().hex}.pdf"
        return self._root / str(now.year) / _safe_component(internal_reference) / filename

    async def write(self, kind: DocumentKind, internal_reference: str, data: bytes) -> Path:
        """Write ``data`` to a fresh path and return it."""
        path = self.build_path(kind, internal_reference)
        await asyncio.to_thread(self._write_sync, path, data)
        logger.info("document_file_written", path=str(path), size_bytes=len(data))
        return path

    @staticmethod
    def _write_sync(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".part")
        try:
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    async def read(self, path: str | Path) -> bytes:
        return await asyncio.to_thread(Path(path).read_bytes)

    def exists(self, path: str | Path) -> bool:
        return Path(path).is_file()
