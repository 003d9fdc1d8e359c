"""JSON document helpers for store persistence.

Reads tolerate a missing file (``None``); writes go to a sibling temp file
that is fsynced and then swapped into place with ``os.replace`` so a crash
mid-write never leaves a truncated document behind.  The blocking work runs
in ``asyncio.to_thread()``.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


def _read(path: Path) -> Any | None:
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def _write(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(data, indent=2, ensure_ascii=False)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


async def read_json(path: Path) -> Any | None:
    """Parse the JSON document at *path*, or return None if it does not exist.

    Raises ``json.JSONDecodeError`` for malformed content and ``OSError`` if
    the file exists but cannot be read.
    """
    return await asyncio.to_thread(_read, path)


async def write_json(path: Path, data: Any) -> None:
    """Atomically replace *path* with *data* serialized as indented JSON."""
    await asyncio.to_thread(_write, path, data)
    logger.debug("Wrote %s", path)
