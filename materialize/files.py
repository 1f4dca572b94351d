"""
materialize/files.py -- Small filesystem helpers shared by the materializers.

Writes go through a temporary file in the target directory followed by an
atomic rename, so nginx never reads a half-written ACL file.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger("proxyauth.materialize")


def atomic_write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def remove_file(path: Path) -> bool:
    """Delete path if present. Returns True if a file was removed."""
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    logger.debug("Removed %s", path)
    return True
