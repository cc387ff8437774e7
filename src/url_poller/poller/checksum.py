from __future__ import annotations

import hashlib
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from url_poller.poller.models import CacheState

_READ_CHUNK_BYTES = 64 * 1024


def new_digest():
    return hashlib.sha256()


def file_digest(path: Path) -> Optional[str]:
    """Return the hex digest of a file, or None if it does not exist."""
    digest = new_digest()
    try:
        with open(path, "rb") as fh:
            for chunk in iter(lambda: fh.read(_READ_CHUNK_BYTES), b""):
                digest.update(chunk)
    except FileNotFoundError:
        return None
    return digest.hexdigest()


def file_mtime(path: Path) -> Optional[datetime]:
    """Return the modification time of a file as an aware UTC datetime, or None if it does not exist."""
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return None
    return datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)


def probe_file(path: Path) -> CacheState:
    # Other OSErrors (permissions, EIO) are not absence and propagate.
    mtime = file_mtime(path)
    digest = file_digest(path)
    if digest is None:
        return CacheState(digest=None, mtime=None)
    return CacheState(digest=digest, mtime=mtime)
