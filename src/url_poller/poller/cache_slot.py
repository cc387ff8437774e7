from __future__ import annotations

import logging
import os
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Optional

logger = logging.getLogger(__name__)

DEFAULT_MASTER_NAME = "master"
CANDIDATE_PREFIX = "candidate."


class ConfigurationError(ValueError):
    """Cache directory or master file settings that make polling impossible."""


def resolve_cache_paths(
    cache_dir: Optional[str], master_file: Optional[str]
) -> tuple[Optional[Path], Optional[Path]]:
    """
    Validate the caller's cache directory and master file settings.

    An absolute master file must live directly in the cache directory, and
    supplies it when none is given. A relative master file must be a bare
    file name, which is later joined onto the cache directory.
    """
    dir_path = Path(cache_dir) if cache_dir else None
    if not master_file:
        return dir_path, None

    master_path = Path(master_file)
    if master_path.is_absolute():
        if dir_path is not None and dir_path != master_path.parent:
            raise ConfigurationError(f"master_file must be in {dir_path}: {master_path}")
        return master_path.parent, master_path
    if master_path.name != master_file:
        raise ConfigurationError(f"master_file must be absolute, or bare filename: {master_file}")
    return dir_path, master_path


class CacheSlot:
    """
    One master file plus the per-process candidate file beside it.

    The master file is only ever replaced through os.replace() of a fully
    written candidate in the same directory, so readers see either the old or
    the new content in full.
    """

    def __init__(
        self,
        *,
        cache_dir: Optional[str] = None,
        master_file: Optional[str] = None,
        instance_id: Optional[str] = None,
    ) -> None:
        self._configured_dir, self._configured_master = resolve_cache_paths(cache_dir, master_file)
        self._cache_dir: Optional[Path] = self._configured_dir
        self._master_file: Optional[Path] = None
        self._instance_id = instance_id or str(os.getpid())
        self._remove_dir = False
        self._opened = False

    @property
    def cache_dir(self) -> Path:
        if self._cache_dir is None:
            raise RuntimeError("CacheSlot has not been opened")
        return self._cache_dir

    @property
    def master_path(self) -> Path:
        if self._master_file is None:
            raise RuntimeError("CacheSlot has not been opened")
        return self._master_file

    @property
    def candidate_path(self) -> Path:
        return self.cache_dir / f"{CANDIDATE_PREFIX}{self._instance_id}"

    @property
    def owns_cache_dir(self) -> bool:
        return self._remove_dir

    def open(self) -> None:
        """Verify or create the cache directory and resolve the master path."""
        if self._opened:
            return
        if self._configured_dir is not None:
            if not self._configured_dir.is_dir():
                raise ConfigurationError(f"cache directory does not exist: {self._configured_dir}")
            self._cache_dir = self._configured_dir
        else:
            self._cache_dir = Path(tempfile.mkdtemp(prefix="url-poller-"))
            self._remove_dir = True
            logger.debug("cache.dir_created path=%s", self._cache_dir)

        if self._configured_master is None:
            self._master_file = self._cache_dir / DEFAULT_MASTER_NAME
        elif self._configured_master.is_absolute():
            self._master_file = self._configured_master
        else:
            self._master_file = self._cache_dir / self._configured_master
        self._opened = True

        # A crashed run with the same instance id may have left its candidate behind.
        self.discard_candidate()
        logger.debug(
            "cache.opened master_file=%s candidate_file=%s",
            self._master_file,
            self.candidate_path,
        )

    def close(self) -> None:
        """Remove the candidate file and, if it was created here, the cache directory."""
        if not self._opened:
            return
        try:
            self.discard_candidate()
        finally:
            if self._remove_dir and self._cache_dir is not None:
                logger.debug("cache.dir_removing path=%s", self._cache_dir)
                shutil.rmtree(self._cache_dir, ignore_errors=True)
                self._remove_dir = False
            self._opened = False

    def __enter__(self) -> CacheSlot:
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def open_candidate(self) -> BinaryIO:
        return open(self.candidate_path, "wb")

    def stamp_candidate(self, mtime: datetime) -> None:
        ts = mtime.timestamp()
        os.utime(self.candidate_path, (ts, ts))

    def discard_candidate(self) -> None:
        try:
            self.candidate_path.unlink()
        except FileNotFoundError:
            return
        logger.debug("cache.candidate_removed path=%s", self.candidate_path)

    def promote(self) -> None:
        """Atomically replace the master file with the candidate."""
        os.replace(self.candidate_path, self.master_path)

    def open_master(self) -> BinaryIO:
        return open(self.master_path, "rb")
