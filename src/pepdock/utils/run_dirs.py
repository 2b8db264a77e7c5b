"""Utilities for managing per-target directory layouts and ownership."""

from __future__ import annotations

import logging
import os
import shutil
import socket
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from ..exceptions import TargetLockedError

logger = logging.getLogger(__name__)

LOCK_NAME = ".pepdock.lock"

_held_locks: Dict[str, threading.Lock] = {}
_registry_guard = threading.Lock()


class RunLayout:
    """Directory layout of one target's working directory."""

    def __init__(self, workdir: Path):
        self.workdir = Path(workdir)

    def stage_dir(self, *parts: str, create: bool = True) -> Path:
        """Return the path for a named stage within the working directory."""
        path = self.workdir.joinpath(*parts)
        if create:
            path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def prep_dir(self) -> Path:
        return self.stage_dir("prep")

    @property
    def replicates_dir(self) -> Path:
        return self.stage_dir("replicates")

    @property
    def minimization_dir(self) -> Path:
        return self.stage_dir("minimization")

    @property
    def report_dir(self) -> Path:
        return self.stage_dir("report")

    def reset(self, *parts: str) -> Path:
        """Remove a previous run's output under *parts* and recreate it empty."""
        path = self.workdir.joinpath(*parts)
        if path.exists():
            logger.info("Clearing previous output in %s", path)
            shutil.rmtree(path)
        path.mkdir(parents=True)
        return path

    @staticmethod
    def discard(path: Path) -> None:
        """Drop a partial (unsealed) artifact directory."""
        if path.exists():
            logger.warning("Discarding partial artifact %s", path)
            shutil.rmtree(path, ignore_errors=True)


class TargetLock:
    """
    Exclusive ownership of a target's working directory.

    Held both in-process (threads) and on disk (other processes). A second
    acquisition for the same target fails instead of waiting.
    """

    def __init__(self, workdir: Path, target: str):
        self.workdir = Path(workdir)
        self.target = target
        self.lock_path = self.workdir / LOCK_NAME
        self._key = str(self.workdir.resolve())
        self._fd: Optional[int] = None

    def acquire(self) -> "TargetLock":
        with _registry_guard:
            local = _held_locks.setdefault(self._key, threading.Lock())
        if not local.acquire(blocking=False):
            raise TargetLockedError(f"Target {self.target!r} is already running in this process",
                                    stage="lock")
        self.workdir.mkdir(parents=True, exist_ok=True)
        try:
            self._fd = os.open(str(self.lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            local.release()
            owner = self.lock_path.read_text().strip() if self.lock_path.exists() else "unknown"
            raise TargetLockedError(
                f"Target {self.target!r} is locked by {owner}; remove {self.lock_path} if that run is gone",
                stage="lock",
            ) from None
        stamp = datetime.now().isoformat(timespec="seconds")
        os.write(self._fd, f"{socket.gethostname()}:{os.getpid()} {stamp}\n".encode())
        logger.debug("Acquired lock for %s", self.target)
        return self

    def release(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None
            try:
                self.lock_path.unlink()
            except FileNotFoundError:
                pass
            _held_locks[self._key].release()
            logger.debug("Released lock for %s", self.target)

    def __enter__(self) -> "TargetLock":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
