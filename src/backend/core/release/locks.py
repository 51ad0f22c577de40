"""Per-site exclusivity for deploys and rollbacks.

Slot rotation is not safe under concurrent execution, so every deploy or
rollback holds its site's gate for its whole duration. The gate combines an
in-process lock table (threads of one worker) with a `filelock.FileLock`
(worker processes sharing the host). Different sites never contend.
"""

from __future__ import annotations

import contextlib
import os
import threading
import time
from dataclasses import dataclass, field
from logging import getLogger
from pathlib import Path
from typing import Iterator

from filelock import FileLock, Timeout

logger = getLogger(__name__)

LOCK_DIR_NAME = ".locks"


class SiteLockTimeout(TimeoutError):
    """Raised when a site's gate cannot be acquired in time."""


@dataclass
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class SiteLockTable:
    """Table of per-site locks keyed by site identifier."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def _checkout(self, site_key: str) -> _Entry:
        with self._guard:
            entry = self._entries.setdefault(site_key, _Entry())
            entry.holders += 1
            return entry

    def _release(self, site_key: str, entry: _Entry) -> None:
        with self._guard:
            entry.holders -= 1
            if entry.holders == 0:
                self._entries.pop(site_key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextlib.contextmanager
    def hold(
        self, site_id, *, base_dir: str | os.PathLike, timeout: float = -1
    ) -> Iterator[None]:
        """
        Hold the gate of `site_id` for the duration of the block.

        `timeout` is in seconds; a negative value waits forever.
        """
        site_key = str(site_id)
        entry = self._checkout(site_key)
        started = time.monotonic()
        try:
            if not entry.lock.acquire(timeout=timeout if timeout >= 0 else -1):
                raise SiteLockTimeout(f"Site {site_key} is busy.")
            try:
                remaining = timeout
                if timeout >= 0:
                    remaining = max(0.0, timeout - (time.monotonic() - started))
                lock_dir = Path(base_dir) / LOCK_DIR_NAME
                lock_dir.mkdir(parents=True, exist_ok=True)
                file_lock = FileLock(str(lock_dir / f"{site_key}.lock"))
                try:
                    file_lock.acquire(timeout=remaining)
                except Timeout as exc:
                    raise SiteLockTimeout(f"Site {site_key} is busy.") from exc
                try:
                    logger.debug("site_lock: acquired (site_id=%s)", site_key)
                    yield
                finally:
                    file_lock.release()
            finally:
                entry.lock.release()
        finally:
            self._release(site_key, entry)


site_locks = SiteLockTable()
