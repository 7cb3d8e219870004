"""Run-scoped cleanup of uploaded assets and extracted frames."""

from __future__ import annotations

import logging
import os
import shutil
import threading
from types import TracebackType

from services.errors import ResourceCleanupWarning

logger = logging.getLogger(__name__)


class ResourceJanitor:
    """
    Tracks every filesystem artifact a run owns and deletes each one exactly once.

    Use as a context manager around the whole run so cleanup also happens
    when the run raises:

        with ResourceJanitor(run_id) as janitor:
            janitor.register_file(asset.path)
            ...

    Deletion problems are logged as ResourceCleanupWarning and collected in
    `warnings`; they are never raised.
    """

    def __init__(self, run_id: str = "") -> None:
        self._run_id = run_id
        self._lock = threading.Lock()
        self._pending: dict[str, bool] = {}  # path -> is_dir, in registration order
        self._released: set[str] = set()
        self._closed = False
        self.warnings: list[ResourceCleanupWarning] = []

    def __enter__(self) -> ResourceJanitor:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        self.cleanup()
        return False

    @property
    def pending(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def register_file(self, path: str) -> None:
        self._register(path, is_dir=False)

    def register_dir(self, path: str) -> None:
        self._register(path, is_dir=True)

    def _register(self, path: str, *, is_dir: bool) -> None:
        with self._lock:
            if path in self._released:
                return
            self._pending[path] = is_dir

    def release(self, path: str) -> None:
        """Delete one artifact now. Later release() or cleanup() calls skip it."""
        with self._lock:
            if path in self._released:
                return
            is_dir = self._pending.pop(path, os.path.isdir(path))
            self._released.add(path)
        self._delete(path, is_dir=is_dir)

    def cleanup(self) -> None:
        """Delete everything still pending. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            # Files first so a registered file inside a registered dir is not reported missing.
            items = sorted(self._pending.items(), key=lambda item: item[1])
            self._pending.clear()
            self._released.update(path for path, _ in items)
        for path, is_dir in items:
            self._delete(path, is_dir=is_dir)
        logger.info("[janitor] run=%s cleanup finished (%d artifacts)", self._run_id or "-", len(items))

    def _delete(self, path: str, *, is_dir: bool) -> None:
        try:
            if is_dir:
                shutil.rmtree(path)
            else:
                os.unlink(path)
        except FileNotFoundError:
            self._warn(path, "already removed")
        except OSError as exc:
            self._warn(path, str(exc))

    def _warn(self, path: str, reason: str) -> None:
        warning = ResourceCleanupWarning(f"could not delete {path}: {reason}")
        self.warnings.append(warning)
        logger.warning("[janitor] run=%s %s", self._run_id or "-", warning)
