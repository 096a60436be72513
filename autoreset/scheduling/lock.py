"""In-process guard against overlapping runs of the same checkpoint."""

from __future__ import annotations

import structlog

log = structlog.get_logger()


class ExecutionLock:
    def __init__(self) -> None:
        self._held: dict[str, bool] = {}

    def acquire(self, name: str) -> bool:
        """Take the lock for ``name``; False if a run is already in progress."""
        if self._held.get(name):
            return False
        self._held[name] = True
        return True

    def release(self, name: str) -> None:
        self._held.pop(name, None)

    def is_held(self, name: str) -> bool:
        return self._held.get(name, False)
