"""
In-memory snapshot publisher shared by the batch and sync controllers.
"""

from __future__ import annotations

import logging
from typing import Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

SnapshotT = TypeVar("SnapshotT")
Listener = Callable[[SnapshotT], None]


class SnapshotPublisher(Generic[SnapshotT]):
    """Holds the latest immutable snapshot and fans it out to listeners in publish order."""

    def __init__(self, initial: Optional[SnapshotT] = None) -> None:
        self._latest: Optional[SnapshotT] = initial
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def publish(self, snapshot: SnapshotT) -> None:
        self._latest = snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("progress.listener_failed")

    def latest(self) -> Optional[SnapshotT]:
        return self._latest
