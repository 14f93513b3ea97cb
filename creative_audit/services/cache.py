from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional, Protocol

from creative_audit.enums import CachedViewEnum
from creative_audit.schemas.records import Audit

logger = logging.getLogger(__name__)


class AuditSource(Protocol):
    async def list_audits(self, creative_id: str) -> list[Audit]: ...


class AuditCache:
    """
    Creative id -> current Audit, as read by every presentation view.

    Entries are replaced as whole objects. A replaced entry is marked stale until
    an authoritative refetch lands.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Audit] = {}
        self._stale: set[str] = set()

    def get(self, creative_id: str) -> Optional[Audit]:
        return self._entries.get(creative_id)

    def __contains__(self, creative_id: object) -> bool:
        return creative_id in self._entries

    def snapshot(self) -> dict[str, Audit]:
        return dict(self._entries)

    def replace(self, creative_id: str, audit: Audit) -> None:
        if audit.creative_id != creative_id:
            raise ValueError(f"Audit {audit.id} belongs to creative {audit.creative_id}, not {creative_id}")
        self._entries[creative_id] = audit

    def remove(self, creative_id: str) -> Optional[Audit]:
        self._stale.discard(creative_id)
        return self._entries.pop(creative_id, None)

    def invalidate(self, creative_id: str) -> None:
        self._stale.add(creative_id)

    def is_stale(self, creative_id: str) -> bool:
        return creative_id in self._stale

    def stale_ids(self) -> list[str]:
        return sorted(self._stale)

    async def refresh(self, creative_id: str, source: AuditSource) -> Optional[Audit]:
        audits = await source.list_audits(creative_id)
        self._stale.discard(creative_id)
        if not audits:
            self._entries.pop(creative_id, None)
            logger.info("audit_cache.refreshed_empty", extra={"creative_id": creative_id})
            return None
        current = audits[0]
        self._entries[creative_id] = current
        return current

    async def refresh_stale(self, source: AuditSource) -> None:
        for creative_id in self.stale_ids():
            await self.refresh(creative_id, source)

    async def reconcile(self, creative_ids: Iterable[str], source: AuditSource) -> list[str]:
        """Refetch the stale entries among `creative_ids`. Returns the ids that stay stale."""
        still_stale: list[str] = []
        for creative_id in creative_ids:
            if creative_id not in self._stale:
                continue
            try:
                await self.refresh(creative_id, source)
            except Exception:  # noqa: BLE001
                logger.exception("audit_cache.refresh_failed", extra={"creative_id": creative_id})
                still_stale.append(creative_id)
        return still_stale


ViewListener = Callable[[CachedViewEnum, int], None]


class ViewInvalidator:
    """Generation counters for the dependent dashboard views."""

    def __init__(self) -> None:
        self._generations: dict[CachedViewEnum, int] = {view: 0 for view in CachedViewEnum}
        self._listeners: list[ViewListener] = []

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def generation(self, view: CachedViewEnum) -> int:
        return self._generations[view]

    def generations(self) -> dict[str, int]:
        return {view.value: count for view, count in self._generations.items()}

    def invalidate(self, *views: CachedViewEnum) -> None:
        self.invalidate_many(views)

    def invalidate_many(self, views: Iterable[CachedViewEnum]) -> None:
        for view in views:
            self._generations[view] += 1
            generation = self._generations[view]
            for listener in list(self._listeners):
                try:
                    listener(view, generation)
                except Exception:  # noqa: BLE001
                    logger.exception("view_invalidator.listener_failed", extra={"view": view.value})
