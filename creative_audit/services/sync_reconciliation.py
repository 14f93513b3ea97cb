from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol

from creative_audit.config import settings
from creative_audit.enums import CachedViewEnum, SyncErrorKindEnum, SyncPhaseEnum
from creative_audit.schemas.records import Integration
from creative_audit.schemas.sync import (
    FailedIntegration,
    SyncAllSummary,
    SyncAttempt,
    SyncCounts,
    SyncOutcome,
    SyncSessionSnapshot,
)
from creative_audit.services.cache import ViewInvalidator
from creative_audit.services.progress import SnapshotPublisher

logger = logging.getLogger(__name__)

_IN_FLIGHT = frozenset({SyncPhaseEnum.connecting, SyncPhaseEnum.syncing})
_RESUMABLE_KINDS = frozenset({SyncErrorKindEnum.rate_limited, SyncErrorKindEnum.unknown})
_ALL_VIEWS = (
    CachedViewEnum.campaigns,
    CachedViewEnum.ad_sets,
    CachedViewEnum.creatives,
    CachedViewEnum.integrations,
)


class SyncInProgressError(RuntimeError):
    def __init__(self, integration_id: str) -> None:
        super().__init__(f"A sync for integration {integration_id} is still running.")
        self.integration_id = integration_id


class SyncNotResumableError(RuntimeError):
    def __init__(self, integration_id: str, reason: str) -> None:
        super().__init__(reason)
        self.integration_id = integration_id
        self.reason = reason


class SyncSessionNotFoundError(LookupError):
    def __init__(self, integration_id: str) -> None:
        super().__init__(f"No sync session is open for integration {integration_id}.")
        self.integration_id = integration_id


class SyncApi(Protocol):
    async def sync_integration(self, integration_id: str) -> SyncOutcome: ...

    async def list_integrations(self) -> list[Integration]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def partial_message(kind: SyncErrorKindEnum, counts: SyncCounts, error_message: Optional[str]) -> str:
    saved = counts.describe()
    if kind == SyncErrorKindEnum.unauthorized:
        head = "The ad account authorization is no longer valid. Reconnect the integration to sync again."
        tail = f" Already saved before it stopped: {saved}." if saved else " Nothing was saved."
        return head + tail
    if kind == SyncErrorKindEnum.rate_limited:
        if saved:
            return (
                f"Sync paused by the ad platform's rate limit. Already saved: {saved}. "
                "Continue to resume where it stopped."
            )
        return "Sync stopped by the ad platform's rate limit before anything was saved. Continue to retry."
    detail = (error_message or "unknown error").rstrip(".")
    if saved:
        return f"Sync stopped with an error ({detail}). Already saved: {saved}. Continue to resume."
    return f"Sync failed before anything was saved ({detail}). Continue to retry."


def completed_message(counts: SyncCounts) -> str:
    saved = counts.describe()
    if not saved:
        return "Sync completed. No new data was found."
    return f"Sync completed: {saved}."


@dataclass
class SyncSession:
    integration_id: str
    phase: SyncPhaseEnum = SyncPhaseEnum.connecting
    counts: SyncCounts = field(default_factory=SyncCounts)
    error_kind: Optional[SyncErrorKindEnum] = None
    error_message: Optional[str] = None
    attempts: list[SyncAttempt] = field(default_factory=list)

    @property
    def in_flight(self) -> bool:
        return self.phase in _IN_FLIGHT

    @property
    def can_continue(self) -> bool:
        return self.phase == SyncPhaseEnum.partial and self.error_kind in _RESUMABLE_KINDS

    @property
    def requires_reauthentication(self) -> bool:
        return self.phase == SyncPhaseEnum.partial and self.error_kind == SyncErrorKindEnum.unauthorized

    def message(self) -> str:
        if self.phase == SyncPhaseEnum.connecting:
            return "Connecting to the ad platform..."
        if self.phase == SyncPhaseEnum.syncing:
            if self.attempts and self.attempts[-1].resumed:
                return "Resuming sync where it stopped..."
            return "Syncing account data..."
        if self.phase == SyncPhaseEnum.completed:
            return completed_message(self.counts)
        return partial_message(self.error_kind or SyncErrorKindEnum.unknown, self.counts, self.error_message)

    def snapshot(self) -> SyncSessionSnapshot:
        return SyncSessionSnapshot(
            integration_id=self.integration_id,
            phase=self.phase,
            counts=self.counts,
            error_kind=self.error_kind,
            error_message=self.error_message,
            message=self.message(),
            can_continue=self.can_continue,
            dismissible=not self.in_flight,
            requires_reauthentication=self.requires_reauthentication,
            attempts=tuple(self.attempts),
        )


class SyncReconciliationController:
    """One resumable sync session per integration, plus the sync-all fan-out."""

    def __init__(
        self,
        api: SyncApi,
        *,
        views: ViewInvalidator,
        publisher: Optional[SnapshotPublisher[SyncSessionSnapshot]] = None,
        dwell_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._api = api
        self._views = views
        self.publisher: SnapshotPublisher[SyncSessionSnapshot] = publisher or SnapshotPublisher()
        self._dwell_seconds = settings.SYNC_COMPLETION_DWELL_SECONDS if dwell_seconds is None else dwell_seconds
        self._sleep = sleep
        self._clock = clock
        self._sessions: dict[str, SyncSession] = {}

    def get(self, integration_id: str) -> Optional[SyncSession]:
        return self._sessions.get(integration_id)

    def _publish(self, session: SyncSession) -> SyncSessionSnapshot:
        snapshot = session.snapshot()
        self.publisher.publish(snapshot)
        return snapshot

    def begin(self, integration_id: str) -> SyncSession:
        session = self._sessions.get(integration_id)
        if session is not None and session.in_flight:
            raise SyncInProgressError(integration_id)
        if session is not None and session.can_continue:
            return self.resume(integration_id)

        session = SyncSession(integration_id=integration_id)
        session.attempts.append(SyncAttempt(number=1, resumed=False, started_at=self._clock()))
        self._sessions[integration_id] = session
        logger.info("sync.session_started", extra={"integration_id": integration_id})
        self._publish(session)
        return session

    def resume(self, integration_id: str) -> SyncSession:
        session = self._sessions.get(integration_id)
        if session is None:
            raise SyncSessionNotFoundError(integration_id)
        if session.in_flight:
            raise SyncInProgressError(integration_id)
        if session.phase != SyncPhaseEnum.partial:
            raise SyncNotResumableError(integration_id, "Only an interrupted sync can be continued.")
        if not session.can_continue:
            raise SyncNotResumableError(
                integration_id,
                "The ad account authorization is no longer valid. Reconnect the integration before syncing again.",
            )

        session.phase = SyncPhaseEnum.syncing
        session.error_kind = None
        session.error_message = None
        session.attempts.append(
            SyncAttempt(number=len(session.attempts) + 1, resumed=True, started_at=self._clock())
        )
        logger.info(
            "sync.session_resumed",
            extra={"integration_id": integration_id, "attempt": len(session.attempts)},
        )
        self._publish(session)
        return session

    async def execute(self, session: SyncSession) -> SyncSessionSnapshot:
        if session.phase == SyncPhaseEnum.connecting:
            session.phase = SyncPhaseEnum.syncing
            self._publish(session)
        if session.phase != SyncPhaseEnum.syncing:
            raise SyncNotResumableError(session.integration_id, "The sync session is not ready to run.")

        try:
            outcome = await self._api.sync_integration(session.integration_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("sync.unexpected_error", extra={"integration_id": session.integration_id})
            outcome = SyncOutcome.failure(SyncErrorKindEnum.unknown, str(exc) or "Unknown error")

        session.counts = session.counts.high_water(outcome.counts)
        attempt = session.attempts[-1] if session.attempts else SyncAttempt(number=1, started_at=self._clock())
        finished = attempt.model_copy(
            update={"finished_at": self._clock(), "reported": outcome.counts, "error_kind": outcome.error_kind}
        )
        if session.attempts:
            session.attempts[-1] = finished
        else:
            session.attempts.append(finished)

        if not outcome.ok:
            session.phase = SyncPhaseEnum.partial
            session.error_kind = outcome.error_kind
            session.error_message = outcome.error_message
            logger.warning(
                "sync.session_partial",
                extra={
                    "integration_id": session.integration_id,
                    "error_kind": outcome.error_kind.value if outcome.error_kind else None,
                    "campaigns": session.counts.campaigns,
                    "ad_sets": session.counts.ad_sets,
                    "creatives": session.counts.creatives,
                    "duration_seconds": finished.duration_seconds,
                },
            )
            snapshot = self._publish(session)
            self._views.invalidate(CachedViewEnum.integrations)
            return snapshot

        session.phase = SyncPhaseEnum.completed
        logger.info(
            "sync.session_completed",
            extra={
                "integration_id": session.integration_id,
                "total": session.counts.total,
                "duration_seconds": finished.duration_seconds,
            },
        )
        snapshot = self._publish(session)
        if self._dwell_seconds > 0:
            await self._sleep(self._dwell_seconds)
        self._views.invalidate(*_ALL_VIEWS)
        if self._sessions.get(session.integration_id) is session:
            del self._sessions[session.integration_id]
        return snapshot

    async def sync(self, integration_id: str) -> SyncSessionSnapshot:
        return await self.execute(self.begin(integration_id))

    async def continue_sync(self, integration_id: str) -> SyncSessionSnapshot:
        return await self.execute(self.resume(integration_id))

    def close(self, integration_id: str) -> SyncSessionSnapshot:
        session = self._sessions.get(integration_id)
        if session is None:
            raise SyncSessionNotFoundError(integration_id)
        if session.in_flight:
            raise SyncInProgressError(integration_id)
        del self._sessions[integration_id]
        # Anything saved before an interruption stays saved.
        self._views.invalidate(*_ALL_VIEWS)
        logger.info(
            "sync.session_closed",
            extra={"integration_id": integration_id, "phase": session.phase.value},
        )
        return session.snapshot()

    def request_dismiss(self, integration_id: str) -> bool:
        session = self._sessions.get(integration_id)
        if session is None:
            return True
        if session.in_flight:
            logger.info("sync.dismiss_ignored", extra={"integration_id": integration_id})
            return False
        self.close(integration_id)
        return True

    async def sync_all(self) -> SyncAllSummary:
        listed = await self._api.list_integrations()
        if not listed:
            return SyncAllSummary(message="No integrations to sync.")

        integrations: list[Integration] = []
        skipped: list[str] = []
        for integration in listed:
            session = self._sessions.get(integration.id)
            if session is not None and session.in_flight:
                skipped.append(integration.id)
            else:
                integrations.append(integration)
        if skipped:
            logger.info("sync.sync_all_skipped_busy", extra={"integration_ids": skipped})

        results = await asyncio.gather(
            *(self._api.sync_integration(integration.id) for integration in integrations),
            return_exceptions=True,
        )

        totals = SyncCounts()
        succeeded: list[str] = []
        failed: list[FailedIntegration] = []
        for integration, result in zip(integrations, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(
                    "sync.sync_all_item_error",
                    extra={"integration_id": integration.id, "error": str(result)},
                )
                failed.append(
                    FailedIntegration(
                        integration_id=integration.id,
                        account_name=integration.account_name,
                        error_kind=SyncErrorKindEnum.unknown,
                        error_message=str(result) or "Unknown error",
                    )
                )
                continue
            if result.ok:
                totals = totals.plus(result.counts)
                succeeded.append(integration.id)
                continue
            failed.append(
                FailedIntegration(
                    integration_id=integration.id,
                    account_name=integration.account_name,
                    error_kind=result.error_kind or SyncErrorKindEnum.unknown,
                    error_message=result.error_message or "Unknown error",
                )
            )

        self._views.invalidate(*_ALL_VIEWS)
        summary = SyncAllSummary(
            totals=totals,
            succeeded_integration_ids=tuple(succeeded),
            failed=tuple(failed),
            skipped_integration_ids=tuple(skipped),
            message=sync_all_message(totals, len(succeeded), len(failed), len(skipped)),
        )
        logger.info(
            "sync.sync_all_finished",
            extra={
                "succeeded": len(succeeded),
                "failed": len(failed),
                "skipped": len(skipped),
                "total": totals.total,
            },
        )
        return summary


def sync_all_message(totals: SyncCounts, succeeded: int, failed: int, skipped: int = 0) -> str:
    noun = "integration" if succeeded == 1 else "integrations"
    saved = totals.describe()
    message = f"Synced {succeeded} {noun}"
    message += f": {saved}." if saved else ". No new data was found."
    if failed:
        message += f" {failed} failed."
    if skipped:
        message += f" {skipped} skipped (sync already running)."
    return message
