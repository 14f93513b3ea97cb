from __future__ import annotations

import logging
from typing import Optional, Protocol

from creative_audit.clients.audit_api import AuditApiError
from creative_audit.enums import (
    ApiErrorKindEnum,
    CachedViewEnum,
    PolicyChoiceEnum,
    ReanalysisOutcomeEnum,
    ReanalysisPhaseEnum,
)
from creative_audit.schemas.analysis import ReanalysisResult, ReanalysisSnapshot
from creative_audit.schemas.records import Audit
from creative_audit.services.cache import AuditCache, ViewInvalidator
from creative_audit.services.policy_resolver import PolicyChoiceRequiredError
from creative_audit.services.progress import SnapshotPublisher

logger = logging.getLogger(__name__)

Phase = ReanalysisPhaseEnum

ALLOWED_TRANSITIONS: dict[ReanalysisPhaseEnum, frozenset[ReanalysisPhaseEnum]] = {
    Phase.idle: frozenset({Phase.policy_choice_pending}),
    Phase.policy_choice_pending: frozenset({Phase.policy_choice_pending, Phase.idle, Phase.deleting, Phase.analyzing}),
    Phase.deleting: frozenset({Phase.analyzing, Phase.idle}),
    Phase.analyzing: frozenset({Phase.idle}),
}


class IllegalReanalysisTransitionError(RuntimeError):
    def __init__(self, current: ReanalysisPhaseEnum, target: ReanalysisPhaseEnum) -> None:
        super().__init__(f"Cannot move reanalysis from {current.value} to {target.value}.")
        self.current = current
        self.target = target


class ReanalysisFailedError(RuntimeError):
    """
    Reprocessing stopped. `stage` is where it stopped; `audit_removed` tells whether
    the previous audit is already gone.
    """

    def __init__(
        self,
        message: str,
        *,
        creative_id: str,
        stage: str,
        audit_removed: bool,
        kind: ApiErrorKindEnum = ApiErrorKindEnum.unknown,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.creative_id = creative_id
        self.stage = stage
        self.audit_removed = audit_removed
        self.kind = kind

    @property
    def requires_reauthentication(self) -> bool:
        return self.kind == ApiErrorKindEnum.unauthorized


class ReanalysisApi(Protocol):
    async def delete_audit(self, audit_id: str) -> None: ...

    async def analyze_creative(self, creative_id: str, *, policy_id: Optional[str] = None) -> Audit: ...

    async def list_audits(self, creative_id: str) -> list[Audit]: ...


def _error_detail(exc: Exception) -> tuple[str, ApiErrorKindEnum]:
    if isinstance(exc, AuditApiError):
        if exc.kind == ApiErrorKindEnum.not_found:
            return "creative not found", exc.kind
        if exc.kind == ApiErrorKindEnum.unauthorized:
            return "session expired, sign in again", exc.kind
        return exc.message or "Unknown error", exc.kind
    return str(exc).strip() or "Unknown error", ApiErrorKindEnum.unknown


class ReanalysisController:
    """Delete-then-recreate of one creative's audit, driven as an explicit state machine."""

    def __init__(
        self,
        api: ReanalysisApi,
        *,
        cache: AuditCache,
        views: Optional[ViewInvalidator] = None,
        publisher: Optional[SnapshotPublisher[ReanalysisSnapshot]] = None,
    ) -> None:
        self._api = api
        self._cache = cache
        self._views = views
        self.publisher: SnapshotPublisher[ReanalysisSnapshot] = publisher or SnapshotPublisher(ReanalysisSnapshot())
        self._phase = Phase.idle
        self._creative_id: Optional[str] = None
        self._current_audit: Optional[Audit] = None
        self._choice = PolicyChoiceEnum.same
        self._selected_policy_id: Optional[str] = None
        self._last_outcome: Optional[ReanalysisOutcomeEnum] = None
        self._error_message: Optional[str] = None

    @property
    def phase(self) -> ReanalysisPhaseEnum:
        return self._phase

    def snapshot(self) -> ReanalysisSnapshot:
        return ReanalysisSnapshot(
            creative_id=self._creative_id,
            phase=self._phase,
            policy_choice=self._choice,
            selected_policy_id=self._selected_policy_id,
            last_outcome=self._last_outcome,
            error_message=self._error_message,
        )

    def _move(self, target: ReanalysisPhaseEnum) -> None:
        if target not in ALLOWED_TRANSITIONS[self._phase]:
            raise IllegalReanalysisTransitionError(self._phase, target)
        self._phase = target
        self.publisher.publish(self.snapshot())

    def begin(self, creative_id: str, current_audit: Optional[Audit] = None) -> ReanalysisSnapshot:
        if current_audit is not None and current_audit.creative_id != creative_id:
            raise ValueError(f"Audit {current_audit.id} does not belong to creative {creative_id}")
        if self._phase != Phase.idle:
            raise IllegalReanalysisTransitionError(self._phase, Phase.policy_choice_pending)
        self._creative_id = creative_id
        self._current_audit = current_audit
        self._choice = PolicyChoiceEnum.same
        self._selected_policy_id = current_audit.policy_id if current_audit else None
        self._last_outcome = None
        self._error_message = None
        self._move(Phase.policy_choice_pending)
        return self.snapshot()

    def choose_policy(self, choice: PolicyChoiceEnum, selected_policy_id: Optional[str] = None) -> ReanalysisSnapshot:
        if self._phase != Phase.policy_choice_pending:
            raise IllegalReanalysisTransitionError(self._phase, Phase.policy_choice_pending)
        self._choice = choice
        if choice == PolicyChoiceEnum.same:
            self._selected_policy_id = self._current_audit.policy_id if self._current_audit else None
        else:
            self._selected_policy_id = (selected_policy_id or "").strip() or None
        self._move(Phase.policy_choice_pending)
        return self.snapshot()

    def cancel(self) -> ReanalysisSnapshot:
        self._move(Phase.idle)
        return self.snapshot()

    def resolved_policy_id(self) -> Optional[str]:
        if self._choice == PolicyChoiceEnum.same:
            return self._current_audit.policy_id if self._current_audit else None
        return self._selected_policy_id

    async def confirm(self) -> ReanalysisResult:
        if self._phase != Phase.policy_choice_pending or not self._creative_id:
            raise IllegalReanalysisTransitionError(self._phase, Phase.deleting)
        policy_id = self.resolved_policy_id()
        if not policy_id:
            raise PolicyChoiceRequiredError("Choose a policy before reprocessing this creative.")

        creative_id = self._creative_id
        previous = self._current_audit
        already_gone = False

        if previous is not None:
            self._move(Phase.deleting)
            try:
                await self._api.delete_audit(previous.id)
            except AuditApiError as exc:
                if exc.kind != ApiErrorKindEnum.not_found:
                    self._fail_delete(creative_id, exc)
                already_gone = True
                logger.info(
                    "reanalysis.audit_already_deleted",
                    extra={"creative_id": creative_id, "audit_id": previous.id},
                )
            except Exception as exc:  # noqa: BLE001
                self._fail_delete(creative_id, exc)
            self._cache.remove(creative_id)

        self._move(Phase.analyzing)
        try:
            audit = await self._api.analyze_creative(creative_id, policy_id=policy_id)
            self._cache.replace(creative_id, audit)
        except Exception as exc:  # noqa: BLE001
            detail, kind = _error_detail(exc)
            removed = previous is not None
            if removed:
                message = (
                    f"Reprocessing failed: the previous audit was removed and no new audit was created ({detail})."
                    " Analyze the creative again."
                )
            else:
                message = f"Reprocessing failed: no audit was created ({detail})."
            self._settle(ReanalysisOutcomeEnum.failed, message)
            self._cache.invalidate(creative_id)
            await self._cache.reconcile([creative_id], self._api)
            logger.error(
                "reanalysis.analyze_failed",
                extra={"creative_id": creative_id, "policy_id": policy_id, "kind": kind.value},
            )
            raise ReanalysisFailedError(
                message, creative_id=creative_id, stage="analyze", audit_removed=removed, kind=kind
            ) from exc

        self._cache.invalidate(creative_id)
        await self._cache.reconcile([creative_id], self._api)
        if self._views is not None:
            self._views.invalidate(CachedViewEnum.creatives)
        self._settle(ReanalysisOutcomeEnum.succeeded, None)
        logger.info(
            "reanalysis.succeeded",
            extra={"creative_id": creative_id, "policy_id": policy_id, "audit_id": audit.id},
        )
        return ReanalysisResult(
            creative_id=creative_id,
            policy_id=policy_id,
            audit=audit,
            previous_audit_id=previous.id if previous else None,
            previous_audit_already_gone=already_gone,
        )

    async def reanalyze(
        self,
        creative_id: str,
        current_audit: Optional[Audit],
        *,
        choice: PolicyChoiceEnum = PolicyChoiceEnum.same,
        selected_policy_id: Optional[str] = None,
    ) -> ReanalysisResult:
        """begin + choose_policy + confirm. A missing policy leaves the controller back in idle."""
        self.begin(creative_id, current_audit)
        self.choose_policy(choice, selected_policy_id)
        try:
            return await self.confirm()
        except PolicyChoiceRequiredError:
            self.cancel()
            raise

    def _fail_delete(self, creative_id: str, exc: Exception) -> None:
        detail, kind = _error_detail(exc)
        message = f"Reprocessing failed: the previous audit could not be removed and is still in place ({detail})."
        self._settle(ReanalysisOutcomeEnum.failed, message)
        logger.error("reanalysis.delete_failed", extra={"creative_id": creative_id, "kind": kind.value})
        raise ReanalysisFailedError(
            message, creative_id=creative_id, stage="delete", audit_removed=False, kind=kind
        ) from exc

    def _settle(self, outcome: ReanalysisOutcomeEnum, error_message: Optional[str]) -> None:
        self._last_outcome = outcome
        self._error_message = error_message
        self._current_audit = None
        self._move(Phase.idle)
