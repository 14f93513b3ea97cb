from __future__ import annotations

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response, status

from creative_audit.clients.audit_api import AuditApiClient, AuditApiError
from creative_audit.deps import (
    get_audit_api,
    get_audit_cache,
    get_batch_orchestrator,
    get_policy_resolver,
    get_reanalysis_controller,
)
from creative_audit.enums import ApiErrorKindEnum
from creative_audit.schemas.analysis import (
    AnalysisJobStartRequest,
    AnalysisJobStartResponse,
    AnalysisRequest,
    BatchProgressSnapshot,
    PolicyChooser,
    PolicyConfirmRequest,
    ReanalysisRequest,
    ReanalysisResult,
    ResolvedAnalysis,
)
from creative_audit.schemas.records import Audit
from creative_audit.services.batch_audit import (
    AnalysisJob,
    BatchAlreadyRunningError,
    BatchAuditOrchestrator,
    EmptyBatchError,
)
from creative_audit.services.cache import AuditCache
from creative_audit.services.policy_resolver import (
    NoPolicyAvailableError,
    PolicyChoiceRequiredError,
    PolicyResolver,
    UnknownPolicyError,
)
from creative_audit.services.reanalysis import ReanalysisController, ReanalysisFailedError

router = APIRouter(tags=["analysis"])


def _raise_audit_api_error(exc: AuditApiError) -> None:
    status_code = status.HTTP_502_BAD_GATEWAY
    if exc.kind == ApiErrorKindEnum.unauthorized:
        status_code = status.HTTP_401_UNAUTHORIZED
    elif exc.kind == ApiErrorKindEnum.not_found:
        status_code = status.HTTP_404_NOT_FOUND
    detail: Any = {"message": exc.message, "kind": exc.kind.value}
    if exc.payload is not None:
        detail["upstream"] = exc.payload
    raise HTTPException(status_code=status_code, detail=detail) from exc


@router.post("/analysis/policy-chooser", response_model=PolicyChooser)
async def create_policy_chooser(
    payload: AnalysisRequest,
    resolver: PolicyResolver = Depends(get_policy_resolver),
) -> PolicyChooser:
    try:
        return await resolver.prepare(payload)
    except NoPolicyAvailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "no_policy_available", "message": str(exc)},
        ) from exc
    except AuditApiError as exc:
        _raise_audit_api_error(exc)


@router.post("/analysis/policy-chooser/confirm", response_model=ResolvedAnalysis)
def confirm_policy_chooser(payload: PolicyConfirmRequest) -> ResolvedAnalysis:
    try:
        return PolicyResolver.confirm(payload.chooser, payload.selected_policy_id)
    except (PolicyChoiceRequiredError, UnknownPolicyError) as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc


async def _run_job(orchestrator: BatchAuditOrchestrator, job: AnalysisJob) -> None:
    await orchestrator.run_job(job)


@router.post(
    "/analysis/jobs",
    response_model=AnalysisJobStartResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def start_analysis_job(
    payload: AnalysisJobStartRequest,
    background_tasks: BackgroundTasks,
    response: Response,
    orchestrator: BatchAuditOrchestrator = Depends(get_batch_orchestrator),
) -> AnalysisJobStartResponse:
    try:
        job = orchestrator.start(payload.creative_ids, payload.policy_id, payload.creative_names)
    except EmptyBatchError as exc:
        response.status_code = status.HTTP_200_OK
        return AnalysisJobStartResponse(started=False, notice=str(exc))
    except BatchAlreadyRunningError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "jobId": exc.job_id},
        ) from exc

    background_tasks.add_task(_run_job, orchestrator, job)
    return AnalysisJobStartResponse(started=True, snapshot=job.snapshot())


@router.get("/analysis/jobs/current", response_model=BatchProgressSnapshot)
def get_current_analysis_job(
    orchestrator: BatchAuditOrchestrator = Depends(get_batch_orchestrator),
) -> BatchProgressSnapshot:
    return orchestrator.current_snapshot()


@router.post("/analysis/jobs/current/dismiss", response_model=BatchProgressSnapshot)
def dismiss_current_analysis_job(
    orchestrator: BatchAuditOrchestrator = Depends(get_batch_orchestrator),
) -> BatchProgressSnapshot:
    try:
        return orchestrator.dismiss()
    except BatchAlreadyRunningError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


@router.post("/creatives/{creative_id}/reanalysis", response_model=ReanalysisResult)
async def reanalyze_creative(
    creative_id: str,
    payload: ReanalysisRequest,
    controller: ReanalysisController = Depends(get_reanalysis_controller),
) -> ReanalysisResult:
    if payload.current_audit is not None and payload.current_audit.creative_id != creative_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="currentAudit does not belong to this creative.",
        )
    try:
        return await controller.reanalyze(
            creative_id,
            payload.current_audit,
            choice=payload.policy_choice,
            selected_policy_id=payload.selected_policy_id,
        )
    except PolicyChoiceRequiredError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except ReanalysisFailedError as exc:
        status_code = (
            status.HTTP_401_UNAUTHORIZED if exc.requires_reauthentication else status.HTTP_502_BAD_GATEWAY
        )
        raise HTTPException(
            status_code=status_code,
            detail={
                "message": exc.message,
                "stage": exc.stage,
                "auditRemoved": exc.audit_removed,
                "kind": exc.kind.value,
                "requiresReauthentication": exc.requires_reauthentication,
            },
        ) from exc


@router.get("/creatives/{creative_id}/audit", response_model=Audit)
async def get_creative_audit(
    creative_id: str,
    cache: AuditCache = Depends(get_audit_cache),
    api: AuditApiClient = Depends(get_audit_api),
) -> Audit:
    """Current audit of a creative. Stale or unknown entries are refetched first."""
    audit = cache.get(creative_id)
    if audit is None or cache.is_stale(creative_id):
        try:
            audit = await cache.refresh(creative_id, api)
        except AuditApiError as exc:
            _raise_audit_api_error(exc)
    if audit is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="This creative has no audit yet.")
    return audit
