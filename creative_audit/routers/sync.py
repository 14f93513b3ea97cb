from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from creative_audit.clients.audit_api import AuditApiError
from creative_audit.deps import get_sync_controller
from creative_audit.schemas.sync import SyncAllSummary, SyncSessionSnapshot
from creative_audit.services.sync_reconciliation import (
    SyncInProgressError,
    SyncNotResumableError,
    SyncReconciliationController,
    SyncSession,
    SyncSessionNotFoundError,
)

router = APIRouter(prefix="/integrations", tags=["sync"])


async def _execute(controller: SyncReconciliationController, session: SyncSession) -> None:
    await controller.execute(session)


@router.post("/sync-all", response_model=SyncAllSummary)
async def sync_all_integrations(
    controller: SyncReconciliationController = Depends(get_sync_controller),
) -> SyncAllSummary:
    try:
        return await controller.sync_all()
    except AuditApiError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"message": f"Could not list integrations: {exc.message}", "kind": exc.kind.value},
        ) from exc


@router.post(
    "/{integration_id}/sync",
    response_model=SyncSessionSnapshot,
    status_code=status.HTTP_202_ACCEPTED,
)
def start_sync(
    integration_id: str,
    background_tasks: BackgroundTasks,
    controller: SyncReconciliationController = Depends(get_sync_controller),
) -> SyncSessionSnapshot:
    try:
        session = controller.begin(integration_id)
    except SyncInProgressError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    background_tasks.add_task(_execute, controller, session)
    return session.snapshot()


@router.post(
    "/{integration_id}/sync/continue",
    response_model=SyncSessionSnapshot,
    status_code=status.HTTP_202_ACCEPTED,
)
def continue_sync(
    integration_id: str,
    background_tasks: BackgroundTasks,
    controller: SyncReconciliationController = Depends(get_sync_controller),
) -> SyncSessionSnapshot:
    try:
        session = controller.resume(integration_id)
    except SyncSessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SyncInProgressError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except SyncNotResumableError as exc:
        existing = controller.get(integration_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": exc.reason,
                "requiresReauthentication": bool(existing and existing.requires_reauthentication),
            },
        ) from exc
    background_tasks.add_task(_execute, controller, session)
    return session.snapshot()


@router.get("/{integration_id}/sync", response_model=SyncSessionSnapshot)
def get_sync_session(
    integration_id: str,
    controller: SyncReconciliationController = Depends(get_sync_controller),
) -> SyncSessionSnapshot:
    session = controller.get(integration_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No sync session is open.")
    return session.snapshot()


@router.delete("/{integration_id}/sync", response_model=SyncSessionSnapshot)
def close_sync_session(
    integration_id: str,
    controller: SyncReconciliationController = Depends(get_sync_controller),
) -> SyncSessionSnapshot:
    try:
        return controller.close(integration_id)
    except SyncSessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SyncInProgressError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
