from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, status

from creative_audit.clients.audit_api import AuditApiClient, AuditApiConfigError
from creative_audit.services.batch_audit import BatchAuditOrchestrator
from creative_audit.services.cache import AuditCache, ViewInvalidator
from creative_audit.services.policy_resolver import PolicyResolver
from creative_audit.services.reanalysis import ReanalysisController
from creative_audit.services.sync_reconciliation import SyncReconciliationController


@lru_cache()
def _audit_api() -> AuditApiClient:
    return AuditApiClient.from_settings()


def get_audit_api() -> AuditApiClient:
    try:
        return _audit_api()
    except AuditApiConfigError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


@lru_cache()
def get_audit_cache() -> AuditCache:
    return AuditCache()


@lru_cache()
def get_view_invalidator() -> ViewInvalidator:
    return ViewInvalidator()


@lru_cache()
def _batch_orchestrator() -> BatchAuditOrchestrator:
    return BatchAuditOrchestrator(_audit_api(), cache=get_audit_cache(), views=get_view_invalidator())


def get_batch_orchestrator() -> BatchAuditOrchestrator:
    # One orchestrator per process; it owns the active-job marker.
    try:
        return _batch_orchestrator()
    except AuditApiConfigError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


@lru_cache()
def _sync_controller() -> SyncReconciliationController:
    return SyncReconciliationController(_audit_api(), views=get_view_invalidator())


def get_sync_controller() -> SyncReconciliationController:
    try:
        return _sync_controller()
    except AuditApiConfigError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


def get_policy_resolver(api: AuditApiClient = Depends(get_audit_api)) -> PolicyResolver:
    return PolicyResolver(api)


def get_reanalysis_controller(
    api: AuditApiClient = Depends(get_audit_api),
    cache: AuditCache = Depends(get_audit_cache),
    views: ViewInvalidator = Depends(get_view_invalidator),
) -> ReanalysisController:
    return ReanalysisController(api, cache=cache, views=views)
