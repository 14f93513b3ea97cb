import os
import sys
from pathlib import Path
from typing import Any, Optional

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("AUDIT_API_BASE_URL", "http://platform.test")
os.environ.setdefault("AUDIT_API_TOKEN", "test-token")
os.environ.setdefault("SYNC_COMPLETION_DWELL_SECONDS", "0")

from creative_audit.clients.audit_api import AuditApiError
from creative_audit.enums import ApiErrorKindEnum, AuditStatusEnum, PolicyScopeEnum
from creative_audit.schemas.records import Audit, Integration, Policy
from creative_audit.schemas.sync import SyncOutcome
from creative_audit.services.cache import AuditCache, ViewInvalidator


def make_audit(creative_id: str, *, audit_id: Optional[str] = None, policy_id: Optional[str] = "pol-1") -> Audit:
    return Audit(
        id=audit_id or f"audit-{creative_id}",
        creative_id=creative_id,
        policy_id=policy_id,
        status=AuditStatusEnum.conforme,
        compliance_score=92.0,
        performance_score=71.5,
    )


def make_policy(policy_id: str, *, scope: PolicyScopeEnum = PolicyScopeEnum.global_, is_default: bool = False) -> Policy:
    return Policy(id=policy_id, name=f"Policy {policy_id}", scope=scope, is_default=is_default)


class FakeAuditApi:
    """In-memory stand-in for the platform API; records every call in order."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.policies: list[Policy] = []
        self.integrations: list[Integration] = []
        self.audits: dict[str, list[Audit]] = {}
        self.analyze_failures: dict[str, Exception] = {}
        self.delete_failures: dict[str, Exception] = {}
        self.deleted_audit_ids: set[str] = set()
        self.sync_outcomes: dict[str, list[Any]] = {}
        self._audit_counter = 0

    async def analyze_creative(self, creative_id: str, *, policy_id: Optional[str] = None) -> Audit:
        self.calls.append(("analyze_creative", (creative_id, policy_id)))
        failure = self.analyze_failures.get(creative_id)
        if failure is not None:
            raise failure
        self._audit_counter += 1
        audit = make_audit(creative_id, audit_id=f"audit-{creative_id}-{self._audit_counter}", policy_id=policy_id)
        self.audits.setdefault(creative_id, []).insert(0, audit)
        return audit

    async def delete_audit(self, audit_id: str) -> None:
        self.calls.append(("delete_audit", audit_id))
        failure = self.delete_failures.get(audit_id)
        if failure is not None:
            raise failure
        if audit_id in self.deleted_audit_ids:
            raise AuditApiError("Audit not found", status_code=404, kind=ApiErrorKindEnum.not_found)
        self.deleted_audit_ids.add(audit_id)
        for creative_id, audits in self.audits.items():
            self.audits[creative_id] = [audit for audit in audits if audit.id != audit_id]

    async def list_audits(self, creative_id: str) -> list[Audit]:
        self.calls.append(("list_audits", creative_id))
        return list(self.audits.get(creative_id, []))

    async def list_policies(self, *, scope: Optional[PolicyScopeEnum] = None) -> list[Policy]:
        self.calls.append(("list_policies", scope))
        if scope is None:
            return list(self.policies)
        return [policy for policy in self.policies if policy.scope == scope]

    async def list_integrations(self) -> list[Integration]:
        self.calls.append(("list_integrations", None))
        return list(self.integrations)

    async def sync_integration(self, integration_id: str) -> SyncOutcome:
        self.calls.append(("sync_integration", integration_id))
        queue = self.sync_outcomes.get(integration_id) or []
        result = queue.pop(0) if queue else SyncOutcome()
        if isinstance(result, Exception):
            raise result
        return result

    def calls_named(self, name: str) -> list[Any]:
        return [args for call_name, args in self.calls if call_name == name]


@pytest.fixture()
def fake_api() -> FakeAuditApi:
    return FakeAuditApi()


@pytest.fixture()
def audit_cache() -> AuditCache:
    return AuditCache()


@pytest.fixture()
def views() -> ViewInvalidator:
    return ViewInvalidator()


@pytest.fixture()
def audit_factory():
    return make_audit


@pytest.fixture()
def policy_factory():
    return make_policy
