from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from creative_audit.clients.audit_api import AuditApiError
from creative_audit.deps import (
    get_audit_api,
    get_audit_cache,
    get_batch_orchestrator,
    get_sync_controller,
    get_view_invalidator,
)
from creative_audit.enums import SyncErrorKindEnum
from creative_audit.main import app
from creative_audit.schemas.records import Integration
from creative_audit.schemas.sync import SyncCounts, SyncOutcome
from creative_audit.services.batch_audit import BatchAuditOrchestrator
from creative_audit.services.sync_reconciliation import SyncReconciliationController


@pytest.fixture()
def api_client(fake_api, audit_cache, views):
    orchestrator = BatchAuditOrchestrator(fake_api, cache=audit_cache, views=views)
    sync_controller = SyncReconciliationController(fake_api, views=views, dwell_seconds=0)
    app.dependency_overrides[get_audit_api] = lambda: fake_api
    app.dependency_overrides[get_audit_cache] = lambda: audit_cache
    app.dependency_overrides[get_view_invalidator] = lambda: views
    app.dependency_overrides[get_batch_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_sync_controller] = lambda: sync_controller
    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()


def test_health(api_client):
    response = api_client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_policy_chooser_and_confirm(api_client, fake_api, policy_factory):
    fake_api.policies = [policy_factory("p-1"), policy_factory("p-2", is_default=True)]

    chooser = api_client.post(
        "/analysis/policy-chooser",
        json={"intent": "selected", "creativeIds": ["c1", "c2"]},
    )
    assert chooser.status_code == 200
    body = chooser.json()
    assert body["preselectedPolicyId"] == "p-2"
    assert [option["id"] for option in body["options"]] == ["p-1", "p-2"]

    confirmed = api_client.post(
        "/analysis/policy-chooser/confirm",
        json={"chooser": body, "selectedPolicyId": "p-1"},
    )
    assert confirmed.status_code == 200
    assert confirmed.json() == {"policyId": "p-1", "intent": "selected", "creativeIds": ["c1", "c2"]}

    missing = api_client.post("/analysis/policy-chooser/confirm", json={"chooser": body})
    assert missing.status_code == 422


def test_policy_chooser_without_global_policy_is_conflict(api_client, fake_api):
    response = api_client.post("/analysis/policy-chooser", json={"intent": "all", "creativeIds": ["c1"]})

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "no_policy_available"
    assert fake_api.calls_named("analyze_creative") == []


def test_analysis_job_runs_in_background(api_client, fake_api):
    fake_api.analyze_failures["C2"] = AuditApiError("Analysis engine timed out")

    started = api_client.post(
        "/analysis/jobs",
        json={"creativeIds": ["C1", "C2", "C3"], "policyId": "pol-1", "creativeNames": {"C2": "C2"}},
    )
    assert started.status_code == 202
    assert started.json()["started"] is True
    assert started.json()["snapshot"]["total"] == 3

    current = api_client.get("/analysis/jobs/current").json()
    assert current["status"] == "done"
    assert (current["succeeded"], current["failed"]) == (2, 1)
    assert current["failedItems"] == [
        {"creativeId": "C2", "name": "C2", "error": "Analysis engine timed out"}
    ]

    dismissed = api_client.post("/analysis/jobs/current/dismiss")
    assert dismissed.json()["status"] == "idle"


def test_empty_analysis_job_is_a_notice(api_client, fake_api):
    response = api_client.post("/analysis/jobs", json={"creativeIds": [], "policyId": "pol-1"})

    assert response.status_code == 200
    assert response.json()["started"] is False
    assert response.json()["notice"]
    assert fake_api.calls == []


def test_reanalysis_endpoint_reports_audit_removed(api_client, fake_api, audit_factory):
    current = audit_factory("cr-1")
    fake_api.analyze_failures["cr-1"] = AuditApiError("Engine crashed", status_code=500)

    response = api_client.post(
        "/creatives/cr-1/reanalysis",
        json={"currentAudit": current.model_dump(by_alias=True, mode="json"), "policyChoice": "same"},
    )

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["stage"] == "analyze"
    assert detail["auditRemoved"] is True


def test_reanalysis_endpoint_requires_policy_choice(api_client, fake_api):
    response = api_client.post("/creatives/cr-1/reanalysis", json={"policyChoice": "different"})

    assert response.status_code == 422
    assert fake_api.calls == []


def test_reanalysis_endpoint_success(api_client, fake_api, audit_cache, audit_factory):
    current = audit_factory("cr-1", policy_id="pol-4")

    response = api_client.post(
        "/creatives/cr-1/reanalysis",
        json={"currentAudit": current.model_dump(by_alias=True, mode="json")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["policyId"] == "pol-4"
    assert body["previousAuditId"] == current.id
    assert audit_cache.get("cr-1").id == body["audit"]["id"]


def test_sync_partial_then_continue(api_client, fake_api):
    fake_api.sync_outcomes["I1"] = [
        SyncOutcome.failure(
            SyncErrorKindEnum.rate_limited,
            "User request limit reached",
            SyncCounts(campaigns=5, ad_sets=12, creatives=40),
        ),
        SyncOutcome.success(SyncCounts(campaigns=6, ad_sets=12, creatives=41)),
    ]

    started = api_client.post("/integrations/I1/sync")
    assert started.status_code == 202
    assert started.json()["phase"] == "connecting"
    assert started.json()["dismissible"] is False

    partial = api_client.get("/integrations/I1/sync").json()
    assert partial["phase"] == "partial"
    assert partial["counts"] == {"campaigns": 5, "adSets": 12, "creatives": 40}
    assert partial["canContinue"] is True

    resumed = api_client.post("/integrations/I1/sync/continue")
    assert resumed.status_code == 202
    assert resumed.json()["phase"] == "syncing"
    assert fake_api.calls_named("sync_integration") == ["I1", "I1"]

    assert api_client.get("/integrations/I1/sync").status_code == 404


def test_sync_close_after_partial(api_client, fake_api):
    fake_api.sync_outcomes["I1"] = [
        SyncOutcome.failure(SyncErrorKindEnum.unauthorized, "Invalid OAuth access token"),
    ]
    api_client.post("/integrations/I1/sync")

    refused = api_client.post("/integrations/I1/sync/continue")
    assert refused.status_code == 409
    assert refused.json()["detail"]["requiresReauthentication"] is True

    closed = api_client.delete("/integrations/I1/sync")
    assert closed.status_code == 200
    assert api_client.delete("/integrations/I1/sync").status_code == 404


def test_sync_all_endpoint(api_client, fake_api):
    fake_api.integrations = [Integration(id="I1"), Integration(id="I2"), Integration(id="I3")]
    fake_api.sync_outcomes = {
        "I1": [SyncOutcome.success(SyncCounts(campaigns=2))],
        "I2": [SyncOutcome.failure(SyncErrorKindEnum.unknown, "boom")],
        "I3": [SyncOutcome.success(SyncCounts(campaigns=4))],
    }

    response = api_client.post("/integrations/sync-all")

    assert response.status_code == 200
    body = response.json()
    assert body["totals"]["campaigns"] == 6
    assert body["succeededIntegrationIds"] == ["I1", "I3"]
    assert body["failed"][0]["integrationId"] == "I2"


def test_creative_audit_is_served_from_cache_after_refetch(api_client, fake_api, audit_cache, audit_factory):
    fake_api.audits["C1"] = [audit_factory("C1", audit_id="platform-latest")]
    audit_cache.replace("C1", audit_factory("C1", audit_id="optimistic"))
    audit_cache.invalidate("C1")

    first = api_client.get("/creatives/C1/audit")
    second = api_client.get("/creatives/C1/audit")

    assert first.status_code == 200
    assert first.json()["id"] == "platform-latest"
    assert second.json()["id"] == "platform-latest"
    assert fake_api.calls_named("list_audits") == ["C1"]
    assert not audit_cache.is_stale("C1")


def test_creative_without_audit_is_not_found(api_client, fake_api):
    response = api_client.get("/creatives/C9/audit")

    assert response.status_code == 404
    assert fake_api.calls_named("list_audits") == ["C9"]


def test_sync_all_reports_busy_integrations(api_client, fake_api):
    fake_api.integrations = [Integration(id="I1"), Integration(id="I2")]
    app.dependency_overrides[get_sync_controller]().begin("I1")

    response = api_client.post("/integrations/sync-all")

    assert response.status_code == 200
    assert response.json()["skippedIntegrationIds"] == ["I1"]
    assert fake_api.calls_named("sync_integration") == ["I2"]
