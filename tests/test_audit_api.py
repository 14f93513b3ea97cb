from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from creative_audit.clients.audit_api import AuditApiClient, AuditApiError, classify_error
from creative_audit.enums import ApiErrorKindEnum, AuditStatusEnum, PolicyScopeEnum, SyncErrorKindEnum


def _client(handler) -> AuditApiClient:
    return AuditApiClient(
        base_url="http://platform.test",
        bearer_token="secret",
        transport=httpx.MockTransport(handler),
    )


def _audit_payload(audit_id: str, created_at: str | None) -> dict:
    return {
        "id": audit_id,
        "creativeId": "cr-1",
        "policyId": "pol-1",
        "status": "não_conforme",
        "complianceScore": 40,
        "performanceScore": 55,
        "issues": None,
        "recommendations": ["Use brand colors"],
        "createdAt": created_at,
    }


def test_analyze_creative_posts_policy_and_parses_audit():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_audit_payload("a-1", "2024-05-01T10:00:00Z"))

    audit = asyncio.run(_client(handler).analyze_creative("cr-1", policy_id="pol-1"))

    assert audit.status == AuditStatusEnum.nao_conforme
    assert audit.issues == []
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/creatives/cr-1/analyze"
    assert json.loads(seen[0].content) == {"policyId": "pol-1"}
    assert seen[0].headers["Authorization"] == "Bearer secret"


def test_delete_audit_maps_404_to_not_found():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"status": "error", "message": "Audit not found", "statusCode": 404})

    with pytest.raises(AuditApiError) as exc_info:
        asyncio.run(_client(handler).delete_audit("a-1"))

    assert exc_info.value.kind == ApiErrorKindEnum.not_found
    assert exc_info.value.is_not_found
    assert exc_info.value.message == "Audit not found"


def test_list_audits_returns_most_recent_first():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json=[
                _audit_payload("old", "2024-01-01T00:00:00Z"),
                _audit_payload("undated", None),
                _audit_payload("new", "2024-06-01T00:00:00Z"),
            ],
        )

    audits = asyncio.run(_client(handler).list_audits("cr-1"))

    assert [audit.id for audit in audits] == ["new", "old", "undated"]


def test_list_policies_sends_scope_filter():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json=[
                {"id": "p1", "name": "Brand", "scope": "global", "isDefault": True},
                {"id": "p2", "name": "Promo", "scope": "campaign"},
            ],
        )

    policies = asyncio.run(_client(handler).list_policies(scope=PolicyScopeEnum.global_))

    assert seen[0].url.params["scope"] == "global"
    assert [policy.id for policy in policies] == ["p1"]
    assert policies[0].is_default is True


def test_sync_error_carries_partial_counts_and_rate_limit_kind():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            500,
            json={
                "status": "error",
                "message": "(#17) User request limit reached",
                "campaigns": 5,
                "adSets": 12,
                "creatives": 40,
            },
        )

    outcome = asyncio.run(_client(handler).sync_integration("I1"))

    assert outcome.ok is False
    assert outcome.error_kind == SyncErrorKindEnum.rate_limited
    assert (outcome.counts.campaigns, outcome.counts.ad_sets, outcome.counts.creatives) == (5, 12, 40)


def test_sync_success_reads_counts():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/integrations/I1/sync"
        return httpx.Response(
            200,
            json={"message": "Sync completed", "campaigns": 3, "adSets": 6, "creatives": 9},
        )

    outcome = asyncio.run(_client(handler).sync_integration("I1"))

    assert outcome.ok is True
    assert outcome.counts.total == 18


def test_sync_network_error_is_unknown_without_counts():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    outcome = asyncio.run(_client(handler).sync_integration("I1"))

    assert outcome.error_kind == SyncErrorKindEnum.unknown
    assert outcome.counts.total == 0


def test_sync_unauthorized():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Token expired"})

    outcome = asyncio.run(_client(handler).sync_integration("I1"))

    assert outcome.error_kind == SyncErrorKindEnum.unauthorized


@pytest.mark.parametrize(
    ("status_code", "payload", "expected"),
    [
        (404, None, ApiErrorKindEnum.not_found),
        (403, {"message": "forbidden"}, ApiErrorKindEnum.unauthorized),
        (429, None, ApiErrorKindEnum.rate_limited),
        (400, {"error": {"code": 80004, "message": "There have been too many calls"}}, ApiErrorKindEnum.rate_limited),
        (500, {"message": "boom"}, ApiErrorKindEnum.unknown),
        (500, {"errorKind": "rate_limited", "message": "slow down"}, ApiErrorKindEnum.rate_limited),
    ],
)
def test_classify_error(status_code, payload, expected):
    assert classify_error(status_code, payload) == expected


def test_invalid_payload_raises_api_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "a-1"})

    with pytest.raises(AuditApiError, match="validation failed for analyze_creative"):
        asyncio.run(_client(handler).analyze_creative("cr-1"))


def test_creative_ctr_handles_zero_impressions():
    from creative_audit.schemas.records import Creative

    creative = Creative.model_validate({"id": "c1", "name": "Banner", "type": "video", "impressions": 2000, "clicks": 37})
    idle = Creative(id="c2", name="Draft")

    assert creative.ctr == 1.85
    assert idle.ctr == 0.0
