from __future__ import annotations

import logging
import re
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from creative_audit.config import settings
from creative_audit.enums import ApiErrorKindEnum, PolicyScopeEnum, SyncErrorKindEnum
from creative_audit.schemas.records import Audit, Integration, Policy
from creative_audit.schemas.sync import SyncCounts, SyncOutcome

logger = logging.getLogger(__name__)

# Meta Graph API throttling codes (application, account, user and per-call limits).
_META_RATE_LIMIT_CODES = {4, 17, 32, 613, 80004}
_RATE_LIMIT_MESSAGE_PATTERN = re.compile(
    r"rate.?limit|request limit|too many (calls|requests)|limite de requisi",
    re.IGNORECASE,
)


class AuditApiConfigError(RuntimeError):
    pass


class AuditApiError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        kind: ApiErrorKindEnum = ApiErrorKindEnum.unknown,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.kind = kind
        self.payload = payload

    @property
    def is_not_found(self) -> bool:
        return self.kind == ApiErrorKindEnum.not_found


def _payload_message(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    for key in ("message", "error_description", "detail"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    error = payload.get("error")
    if isinstance(error, dict):
        return _payload_message(error)
    if isinstance(error, str) and error.strip():
        return error.strip()
    return None


def _looks_rate_limited(payload: Any, message: str | None) -> bool:
    if isinstance(payload, dict):
        error = payload.get("error")
        code = error.get("code") if isinstance(error, dict) else payload.get("code")
        if isinstance(code, int) and code in _META_RATE_LIMIT_CODES:
            return True
    return bool(message and _RATE_LIMIT_MESSAGE_PATTERN.search(message))


def classify_error(status_code: int | None, payload: Any = None) -> ApiErrorKindEnum:
    if isinstance(payload, dict):
        explicit = payload.get("errorKind") or payload.get("kind")
        if isinstance(explicit, str):
            try:
                return ApiErrorKindEnum(explicit)
            except ValueError:
                pass
    if status_code == 404:
        return ApiErrorKindEnum.not_found
    if status_code in (401, 403):
        return ApiErrorKindEnum.unauthorized
    if status_code == 429 or _looks_rate_limited(payload, _payload_message(payload)):
        return ApiErrorKindEnum.rate_limited
    return ApiErrorKindEnum.unknown


def _sync_kind(kind: ApiErrorKindEnum) -> SyncErrorKindEnum:
    if kind == ApiErrorKindEnum.rate_limited:
        return SyncErrorKindEnum.rate_limited
    if kind == ApiErrorKindEnum.unauthorized:
        return SyncErrorKindEnum.unauthorized
    return SyncErrorKindEnum.unknown


def _counts_from_payload(payload: Any) -> SyncCounts:
    if not isinstance(payload, dict):
        return SyncCounts()
    # Partial counts may sit at the top level or inside a `data` envelope.
    source = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    values: dict[str, int] = {}
    for key in ("campaigns", "adSets", "creatives"):
        raw = source.get(key)
        if isinstance(raw, bool):
            continue
        if isinstance(raw, (int, float)) and raw >= 0:
            values[key] = int(raw)
    return SyncCounts.model_validate(values)


class AuditApiClient:
    """Async client for the platform API that owns creatives, policies, audits and integrations."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        bearer_token: str | None = None,
        timeout_seconds: float | None = None,
        sync_timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        resolved_base = (base_url or settings.AUDIT_API_BASE_URL or "").strip()
        if not resolved_base:
            raise AuditApiConfigError("AUDIT_API_BASE_URL is required")
        self.base_url = resolved_base.rstrip("/")
        self.bearer_token = (bearer_token or settings.AUDIT_API_TOKEN or "").strip() or None
        self.timeout_seconds = float(timeout_seconds or settings.AUDIT_API_TIMEOUT_SECONDS or 60.0)
        self.sync_timeout_seconds = float(sync_timeout_seconds or settings.SYNC_REQUEST_TIMEOUT_SECONDS or 600.0)
        self._transport = transport

    @classmethod
    def from_settings(cls) -> "AuditApiClient":
        if not settings.AUDIT_API_BASE_URL:
            raise AuditApiConfigError("AUDIT_API_BASE_URL is required to reach the platform API.")
        return cls(
            base_url=settings.AUDIT_API_BASE_URL,
            bearer_token=settings.AUDIT_API_TOKEN,
            timeout_seconds=settings.AUDIT_API_TIMEOUT_SECONDS,
            sync_timeout_seconds=settings.SYNC_REQUEST_TIMEOUT_SECONDS,
        )

    async def analyze_creative(self, creative_id: str, *, policy_id: str | None = None) -> Audit:
        body = {"policyId": policy_id} if policy_id else None
        data = await self._request_json("POST", f"/api/creatives/{creative_id}/analyze", json_payload=body)
        return self._parse_model(Audit, data, context="analyze_creative")

    async def delete_audit(self, audit_id: str) -> None:
        await self._request_json("DELETE", f"/api/audits/{audit_id}")

    async def list_audits(self, creative_id: str) -> list[Audit]:
        data = await self._request_json("GET", f"/api/creatives/{creative_id}/audits")
        audits = [self._parse_model(Audit, item, context="list_audits") for item in self._as_list(data, "list_audits")]
        # Most recent first; undated audits sink to the end.
        dated = sorted((a for a in audits if a.created_at), key=lambda a: a.created_at, reverse=True)
        return dated + [a for a in audits if not a.created_at]

    async def list_policies(self, *, scope: PolicyScopeEnum | None = None) -> list[Policy]:
        params = {"scope": scope.value} if scope else None
        data = await self._request_json("GET", "/api/policies", params=params)
        policies = [self._parse_model(Policy, item, context="list_policies") for item in self._as_list(data, "list_policies")]
        if scope:
            policies = [policy for policy in policies if policy.scope == scope]
        return policies

    async def list_integrations(self) -> list[Integration]:
        data = await self._request_json("GET", "/api/integrations")
        return [
            self._parse_model(Integration, item, context="list_integrations")
            for item in self._as_list(data, "list_integrations")
        ]

    async def sync_integration(self, integration_id: str) -> SyncOutcome:
        """Run one sync call. Failures come back as a SyncOutcome carrying partial counts."""
        try:
            data = await self._request_json(
                "POST",
                f"/api/integrations/{integration_id}/sync",
                timeout_seconds=self.sync_timeout_seconds,
            )
        except AuditApiError as exc:
            logger.warning(
                "audit_api.sync_failed",
                extra={"integration_id": integration_id, "status_code": exc.status_code, "kind": exc.kind.value},
            )
            return SyncOutcome.failure(_sync_kind(exc.kind), exc.message, _counts_from_payload(exc.payload))
        return SyncOutcome.success(_counts_from_payload(data))

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        json_payload: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        timeout_seconds: float | None = None,
    ) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=timeout_seconds or self.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    path,
                    json=json_payload,
                    params=params,
                    headers=self._headers(),
                )
        except httpx.RequestError as exc:
            raise AuditApiError(f"Network error while calling the platform API: {exc}") from exc

        if response.status_code >= 400:
            self._raise_request_error(response)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise AuditApiError(
                f"Platform API returned non-JSON payload for {method} {path}",
                status_code=response.status_code,
            ) from exc

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"
        return headers

    def _raise_request_error(self, response: httpx.Response) -> None:
        try:
            payload: Any = response.json()
        except ValueError:
            payload = {"text": response.text}

        message = _payload_message(payload) or f"Platform API request failed ({response.status_code})"
        raise AuditApiError(
            message,
            status_code=response.status_code,
            kind=classify_error(response.status_code, payload),
            payload=payload,
        )

    @staticmethod
    def _as_list(data: Any, context: str) -> list[Any]:
        if isinstance(data, dict) and isinstance(data.get("data"), list):
            return data["data"]
        if not isinstance(data, list):
            raise AuditApiError(f"Platform API payload for {context} must be a JSON array")
        return data

    @staticmethod
    def _parse_model(model_cls, payload: Any, *, context: str):
        try:
            return model_cls.model_validate(payload)
        except ValidationError as exc:
            raise AuditApiError(
                f"Platform API payload validation failed for {context}: {exc}",
                payload=payload,
            ) from exc
