"""Records owned by the remote platform API, as the core receives them."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from creative_audit.enums import (
    AuditStatusEnum,
    CreativeFormatEnum,
    IntegrationPlatformEnum,
    PolicyScopeEnum,
)


class Creative(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str
    format: CreativeFormatEnum = Field(default=CreativeFormatEnum.image, alias="type")
    campaign_id: Optional[str] = Field(default=None, alias="campaignId")
    ad_set_id: Optional[str] = Field(default=None, alias="adSetId")
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0

    @property
    def ctr(self) -> float:
        if self.impressions <= 0:
            return 0.0
        return round(self.clicks / self.impressions * 100, 3)


class Policy(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    scope: PolicyScopeEnum = PolicyScopeEnum.global_
    is_default: bool = Field(default=False, alias="isDefault")
    status: str = "active"
    rules: dict[str, Any] = Field(default_factory=dict)
    performance_thresholds: Optional[dict[str, Any]] = Field(default=None, alias="performanceThresholds")


class Audit(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    creative_id: str = Field(alias="creativeId")
    policy_id: Optional[str] = Field(default=None, alias="policyId")
    status: AuditStatusEnum
    compliance_score: float = Field(default=0.0, alias="complianceScore")
    performance_score: float = Field(default=0.0, alias="performanceScore")
    issues: list[Any] = Field(default_factory=list)
    recommendations: list[Any] = Field(default_factory=list)
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")

    @field_validator("issues", "recommendations", mode="before")
    @classmethod
    def _null_to_empty(cls, value: Any) -> Any:
        # Audits stored before structured findings existed carry null here.
        return [] if value is None else value


class Integration(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    platform: IntegrationPlatformEnum = IntegrationPlatformEnum.meta
    account_name: Optional[str] = Field(default=None, alias="accountName")
    status: str = "active"
    last_sync: Optional[datetime] = Field(default=None, alias="lastSync")
