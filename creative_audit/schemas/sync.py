from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt

from creative_audit.enums import SyncErrorKindEnum, SyncPhaseEnum


class SyncCounts(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    campaigns: NonNegativeInt = 0
    ad_sets: NonNegativeInt = Field(default=0, alias="adSets")
    creatives: NonNegativeInt = 0

    @property
    def total(self) -> int:
        return self.campaigns + self.ad_sets + self.creatives

    def plus(self, other: "SyncCounts") -> "SyncCounts":
        return SyncCounts(
            campaigns=self.campaigns + other.campaigns,
            ad_sets=self.ad_sets + other.ad_sets,
            creatives=self.creatives + other.creatives,
        )

    def high_water(self, other: "SyncCounts") -> "SyncCounts":
        return SyncCounts(
            campaigns=max(self.campaigns, other.campaigns),
            ad_sets=max(self.ad_sets, other.ad_sets),
            creatives=max(self.creatives, other.creatives),
        )

    def describe(self) -> str:
        parts: list[str] = []
        if self.campaigns:
            parts.append(f"{self.campaigns} campaigns")
        if self.ad_sets:
            parts.append(f"{self.ad_sets} ad sets")
        if self.creatives:
            parts.append(f"{self.creatives} creatives")
        return ", ".join(parts)


class SyncOutcome(BaseModel):
    """Result of one sync call. Both arms carry counts; `error_kind` marks the failure arm."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    counts: SyncCounts = Field(default_factory=SyncCounts)
    error_kind: Optional[SyncErrorKindEnum] = Field(default=None, alias="errorKind")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @classmethod
    def success(cls, counts: SyncCounts) -> "SyncOutcome":
        return cls(counts=counts)

    @classmethod
    def failure(cls, kind: SyncErrorKindEnum, message: str, counts: SyncCounts | None = None) -> "SyncOutcome":
        return cls(counts=counts or SyncCounts(), error_kind=kind, error_message=message)


class SyncAttempt(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    number: int
    resumed: bool = False
    started_at: datetime = Field(alias="startedAt")
    finished_at: Optional[datetime] = Field(default=None, alias="finishedAt")
    reported: Optional[SyncCounts] = None
    error_kind: Optional[SyncErrorKindEnum] = Field(default=None, alias="errorKind")

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()


class SyncSessionSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    integration_id: str = Field(alias="integrationId")
    phase: SyncPhaseEnum
    counts: SyncCounts = Field(default_factory=SyncCounts)
    error_kind: Optional[SyncErrorKindEnum] = Field(default=None, alias="errorKind")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    message: str = ""
    can_continue: bool = Field(default=False, alias="canContinue")
    dismissible: bool = False
    requires_reauthentication: bool = Field(default=False, alias="requiresReauthentication")
    attempts: tuple[SyncAttempt, ...] = ()


class FailedIntegration(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    integration_id: str = Field(alias="integrationId")
    account_name: Optional[str] = Field(default=None, alias="accountName")
    error_kind: SyncErrorKindEnum = Field(alias="errorKind")
    error_message: str = Field(alias="errorMessage")


class SyncAllSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    totals: SyncCounts = Field(default_factory=SyncCounts)
    succeeded_integration_ids: tuple[str, ...] = Field(default=(), alias="succeededIntegrationIds")
    failed: tuple[FailedIntegration, ...] = ()
    skipped_integration_ids: tuple[str, ...] = Field(default=(), alias="skippedIntegrationIds")
    message: str = ""
