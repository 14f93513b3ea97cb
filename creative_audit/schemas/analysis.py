from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from creative_audit.enums import (
    AnalysisIntentEnum,
    BatchStatusEnum,
    PolicyChoiceEnum,
    ReanalysisOutcomeEnum,
    ReanalysisPhaseEnum,
)
from creative_audit.schemas.records import Audit


def _clean_ids(value: list[str]) -> list[str]:
    cleaned: list[str] = []
    for entry in value:
        if not isinstance(entry, str) or not entry.strip():
            raise ValueError("creativeIds must contain non-empty strings.")
        cleaned.append(entry.strip())
    return cleaned


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    intent: AnalysisIntentEnum
    creative_ids: list[str] = Field(default_factory=list, alias="creativeIds")

    @field_validator("creative_ids")
    @classmethod
    def _validate_creative_ids(cls, value: list[str]) -> list[str]:
        return _clean_ids(value)

    @model_validator(mode="after")
    def _validate_single_target(self) -> "AnalysisRequest":
        if self.intent == AnalysisIntentEnum.single and len(self.creative_ids) != 1:
            raise ValueError("A single analysis must target exactly one creative.")
        return self


class PolicyOption(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str
    is_default: bool = Field(default=False, alias="isDefault")


class PolicyChooser(BaseModel):
    """Policy decision surfaced to the operator before any analysis starts."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    request: AnalysisRequest
    options: list[PolicyOption]
    preselected_policy_id: Optional[str] = Field(default=None, alias="preselectedPolicyId")


class PolicyConfirmRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chooser: PolicyChooser
    selected_policy_id: Optional[str] = Field(default=None, alias="selectedPolicyId")


class ResolvedAnalysis(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    policy_id: str = Field(alias="policyId")
    intent: AnalysisIntentEnum
    creative_ids: list[str] = Field(alias="creativeIds")


class FailedItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    creative_id: str = Field(alias="creativeId")
    name: str
    error: str


class BatchProgressSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    job_id: Optional[str] = Field(default=None, alias="jobId")
    status: BatchStatusEnum = BatchStatusEnum.idle
    # 1-based position of the item in flight; equals `completed` once done.
    current: int = 0
    completed: int = 0
    total: int = 0
    current_creative_id: Optional[str] = Field(default=None, alias="currentCreativeId")
    current_item_name: str = Field(default="", alias="currentItemName")
    succeeded: int = 0
    failed: int = 0
    failed_items: tuple[FailedItem, ...] = Field(default=(), alias="failedItems")


class BatchSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    job_id: str = Field(alias="jobId")
    total: int
    succeeded: int
    failed: int
    failed_items: tuple[FailedItem, ...] = Field(default=(), alias="failedItems")
    message: str


class AnalysisJobStartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    creative_ids: list[str] = Field(default_factory=list, alias="creativeIds")
    policy_id: str = Field(alias="policyId", min_length=1)
    creative_names: dict[str, str] = Field(default_factory=dict, alias="creativeNames")

    @field_validator("creative_ids")
    @classmethod
    def _validate_creative_ids(cls, value: list[str]) -> list[str]:
        return _clean_ids(value)


class AnalysisJobStartResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    started: bool
    notice: Optional[str] = None
    snapshot: Optional[BatchProgressSnapshot] = None


class ReanalysisRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    current_audit: Optional[Audit] = Field(default=None, alias="currentAudit")
    policy_choice: PolicyChoiceEnum = Field(default=PolicyChoiceEnum.same, alias="policyChoice")
    selected_policy_id: Optional[str] = Field(default=None, alias="selectedPolicyId")


class ReanalysisSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    creative_id: Optional[str] = Field(default=None, alias="creativeId")
    phase: ReanalysisPhaseEnum = ReanalysisPhaseEnum.idle
    policy_choice: PolicyChoiceEnum = Field(default=PolicyChoiceEnum.same, alias="policyChoice")
    selected_policy_id: Optional[str] = Field(default=None, alias="selectedPolicyId")
    last_outcome: Optional[ReanalysisOutcomeEnum] = Field(default=None, alias="lastOutcome")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")


class ReanalysisResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    creative_id: str = Field(alias="creativeId")
    policy_id: str = Field(alias="policyId")
    audit: Audit
    previous_audit_id: Optional[str] = Field(default=None, alias="previousAuditId")
    previous_audit_already_gone: bool = Field(default=False, alias="previousAuditAlreadyGone")
