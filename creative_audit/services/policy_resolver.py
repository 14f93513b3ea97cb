from __future__ import annotations

import logging
from typing import Optional, Protocol, Sequence

from creative_audit.enums import PolicyScopeEnum
from creative_audit.schemas.analysis import (
    AnalysisRequest,
    PolicyChooser,
    PolicyOption,
    ResolvedAnalysis,
)
from creative_audit.schemas.records import Policy

logger = logging.getLogger(__name__)


class NoPolicyAvailableError(RuntimeError):
    """No global policy exists, so no analysis can start until one is created."""


class PolicyChoiceRequiredError(ValueError):
    """The operator confirmed without a resolvable policy."""


class UnknownPolicyError(ValueError):
    def __init__(self, policy_id: str) -> None:
        super().__init__(f"Policy {policy_id} is not one of the offered options.")
        self.policy_id = policy_id


class PolicySource(Protocol):
    async def list_policies(self, *, scope: Optional[PolicyScopeEnum] = None) -> list[Policy]: ...


def build_policy_chooser(policies: Sequence[Policy], request: AnalysisRequest) -> PolicyChooser:
    global_policies = [policy for policy in policies if policy.scope == PolicyScopeEnum.global_]
    if not global_policies:
        logger.info("policy_resolver.no_global_policy", extra={"intent": request.intent.value})
        raise NoPolicyAvailableError("No global policy is available. Create a policy before running an analysis.")

    defaults = [policy for policy in global_policies if policy.is_default]
    if len(defaults) > 1:
        logger.warning(
            "policy_resolver.multiple_defaults",
            extra={"policy_ids": [policy.id for policy in defaults], "selected": defaults[0].id},
        )
    preselected = defaults[0].id if defaults else None

    options = [
        PolicyOption(id=policy.id, name=policy.name, is_default=policy.id == preselected)
        for policy in global_policies
    ]
    return PolicyChooser(request=request, options=options, preselected_policy_id=preselected)


def confirm_policy_choice(chooser: PolicyChooser, selected_policy_id: Optional[str]) -> ResolvedAnalysis:
    policy_id = (selected_policy_id or "").strip()
    if not policy_id:
        raise PolicyChoiceRequiredError("Select a policy before starting the analysis.")
    if policy_id not in {option.id for option in chooser.options}:
        raise UnknownPolicyError(policy_id)
    return ResolvedAnalysis(
        policy_id=policy_id,
        intent=chooser.request.intent,
        creative_ids=list(chooser.request.creative_ids),
    )


class PolicyResolver:
    def __init__(self, source: PolicySource) -> None:
        self._source = source

    async def prepare(self, request: AnalysisRequest) -> PolicyChooser:
        policies = await self._source.list_policies(scope=PolicyScopeEnum.global_)
        return build_policy_chooser(policies, request)

    @staticmethod
    def confirm(chooser: PolicyChooser, selected_policy_id: Optional[str]) -> ResolvedAnalysis:
        return confirm_policy_choice(chooser, selected_policy_id)
