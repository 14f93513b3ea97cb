from enum import Enum


class CreativeFormatEnum(str, Enum):
    image = "image"
    video = "video"
    carousel = "carousel"
    text = "text"


class PolicyScopeEnum(str, Enum):
    global_ = "global"
    campaign = "campaign"


class AuditStatusEnum(str, Enum):
    conforme = "conforme"
    parcialmente_conforme = "parcialmente_conforme"
    nao_conforme = "não_conforme"


class IntegrationPlatformEnum(str, Enum):
    meta = "meta"
    google = "google"


class AnalysisIntentEnum(str, Enum):
    single = "single"
    selected = "selected"
    all = "all"


class BatchStatusEnum(str, Enum):
    idle = "idle"
    running = "running"
    done = "done"


class ReanalysisPhaseEnum(str, Enum):
    idle = "idle"
    policy_choice_pending = "policy_choice_pending"
    deleting = "deleting"
    analyzing = "analyzing"


class ReanalysisOutcomeEnum(str, Enum):
    succeeded = "succeeded"
    failed = "failed"


class PolicyChoiceEnum(str, Enum):
    same = "same"
    different = "different"


class SyncPhaseEnum(str, Enum):
    connecting = "connecting"
    syncing = "syncing"
    partial = "partial"
    completed = "completed"


class SyncErrorKindEnum(str, Enum):
    rate_limited = "rate_limited"
    unauthorized = "unauthorized"
    unknown = "unknown"


class ApiErrorKindEnum(str, Enum):
    not_found = "not_found"
    unauthorized = "unauthorized"
    rate_limited = "rate_limited"
    unknown = "unknown"


class CachedViewEnum(str, Enum):
    campaigns = "campaigns"
    ad_sets = "ad_sets"
    creatives = "creatives"
    integrations = "integrations"
