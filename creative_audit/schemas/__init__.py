from creative_audit.schemas.analysis import (
    AnalysisRequest,
    BatchProgressSnapshot,
    BatchSummary,
    FailedItem,
    PolicyChooser,
    PolicyOption,
    ResolvedAnalysis,
)
from creative_audit.schemas.records import Audit, Creative, Integration, Policy
from creative_audit.schemas.sync import SyncAllSummary, SyncCounts, SyncOutcome, SyncSessionSnapshot
