from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol, Sequence

from creative_audit.enums import BatchStatusEnum, CachedViewEnum
from creative_audit.schemas.analysis import BatchProgressSnapshot, BatchSummary, FailedItem
from creative_audit.schemas.records import Audit
from creative_audit.services.cache import AuditCache, ViewInvalidator
from creative_audit.services.progress import SnapshotPublisher

logger = logging.getLogger(__name__)

UNKNOWN_CREATIVE_NAME = "Unknown creative"
UNKNOWN_ERROR_MESSAGE = "Unknown error"


class EmptyBatchError(ValueError):
    """No creatives were selected; nothing is started."""


class BatchAlreadyRunningError(RuntimeError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Analysis job {job_id} is still running.")
        self.job_id = job_id


class JobNotRunnableError(RuntimeError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Analysis job {job_id} is not the active job or has already run.")
        self.job_id = job_id


class CreativeAnalyzer(Protocol):
    async def analyze_creative(self, creative_id: str, *, policy_id: Optional[str] = None) -> Audit: ...

    async def list_audits(self, creative_id: str) -> list[Audit]: ...


@dataclass
class AnalysisJob:
    job_id: str
    creative_ids: tuple[str, ...]
    policy_id: str
    creative_names: dict[str, str] = field(default_factory=dict)
    status: BatchStatusEnum = BatchStatusEnum.running
    current: int = 0
    completed: int = 0
    succeeded: int = 0
    failed_items: list[FailedItem] = field(default_factory=list)
    started: bool = False

    @property
    def total(self) -> int:
        return len(self.creative_ids)

    @property
    def failed(self) -> int:
        return len(self.failed_items)

    def name_for(self, creative_id: str) -> str:
        return self.creative_names.get(creative_id) or UNKNOWN_CREATIVE_NAME

    def snapshot(self) -> BatchProgressSnapshot:
        current_id: Optional[str] = None
        if self.status == BatchStatusEnum.running and 0 < self.current <= self.total:
            current_id = self.creative_ids[self.current - 1]
        return BatchProgressSnapshot(
            job_id=self.job_id,
            status=self.status,
            current=self.current,
            completed=self.completed,
            total=self.total,
            current_creative_id=current_id,
            current_item_name=self.name_for(current_id) if current_id else "",
            succeeded=self.succeeded,
            failed=self.failed,
            failed_items=tuple(self.failed_items),
        )

    def summary(self) -> BatchSummary:
        return BatchSummary(
            job_id=self.job_id,
            total=self.total,
            succeeded=self.succeeded,
            failed=self.failed,
            failed_items=tuple(self.failed_items),
            message=summary_message(self.succeeded, self.failed),
        )


def summary_message(succeeded: int, failed: int) -> str:
    noun = "creative" if succeeded == 1 else "creatives"
    message = f"{succeeded} {noun} analyzed successfully."
    if failed:
        message += f" {failed} failed."
    return message


class BatchAuditOrchestrator:
    """
    Runs an ordered list of creatives through the remote analysis, one call at a time.

    A failing item is recorded and the batch moves on; the tally always ends with
    succeeded + failed == total.
    """

    def __init__(
        self,
        analyzer: CreativeAnalyzer,
        *,
        cache: AuditCache,
        views: ViewInvalidator,
        publisher: Optional[SnapshotPublisher[BatchProgressSnapshot]] = None,
    ) -> None:
        self._analyzer = analyzer
        self._cache = cache
        self._views = views
        self.publisher: SnapshotPublisher[BatchProgressSnapshot] = publisher or SnapshotPublisher(
            BatchProgressSnapshot()
        )
        self._active: Optional[AnalysisJob] = None

    @property
    def active_job(self) -> Optional[AnalysisJob]:
        return self._active

    def current_snapshot(self) -> BatchProgressSnapshot:
        return self.publisher.latest() or BatchProgressSnapshot()

    def start(
        self,
        creative_ids: Sequence[str],
        policy_id: str,
        creative_names: Optional[Mapping[str, str]] = None,
    ) -> AnalysisJob:
        ids = tuple(creative_id for creative_id in creative_ids)
        if not ids:
            raise EmptyBatchError("Select at least one creative to analyze.")
        if not policy_id:
            raise ValueError("policy_id is required")
        if self._active is not None:
            raise BatchAlreadyRunningError(self._active.job_id)

        job = AnalysisJob(
            job_id=str(uuid.uuid4()),
            creative_ids=ids,
            policy_id=policy_id,
            creative_names=dict(creative_names or {}),
        )
        self._active = job
        logger.info(
            "batch_audit.started",
            extra={"job_id": job.job_id, "total": job.total, "policy_id": policy_id},
        )
        self.publisher.publish(job.snapshot())
        return job

    async def run_job(self, job: AnalysisJob) -> BatchSummary:
        if job is not self._active or job.started:
            raise JobNotRunnableError(job.job_id)
        job.started = True
        try:
            for index, creative_id in enumerate(job.creative_ids):
                job.current = index + 1
                self.publisher.publish(job.snapshot())
                try:
                    audit = await self._analyzer.analyze_creative(creative_id, policy_id=job.policy_id)
                    self._cache.replace(creative_id, audit)
                    self._cache.invalidate(creative_id)
                    job.succeeded += 1
                except Exception as exc:  # noqa: BLE001
                    error_message = str(exc).strip() or UNKNOWN_ERROR_MESSAGE
                    job.failed_items.append(
                        FailedItem(creative_id=creative_id, name=job.name_for(creative_id), error=error_message)
                    )
                    logger.warning(
                        "batch_audit.item_failed",
                        extra={"job_id": job.job_id, "creative_id": creative_id, "error": error_message},
                    )
                job.completed += 1
                self.publisher.publish(job.snapshot())

            job.status = BatchStatusEnum.done
            self.publisher.publish(job.snapshot())
            self._views.invalidate(CachedViewEnum.creatives)
            still_stale = await self._cache.reconcile(job.creative_ids, self._analyzer)
            summary = job.summary()
            logger.info(
                "batch_audit.finished",
                extra={
                    "job_id": job.job_id,
                    "succeeded": summary.succeeded,
                    "failed": summary.failed,
                    "stale": len(still_stale),
                },
            )
            return summary
        finally:
            if job.status == BatchStatusEnum.running:
                # Interrupted mid-batch: settle what was tallied so far.
                job.status = BatchStatusEnum.done
                self.publisher.publish(job.snapshot())
            if self._active is job:
                self._active = None

    async def run(
        self,
        creative_ids: Sequence[str],
        policy_id: str,
        creative_names: Optional[Mapping[str, str]] = None,
    ) -> BatchSummary:
        job = self.start(creative_ids, policy_id, creative_names)
        return await self.run_job(job)

    async def analyze_one(self, creative_id: str, policy_id: str, name: Optional[str] = None) -> BatchSummary:
        names = {creative_id: name} if name else None
        return await self.run([creative_id], policy_id, names)

    def dismiss(self) -> BatchProgressSnapshot:
        snapshot = self.current_snapshot()
        if snapshot.status == BatchStatusEnum.running:
            raise BatchAlreadyRunningError(snapshot.job_id or "")
        idle = BatchProgressSnapshot()
        self.publisher.publish(idle)
        return idle
