from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any, Callable

from pydantic import ValidationError

from splitjob.core.config import Settings
from splitjob.core.models import (
    FETCHABLE_PAGE_STATUSES,
    Job,
    JobOutcome,
    JobStatus,
    JobStatusPayload,
    PageStatus,
    PollDiagnostics,
    StatusPage,
)
from splitjob.runtime.artifact_fetcher import ArtifactFetcher
from splitjob.runtime.errors import JobNotFoundError, JobUnknownError
from splitjob.runtime.job_store import JobObserver, JobStore
from splitjob.runtime.registries import CancellationRegistry, PageFetchTracker
from splitjob.runtime.resources import ResourceStore


logger = logging.getLogger(__name__)


class SplitJobOrchestrator:
    """Drives remote split/OCR jobs to completion and pulls page artifacts as they become ready.

    One asyncio task per job id. Each task polls the job status at a fixed interval,
    fetches artifacts for newly ready pages one page at a time, and resolves with a
    `JobOutcome` once every page is ready/processed or the job is cancelled. Transient
    remote failures are logged and retried on the next tick; they never fail the task.
    """

    def __init__(
        self,
        fetcher: ArtifactFetcher,
        resources: ResourceStore,
        *,
        store: JobStore | None = None,
        tracker: PageFetchTracker | None = None,
        cancellations: CancellationRegistry | None = None,
        poll_interval_seconds: float = 2.0,
        reclaim_failed_pages: bool = False,
    ):
        self.fetcher = fetcher
        self.resources = resources
        self.store = store or JobStore(resources)
        self.tracker = tracker or PageFetchTracker()
        self.cancellations = cancellations or CancellationRegistry()
        self.poll_interval_seconds = poll_interval_seconds
        self.reclaim_failed_pages = reclaim_failed_pages

        self._tasks: dict[str, asyncio.Task[JobOutcome]] = {}
        self._outcomes: dict[str, JobOutcome] = {}
        self._last_status: dict[str, JobStatusPayload] = {}
        self._diagnostics: dict[str, PollDiagnostics] = {}

    @classmethod
    def from_settings(cls, settings: Settings, fetcher: ArtifactFetcher) -> "SplitJobOrchestrator":
        return cls(
            fetcher,
            ResourceStore(settings.artifacts_path),
            poll_interval_seconds=settings.poll_interval_seconds,
            reclaim_failed_pages=settings.reclaim_failed_pages,
        )

    async def start_or_resume(self, job_id: str, *, resume: bool = False) -> asyncio.Task[JobOutcome]:
        running = self._running_task(job_id)
        if running is not None:
            return running

        existing = self.store.get(job_id)
        if existing is not None and existing.status == JobStatus.COMPLETE:
            return self._resolved(self._outcomes.get(job_id) or self._outcome(job_id, JobStatus.COMPLETE))

        # Reset before the first await so a cancel sent during the start request survives.
        if existing is not None and existing.status == JobStatus.CANCELLED:
            logger.info("Restarting previously cancelled split job %s", job_id)
            self.tracker.clear(job_id)
            self.cancellations.reset(job_id)

        if resume:
            known = await self.fetcher.list_jobs()
            if job_id not in known:
                raise JobNotFoundError(f"The document does not exist on the service: {job_id}")
        else:
            await self.fetcher.start_job(job_id)

        running = self._running_task(job_id)
        if running is not None:
            return running

        self.tracker.register(job_id)
        self.cancellations.register(job_id)
        self._diagnostics[job_id] = PollDiagnostics()
        self._last_status.pop(job_id, None)
        self.store.create(job_id)
        self.store.set_status(job_id, JobStatus.RUNNING)

        task = asyncio.get_running_loop().create_task(self._poll_loop(job_id), name=f"splitjob:{job_id}")
        self._tasks[job_id] = task
        return task

    def request_cancel(self, job_id: str) -> bool:
        self.cancellations.request_cancel(job_id)
        return self._running_task(job_id) is not None

    def get(self, job_id: str) -> Job | None:
        return self.store.get(job_id)

    def on_change(self, job_id: str, callback: JobObserver) -> Callable[[], None]:
        return self.store.subscribe(job_id, callback)

    def diagnostics(self, job_id: str) -> PollDiagnostics | None:
        diagnostics = self._diagnostics.get(job_id)
        return diagnostics.model_copy() if diagnostics else None

    async def wait(self, job_id: str) -> JobOutcome | None:
        task = self._tasks.get(job_id)
        if task is None:
            return None
        return await task

    async def update_page_status(
        self,
        job_id: str,
        page_number: int,
        new_status: PageStatus | str,
        linked_document_id: str | None = None,
    ) -> JobStatusPayload:
        payload = await self.fetcher.update_page_status(job_id, page_number, new_status, linked_document_id)
        if self.store.get(job_id) is not None:
            self.store.upsert_pages(job_id, payload)
            self._last_status[job_id] = payload
        return payload

    async def save_draft_metadata(self, job_id: str, payload: dict[str, Any]) -> Any:
        return await self.fetcher.save_draft_metadata(job_id, payload)

    async def delete_job(self, job_id: str) -> Any:
        # Flag only a live loop, so a failed delete leaves no stale cancel behind.
        task = self._running_task(job_id)
        if task is not None:
            self.cancellations.request_cancel(job_id)
            await task

        result = await self.fetcher.delete_job(job_id)

        self._tasks.pop(job_id, None)
        self._outcomes.pop(job_id, None)
        self._last_status.pop(job_id, None)
        self._diagnostics.pop(job_id, None)
        self.tracker.clear(job_id)
        self.cancellations.clear(job_id)
        self.store.remove(job_id)
        self.resources.release_job(job_id)
        logger.info("Deleted split job %s", job_id)
        return result

    async def shutdown(self) -> None:
        self.cancellations.cancel_all()
        tasks = [task for task in self._tasks.values() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _running_task(self, job_id: str) -> asyncio.Task[JobOutcome] | None:
        task = self._tasks.get(job_id)
        if task is not None and not task.done():
            return task
        return None

    @staticmethod
    def _resolved(outcome: JobOutcome) -> asyncio.Task[JobOutcome]:
        async def _done() -> JobOutcome:
            return outcome

        return asyncio.get_running_loop().create_task(_done())

    def _outcome(self, job_id: str, status: JobStatus) -> JobOutcome:
        return JobOutcome(job_id=job_id, status=status, final_status=self._last_status.get(job_id))

    def _finish(self, job_id: str, status: JobStatus) -> JobOutcome:
        self.store.set_status(job_id, status)
        outcome = self._outcome(job_id, status)
        if status == JobStatus.COMPLETE:
            self._outcomes[job_id] = outcome
            logger.info("Split job %s complete", job_id)
        else:
            logger.info("Split job %s cancelled", job_id)
        return outcome

    async def _poll_loop(self, job_id: str) -> JobOutcome:
        logger.info("Polling split job %s every %.1fs", job_id, self.poll_interval_seconds)
        while True:
            try:
                outcome = await self._tick(job_id)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected error while polling %s", job_id)
                self._record_failure(job_id, str(exc))
                outcome = None

            if outcome is not None:
                return outcome

            # Wakes early when cancellation is requested; the next tick resolves it.
            await self.cancellations.wait(job_id, self.poll_interval_seconds)

    async def _tick(self, job_id: str) -> JobOutcome | None:
        if self.cancellations.is_cancelled(job_id):
            return self._finish(job_id, JobStatus.CANCELLED)

        diagnostics = self._diagnostics.setdefault(job_id, PollDiagnostics())
        diagnostics.ticks += 1
        diagnostics.last_polled_at = datetime.now(UTC)

        try:
            raw = await self.fetcher.fetch_status(job_id)
            payload = JobStatusPayload.model_validate(raw)
        except JobUnknownError:
            await self._resubmit(job_id)
            return None
        except ValidationError as exc:
            logger.warning("Rejected malformed status for %s: %s", job_id, exc)
            self._record_failure(job_id, str(exc))
            return None
        except Exception as exc:  # noqa: BLE001
            logger.warning("Status poll for %s failed: %s", job_id, exc)
            self._record_failure(job_id, str(exc))
            return None

        diagnostics.last_error = None
        self._last_status[job_id] = payload
        self.store.upsert_pages(job_id, payload)

        for page_key, page in payload.pages.items():
            if page.remote_status not in FETCHABLE_PAGE_STATUSES or not page.artifact_name:
                continue
            if self.tracker.is_claimed(job_id, page.page):
                continue
            if self.cancellations.is_cancelled(job_id):
                return self._finish(job_id, JobStatus.CANCELLED)
            if not self.tracker.try_claim(job_id, page.page):
                continue

            await self._fetch_page(job_id, page_key, page)

            if self.cancellations.is_cancelled(job_id):
                return self._finish(job_id, JobStatus.CANCELLED)

        if self.cancellations.is_cancelled(job_id):
            return self._finish(job_id, JobStatus.CANCELLED)
        if payload.all_pages_done():
            return self._finish(job_id, JobStatus.COMPLETE)
        return None

    async def _fetch_page(self, job_id: str, page_key: str, page: StatusPage) -> None:
        try:
            fetched = await self.fetcher.fetch_page_resources(job_id, page, self.resources)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Fetching artifacts for %s page %s failed: %s", job_id, page.page, exc)
            if self.reclaim_failed_pages:
                self.tracker.release(job_id, page.page)
            return

        self.store.set_page_resources(
            job_id,
            page_key,
            image_ref=fetched.image_ref,
            file_ref=fetched.file_ref,
            details=fetched.details,
        )
        logger.debug("Fetched artifacts for %s page %s", job_id, page.page)

    async def _resubmit(self, job_id: str) -> None:
        diagnostics = self._diagnostics.setdefault(job_id, PollDiagnostics())
        diagnostics.recoveries += 1
        logger.warning("Split job %s is unknown to the service; resubmitting start request", job_id)
        try:
            await self.fetcher.start_job(job_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Start resubmission for %s failed: %s", job_id, exc)
            self._record_failure(job_id, str(exc))

    def _record_failure(self, job_id: str, message: str) -> None:
        diagnostics = self._diagnostics.setdefault(job_id, PollDiagnostics())
        diagnostics.failed_ticks += 1
        diagnostics.last_error = message
