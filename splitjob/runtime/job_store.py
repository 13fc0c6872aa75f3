from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Callable

from splitjob.core.models import (
    Job,
    JobStatus,
    JobStatusPayload,
    PageDetails,
    PageState,
    ResourceHandle,
)
from splitjob.runtime.resources import ResourceStore


logger = logging.getLogger(__name__)

JobObserver = Callable[[Job], None]


class JobStore:
    """In-memory job state. Mutated by the orchestrator only; everyone else reads snapshots."""

    def __init__(self, resources: ResourceStore | None = None):
        self.resources = resources
        self._jobs: dict[str, Job] = {}
        self._observers: dict[str, list[JobObserver]] = {}

    def get(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    def create(self, job_id: str) -> Job:
        previous = self._jobs.get(job_id)
        if previous is not None:
            self._release(previous.resources())

        job = Job(job_id=job_id)
        self._jobs[job_id] = job
        self._notify(job_id)
        return job.model_copy(deep=True)

    def set_status(self, job_id: str, status: JobStatus) -> None:
        job = self._jobs[job_id]
        job.status = status
        if status == JobStatus.RUNNING:
            job.started_at = datetime.now(UTC)
            job.ended_at = None
        elif status in {JobStatus.COMPLETE, JobStatus.CANCELLED}:
            job.ended_at = datetime.now(UTC)
        self._notify(job_id)

    def upsert_pages(self, job_id: str, payload: JobStatusPayload) -> None:
        job = self._jobs[job_id]
        job.total_pages = payload.page_count

        # Pages missing from a later payload are kept.
        for page_key, page in payload.pages.items():
            state = job.pages.get(page_key)
            if state is None:
                state = PageState(page_key=page_key, page_number=page.page)
                job.pages[page_key] = state
            state.page_number = page.page
            state.remote_status = page.remote_status
            state.raw_status = page.status
            if page.document_uri:
                state.document_uri = page.document_uri
            if page.details is not None and state.details is None:
                state.details = page.details
        self._notify(job_id)

    def set_page_detail(self, job_id: str, page_key: str, detail: PageDetails) -> None:
        state = self._page(job_id, page_key)
        state.details = detail
        self._notify(job_id)

    def set_page_resources(
        self,
        job_id: str,
        page_key: str,
        *,
        image_ref: ResourceHandle | None,
        file_ref: ResourceHandle | None,
        details: PageDetails | None,
    ) -> None:
        state = self._page(job_id, page_key)
        replaced = [
            old
            for old, new in ((state.image_ref, image_ref), (state.file_ref, file_ref))
            if old is not None and new is not None and old.path != new.path
        ]
        if image_ref is not None:
            state.image_ref = image_ref
        if file_ref is not None:
            state.file_ref = file_ref
        if details is not None:
            state.details = details
        self._release(replaced)
        self._notify(job_id)

    def remove(self, job_id: str) -> Job | None:
        job = self._jobs.pop(job_id, None)
        self._observers.pop(job_id, None)
        if job is not None:
            self._release(job.resources())
        return job

    def subscribe(self, job_id: str, callback: JobObserver) -> Callable[[], None]:
        observers = self._observers.setdefault(job_id, [])
        observers.append(callback)

        def _unsubscribe() -> None:
            current = self._observers.get(job_id, [])
            if callback in current:
                current.remove(callback)

        return _unsubscribe

    def _page(self, job_id: str, page_key: str) -> PageState:
        job = self._jobs[job_id]
        state = job.pages.get(page_key)
        if state is None:
            raise KeyError(f"Unknown page {page_key} for job {job_id}")
        return state

    def _release(self, handles: list[ResourceHandle]) -> None:
        if self.resources is not None and handles:
            self.resources.release_all(handles)

    def _notify(self, job_id: str) -> None:
        observers = list(self._observers.get(job_id, []))
        if not observers:
            return
        snapshot = self._jobs[job_id].model_copy(deep=True)
        for callback in observers:
            try:
                callback(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Job observer failed for %s", job_id)
