from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StringConstraints


PAGE_KEY_PATTERN = r"^page_\d+$"

PageKey = Annotated[str, StringConstraints(pattern=PAGE_KEY_PATTERN)]


class JobStatus(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class PageStatus(str, Enum):
    PENDING = "PENDING"
    READY = "READY"
    IGNORE = "IGNORE"
    PROCESSED = "PROCESSED"
    ERROR = "ERROR"

    @classmethod
    def from_remote(cls, value: str) -> "PageStatus":
        normalized = (value or "").strip().upper()
        if normalized in _PENDING_WIRE_STATUSES:
            return cls.PENDING
        try:
            return cls(normalized)
        except ValueError:
            return cls.ERROR


# Intermediate states the service reports while a page is still being split or OCR'd.
_PENDING_WIRE_STATUSES = {"PENDING", "NEW", "SPLIT", "IN OCR"}

FETCHABLE_PAGE_STATUSES = {PageStatus.READY, PageStatus.IGNORE}
DONE_PAGE_STATUSES = {PageStatus.READY, PageStatus.PROCESSED}


class DetailValue(BaseModel):
    pos: float
    text: str


class DetailCandidate(BaseModel):
    values: list[DetailValue]
    img: str
    status: str
    search_keys: list[str]
    coordinates: list[float]


DETAIL_FIELDS = {
    "TITLE": "title",
    "DRAWING NUMBER": "drawing_number",
    "REVISION": "revision",
    "DATE": "date",
    "ARCHITECT": "architect",
    "CHECKED BY": "checked_by",
    "PROJECT": "project",
}


class PageDetails(BaseModel):
    """Fields extracted from one page, each with ranked OCR candidates."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    title: list[DetailCandidate] | None = Field(default=None, alias="TITLE")
    drawing_number: list[DetailCandidate] | None = Field(default=None, alias="DRAWING NUMBER")
    revision: list[DetailCandidate] | None = Field(default=None, alias="REVISION")
    date: list[DetailCandidate] | None = Field(default=None, alias="DATE")
    architect: list[DetailCandidate] | None = Field(default=None, alias="ARCHITECT")
    checked_by: list[DetailCandidate] | None = Field(default=None, alias="CHECKED BY")
    project: list[DetailCandidate] | None = Field(default=None, alias="PROJECT")

    def candidates(self, field: str) -> list[DetailCandidate]:
        name = DETAIL_FIELDS.get(field.strip().upper(), field)
        value = getattr(self, name, None)
        if not isinstance(value, list):
            return []
        return list(value)

    def suggestions(self, field: str) -> list[str]:
        candidates = self.candidates(field)
        if not candidates:
            return []
        return [item.text for item in candidates[0].values]


class StatusPage(BaseModel):
    page: StrictInt
    status: str
    img: str | None = None
    pdf: str | None = None
    document_uri: str | None = None
    details: PageDetails | None = None

    @property
    def remote_status(self) -> PageStatus:
        return PageStatus.from_remote(self.status)

    @property
    def artifact_name(self) -> str | None:
        return self.img or self.pdf or None


class JobStatusPayload(BaseModel):
    page_count: StrictInt
    pages: dict[PageKey, StatusPage]
    field_data: dict[str, Any] | None = None

    def all_pages_done(self) -> bool:
        if not self.pages:
            return False
        return all(page.remote_status in DONE_PAGE_STATUSES for page in self.pages.values())


class ResourceHandle(BaseModel):
    name: str
    path: Path
    size_bytes: int
    media_type: str | None = None


class PageState(BaseModel):
    page_key: str
    page_number: int
    remote_status: PageStatus = PageStatus.PENDING
    raw_status: str = PageStatus.PENDING.value
    image_ref: ResourceHandle | None = None
    file_ref: ResourceHandle | None = None
    details: PageDetails | None = None
    document_uri: str | None = None

    def resources(self) -> list[ResourceHandle]:
        return [ref for ref in (self.image_ref, self.file_ref) if ref is not None]


class Job(BaseModel):
    job_id: str
    status: JobStatus = JobStatus.NOT_STARTED
    total_pages: int = 0
    pages: dict[str, PageState] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    ended_at: datetime | None = None

    def page(self, page_number: int) -> PageState | None:
        for state in self.pages.values():
            if state.page_number == page_number:
                return state
        return None

    def resources(self) -> list[ResourceHandle]:
        handles: list[ResourceHandle] = []
        for state in self.pages.values():
            handles.extend(state.resources())
        return handles

    def done_pages(self) -> int:
        return sum(1 for state in self.pages.values() if state.remote_status in DONE_PAGE_STATUSES)


class PollDiagnostics(BaseModel):
    ticks: int = 0
    failed_ticks: int = 0
    recoveries: int = 0
    last_error: str | None = None
    last_polled_at: datetime | None = None


class JobOutcome(BaseModel):
    job_id: str
    status: JobStatus
    final_status: JobStatusPayload | None = None


class PageStatusSummary(BaseModel):
    pending: int = 0
    processing: int = 0
    ready: int = 0
    uploaded: int = 0
    ignore: int = 0
    error: int = 0


def summarize_pages(job: Job) -> PageStatusSummary:
    summary = PageStatusSummary()
    for state in job.pages.values():
        raw = state.raw_status.strip().upper()
        if raw == "NEW":
            summary.pending += 1
        elif state.remote_status == PageStatus.PROCESSED:
            summary.uploaded += 1
        elif state.remote_status == PageStatus.IGNORE:
            summary.ignore += 1
        elif state.remote_status == PageStatus.ERROR:
            summary.error += 1
        elif raw in {"SPLIT", "IN OCR"} or state.details is None:
            summary.processing += 1
        elif state.remote_status == PageStatus.READY:
            summary.ready += 1
    return summary
