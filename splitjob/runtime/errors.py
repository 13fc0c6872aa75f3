from __future__ import annotations

from pydantic import ValidationError


JOB_UNKNOWN_DETAIL = "File not found - have you started the process? Was it deleted already?"
JOB_EXISTS_DETAIL_PREFIX = "Doc already exists"


class ServiceClientError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, detail: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class JobUnknownError(ServiceClientError):
    """The service holds no state for the job, e.g. after a restart."""


class JobAlreadyExistsError(ServiceClientError):
    pass


class JobNotFoundError(LookupError):
    pass


class PageDetailsValidationError(ValueError):
    def __init__(self, job_id: str, page_number: int, error: ValidationError):
        locations = ", ".join(".".join(str(part) for part in item["loc"]) for item in error.errors())
        super().__init__(f"Invalid details for {job_id} page {page_number}: {locations or error}")
        self.job_id = job_id
        self.page_number = page_number
        self.error = error
