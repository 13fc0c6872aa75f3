from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from splitjob.core.config import Settings
from splitjob.core.models import (
    JobStatusPayload,
    PageDetails,
    PageStatus,
    ResourceHandle,
    StatusPage,
)
from splitjob.runtime.credentials import CredentialProvider, resolve_credential
from splitjob.runtime.errors import (
    JOB_EXISTS_DETAIL_PREFIX,
    JOB_UNKNOWN_DETAIL,
    JobAlreadyExistsError,
    JobUnknownError,
    PageDetailsValidationError,
    ServiceClientError,
)
from splitjob.runtime.resources import ResourceStore


logger = logging.getLogger(__name__)

Representation = Literal["binary", "text"]


@dataclass
class PageResources:
    image_ref: ResourceHandle
    file_ref: ResourceHandle
    details: PageDetails


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and "detail" in body:
        return str(body["detail"])
    return response.text


def derived_document_name(page: StatusPage) -> str:
    return page.pdf or f"page_{page.page}.pdf"


class ArtifactFetcher:
    """Async client for the remote split/OCR service. Credentials are requested per call."""

    def __init__(
        self,
        base_url: str,
        credentials: CredentialProvider,
        *,
        prefix: str = "/v1/pdf-split-and-ocr",
        timeout_seconds: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.credentials = credentials
        self.prefix = "/" + prefix.strip("/")
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        credentials: CredentialProvider,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ArtifactFetcher":
        return cls(
            settings.api_base_url,
            credentials,
            prefix=settings.api_prefix,
            timeout_seconds=settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "ArtifactFetcher":
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def _path(self, job_id: str | None = None, *parts: str | int) -> str:
        segments = [self.prefix]
        if job_id is not None:
            segments.append(quote(job_id, safe=""))
        segments.extend(quote(str(part), safe="") for part in parts)
        return "/".join(segments)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        files: dict[str, Any] | None = None,
    ) -> httpx.Response:
        credential = await resolve_credential(self.credentials)
        try:
            response = await self.client.request(
                method,
                path,
                params=params,
                json=json_body,
                files=files,
                headers=credential.headers(),
            )
        except httpx.HTTPError as exc:
            raise ServiceClientError(f"Connection error: {exc}") from exc

        if response.is_error:
            detail = _error_detail(response)
            message = f"HTTP {response.status_code}: {detail}"
            if detail == JOB_UNKNOWN_DETAIL:
                raise JobUnknownError(message, status_code=response.status_code, detail=detail)
            if detail.startswith(JOB_EXISTS_DETAIL_PREFIX):
                raise JobAlreadyExistsError(message, status_code=response.status_code, detail=detail)
            raise ServiceClientError(message, status_code=response.status_code, detail=detail)
        return response

    async def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self._request(method, path, **kwargs)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ServiceClientError(
                f"Malformed JSON from {method} {path}", status_code=response.status_code
            ) from exc

    async def list_jobs(self) -> list[str]:
        payload = await self._request_json("GET", self._path())
        if not isinstance(payload, list):
            raise ServiceClientError(f"Expected a list of job ids, got {type(payload).__name__}")
        return [str(item) for item in payload]

    async def upload_document(self, path: Path) -> Any:
        content = path.read_bytes()
        files = {"file": (path.name, content, "application/pdf")}
        return await self._request_json("POST", self._path(), files=files)

    async def start_job(self, job_id: str) -> Any:
        return await self._request_json("POST", self._path(job_id, "start"))

    async def fetch_status(self, job_id: str) -> Any:
        try:
            return await self._request_json("GET", self._path(job_id, "status"))
        except JobUnknownError:
            raise
        except ServiceClientError as exc:
            if exc.status_code == 404:
                raise JobUnknownError(str(exc), status_code=exc.status_code, detail=exc.detail) from exc
            raise

    async def fetch_validated_status(self, job_id: str) -> JobStatusPayload:
        return JobStatusPayload.model_validate(await self.fetch_status(job_id))

    async def fetch_saved_metadata(self, job_id: str) -> dict[str, Any]:
        payload = await self.fetch_status(job_id)
        return payload if isinstance(payload, dict) else {}

    async def fetch_page_artifact(
        self,
        job_id: str,
        page_number: int,
        artifact_name: str,
        representation: Representation = "binary",
    ) -> bytes | str:
        response = await self._request("GET", self._path(job_id, "pages", page_number, artifact_name))
        if representation == "text":
            return response.text
        return response.content

    async def fetch_page_details(self, job_id: str, page_number: int) -> PageDetails:
        raw = await self._request_json("GET", self._path(job_id, "pages", page_number))
        try:
            return PageDetails.model_validate(raw)
        except ValidationError as exc:
            raise PageDetailsValidationError(job_id, page_number, exc) from exc

    async def fetch_page_resources(
        self,
        job_id: str,
        page: StatusPage,
        resources: ResourceStore,
    ) -> PageResources:
        """Preview image, then derived document, then details; one request at a time."""
        image_name = page.artifact_name
        if not image_name:
            raise ValueError(f"Page {page.page} of {job_id} has no artifact reference")

        written: list[ResourceHandle] = []
        try:
            image_bytes = await self.fetch_page_artifact(job_id, page.page, image_name, "binary")
            image_ref = resources.write(
                job_id, page.page, image_name, image_bytes, mimetypes.guess_type(image_name)[0]
            )
            written.append(image_ref)

            document_name = derived_document_name(page)
            document_bytes = await self.fetch_page_artifact(job_id, page.page, document_name, "binary")
            file_ref = resources.write(
                job_id, page.page, f"{job_id}-{document_name}", document_bytes, "application/pdf"
            )
            written.append(file_ref)

            details = await self.fetch_page_details(job_id, page.page)
        except Exception:
            resources.release_all(written)
            raise

        return PageResources(image_ref=image_ref, file_ref=file_ref, details=details)

    async def update_page_status(
        self,
        job_id: str,
        page_number: int,
        new_status: PageStatus | str,
        linked_document_id: str | None = None,
    ) -> JobStatusPayload:
        status_value = new_status.value if isinstance(new_status, PageStatus) else str(new_status)
        params = {"document_uri": f"/view/{linked_document_id}"} if linked_document_id else None
        await self._request("PATCH", self._path(job_id, "pages", page_number, status_value), params=params)
        return await self.fetch_validated_status(job_id)

    async def save_draft_metadata(self, job_id: str, payload: dict[str, Any]) -> Any:
        return await self._request_json("PATCH", self._path(job_id, "pages"), json_body=payload)

    async def delete_job(self, job_id: str) -> Any:
        return await self._request_json("DELETE", self._path(job_id))
