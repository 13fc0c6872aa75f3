from __future__ import annotations

import logging
import re
import shutil
import uuid
from pathlib import Path

from splitjob.core.models import ResourceHandle


logger = logging.getLogger(__name__)


def _slug(value: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9._-]+", "-", value.strip())
    cleaned = cleaned.strip("-")
    cleaned = re.sub(r"-+", "-", cleaned)
    return cleaned or "artifact"


class ResourceStore:
    """Local files backing fetched page artifacts, one directory per job."""

    def __init__(self, root: Path):
        self.root = root

    def job_dir(self, job_id: str) -> Path:
        return self.root / _slug(job_id)

    def write(
        self,
        job_id: str,
        page_number: int,
        name: str,
        content: bytes | str,
        media_type: str | None = None,
    ) -> ResourceHandle:
        data = content.encode("utf-8") if isinstance(content, str) else content
        page_dir = self.job_dir(job_id) / f"page_{page_number}"
        page_dir.mkdir(parents=True, exist_ok=True)

        # Unique per fetch so a re-fetch never overwrites a handle still held elsewhere.
        path = page_dir / f"{uuid.uuid4().hex[:12]}-{_slug(name)}"
        path.write_bytes(data)
        return ResourceHandle(name=name, path=path, size_bytes=len(data), media_type=media_type)

    def release(self, handle: ResourceHandle | None) -> bool:
        if handle is None:
            return False
        try:
            handle.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Could not release resource %s: %s", handle.path, exc)
            return False
        return True

    def release_all(self, handles: list[ResourceHandle]) -> int:
        return sum(1 for handle in handles if self.release(handle))

    def release_job(self, job_id: str) -> None:
        shutil.rmtree(self.job_dir(job_id), ignore_errors=True)
