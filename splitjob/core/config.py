from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


REPO_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    api_base_url: str = Field(default="http://127.0.0.1:8000", alias="SPLITJOB_API_BASE_URL")
    api_prefix: str = Field(default="/v1/pdf-split-and-ocr", alias="SPLITJOB_API_PREFIX")
    request_timeout_seconds: float = Field(default=60.0, gt=0.0, alias="SPLITJOB_REQUEST_TIMEOUT_SECONDS")

    poll_interval_seconds: float = Field(default=2.0, gt=0.0, alias="SPLITJOB_POLL_INTERVAL_SECONDS")
    reclaim_failed_pages: bool = Field(default=False, alias="SPLITJOB_RECLAIM_FAILED_PAGES")

    state_dir: str = Field(default=".splitjob_state", alias="SPLITJOB_STATE_DIR")

    id_token_env: str = Field(default="SPLITJOB_ID_TOKEN", alias="SPLITJOB_ID_TOKEN_ENV")
    access_token_env: str = Field(default="SPLITJOB_ACCESS_TOKEN", alias="SPLITJOB_ACCESS_TOKEN_ENV")

    log_level: str = Field(default="INFO", alias="SPLITJOB_LOG_LEVEL")

    def resolve_path(self, path_value: str) -> Path:
        candidate = Path(path_value).expanduser()
        if candidate.is_absolute():
            return candidate
        return REPO_ROOT / candidate

    @property
    def state_path(self) -> Path:
        return self.resolve_path(self.state_dir)

    @property
    def artifacts_path(self) -> Path:
        return self.state_path / "artifacts"

    def ensure_runtime_dirs(self) -> None:
        self.state_path.mkdir(parents=True, exist_ok=True)
        self.artifacts_path.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_runtime_dirs()
    return settings
