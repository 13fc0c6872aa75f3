from __future__ import annotations

import inspect
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Protocol, Union

from dotenv import dotenv_values

from splitjob.core.config import REPO_ROOT, Settings


@dataclass(frozen=True)
class BearerCredential:
    id_token: str
    access_token: str | None = None

    def headers(self) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.id_token}"}
        if self.access_token:
            headers["X-Access-Token"] = self.access_token
        return headers


class CredentialProvider(Protocol):
    def __call__(self) -> Union[BearerCredential, Awaitable[BearerCredential]]: ...


async def resolve_credential(provider: CredentialProvider) -> BearerCredential:
    credential = provider()
    if inspect.isawaitable(credential):
        credential = await credential
    if not isinstance(credential, BearerCredential):
        raise RuntimeError(f"Credential provider returned {type(credential).__name__}, expected BearerCredential")
    return credential


def lookup_env(name: str | None, env_path: Path | None = None) -> str | None:
    if not name:
        return None

    env_value = os.getenv(name)
    if env_value:
        return env_value

    try:
        env_map = dotenv_values(env_path or REPO_ROOT / ".env")
    except Exception:  # noqa: BLE001
        return None

    fallback = env_map.get(name)
    if isinstance(fallback, str) and fallback.strip():
        return fallback
    return None


class EnvCredentialProvider:
    """Reads tokens from the process environment, falling back to `.env`."""

    def __init__(self, id_token_env: str, access_token_env: str | None = None):
        self.id_token_env = id_token_env
        self.access_token_env = access_token_env

    @classmethod
    def from_settings(cls, settings: Settings) -> "EnvCredentialProvider":
        return cls(settings.id_token_env, settings.access_token_env)

    def __call__(self) -> BearerCredential:
        id_token = lookup_env(self.id_token_env)
        if not id_token:
            raise RuntimeError(f"Missing bearer token. Set environment variable: {self.id_token_env}")
        return BearerCredential(id_token=id_token, access_token=lookup_env(self.access_token_env))
