from splitjob.core.config import REPO_ROOT, Settings


def test_empty_env_values_are_ignored(monkeypatch) -> None:
    monkeypatch.setenv("SPLITJOB_POLL_INTERVAL_SECONDS", "")
    settings = Settings(_env_file=None)
    assert settings.poll_interval_seconds == 2.0


def test_env_overrides_use_prefixed_names(monkeypatch) -> None:
    monkeypatch.setenv("SPLITJOB_API_BASE_URL", "https://ocr.example.test/")
    monkeypatch.setenv("SPLITJOB_RECLAIM_FAILED_PAGES", "true")
    settings = Settings(_env_file=None)
    assert settings.api_base_url == "https://ocr.example.test/"
    assert settings.api_prefix == "/v1/pdf-split-and-ocr"
    assert settings.reclaim_failed_pages is True


def test_repo_root_and_default_state_paths() -> None:
    settings = Settings(_env_file=None)
    assert (REPO_ROOT / "pyproject.toml").exists()
    assert settings.state_path == REPO_ROOT / ".splitjob_state"
    assert settings.artifacts_path == REPO_ROOT / ".splitjob_state" / "artifacts"
    assert settings.id_token_env == "SPLITJOB_ID_TOKEN"


def test_absolute_state_dir_is_kept(tmp_path) -> None:
    settings = Settings(_env_file=None, SPLITJOB_STATE_DIR=str(tmp_path / "state"))
    settings.ensure_runtime_dirs()
    assert settings.artifacts_path.is_dir()
