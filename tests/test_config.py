import pytest

from venture_flow.config import PipelineSettings, _parse_stage_attempts, get_llm_settings, get_pipeline_settings


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    """Ensure cached settings do not leak between tests."""

    get_llm_settings.cache_clear()
    get_pipeline_settings.cache_clear()


def test_llm_settings_read_openai_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "test-openai")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://gateway.example/v1")

    settings = get_llm_settings()

    assert settings.openai_api_key == "test-openai"
    assert settings.openai_base_url == "https://gateway.example/v1"


def test_llm_settings_default_to_none(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_BASE_URL", raising=False)

    settings = get_llm_settings()

    assert settings.openai_api_key is None
    assert settings.openai_base_url is None


def test_parse_stage_attempts() -> None:
    assert _parse_stage_attempts(None) == {}
    assert _parse_stage_attempts("") == {}
    assert _parse_stage_attempts(" extract_tasks = 4 ,=2,chart") == {"extract_tasks": 4}


def test_pipeline_settings_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("MODEL", "MAX_ATTEMPTS", "STAGE_RETRIES", "STORE_PATH", "BUILD_MODE_TIMEOUT", "CONTRACT_VERSION"):
        monkeypatch.delenv(f"VENTUREFORGE_{name}", raising=False)

    settings = get_pipeline_settings()

    assert settings.model == "gpt-4o-mini"
    assert settings.max_attempts == 3
    assert settings.store_path is None
    assert settings.build_mode_timeout is None
    assert settings.contract_version == "v3"
    assert settings.mode_aware_strategy is False


def test_pipeline_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VENTUREFORGE_MODEL", "gpt-4o")
    monkeypatch.setenv("VENTUREFORGE_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("VENTUREFORGE_BUILD_MODE_TIMEOUT", "30")
    monkeypatch.setenv("VENTUREFORGE_CONTRACT_VERSION", "v2")
    monkeypatch.setenv("VENTUREFORGE_MODE_AWARE_STRATEGY", "true")
    monkeypatch.setenv("VENTUREFORGE_LOG_LEVEL", "debug")

    settings = get_pipeline_settings()

    assert settings.model == "gpt-4o"
    assert settings.max_attempts == 5
    assert settings.build_mode_timeout == 30.0
    assert settings.contract_version == "v2"
    assert settings.mode_aware_strategy is True
    assert settings.log_level == "DEBUG"


def test_stage_retry_overrides_skip_malformed_pairs(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VENTUREFORGE_STAGE_RETRIES", "extract_tasks=5, rank_opportunities=1,bogus,chart=x")

    settings = get_pipeline_settings()

    assert settings.stage_attempts == {"extract_tasks": 5, "rank_opportunities": 1}
    assert settings.attempts_for("extract_tasks") == 5
    assert settings.attempts_for("generate_chart_data") == settings.max_attempts


def test_attempts_never_drop_below_one() -> None:
    settings = PipelineSettings(stage_attempts={"extract_tasks": 0})

    assert settings.attempts_for("extract_tasks") == 1


def test_session_and_provider_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VENTUREFORGE_SESSION_TTL", "60")
    monkeypatch.setenv("VENTUREFORGE_MAX_SESSIONS", "0")
    monkeypatch.setenv("VENTUREFORGE_PROVIDER_OPTIONS", "off")

    settings = get_pipeline_settings()

    assert settings.session_ttl == 60.0
    assert settings.max_sessions is None
    assert settings.provider_options is False
