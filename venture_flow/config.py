"""Configuration helpers for the VentureForge backend."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Mapping

from dotenv import load_dotenv

ENV_PREFIX = "VENTUREFORGE_"

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_CONTRACT_VERSION = "v3"

load_dotenv(override=False)


@dataclass(frozen=True)
class LLMSettings:
    """Credentials for the OpenAI-compatible endpoint the generation client talks to."""

    openai_api_key: str | None = None
    openai_base_url: str | None = None


@dataclass(frozen=True)
class PipelineSettings:
    """Tunables for stage generation, retries, and plan persistence."""

    model: str = DEFAULT_MODEL
    temperature: float = 0.7
    max_tokens: int = 4000
    request_timeout: float = 120.0
    # Total attempts per stage call; only provider failures are retried.
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 8.0
    stage_attempts: Dict[str, int] = field(default_factory=dict)
    store_path: str | None = None
    # None waits for a build mode indefinitely.
    build_mode_timeout: float | None = None
    contract_version: str = DEFAULT_CONTRACT_VERSION
    mode_aware_strategy: bool = False
    # Forward template-level provider options such as safety settings; endpoints
    # that reject unknown request fields need this off.
    provider_options: bool = True
    # Idle sessions are torn down after this many seconds; None keeps them.
    session_ttl: float | None = 3600.0
    max_sessions: int | None = 500
    log_level: str = "INFO"

    def attempts_for(self, stage: str) -> int:
        """Return the attempt budget for *stage*, at least one."""

        return max(1, self.stage_attempts.get(stage, self.max_attempts))


def _parse_stage_attempts(raw: str | None) -> Dict[str, int]:
    """Parse ``stage=n,stage=n`` overrides, ignoring malformed pairs."""

    overrides: Dict[str, int] = {}
    if not raw:
        return overrides
    for pair in raw.split(","):
        stage, sep, count = pair.partition("=")
        if not sep or not stage.strip():
            continue
        try:
            overrides[stage.strip()] = int(count)
        except ValueError:
            continue
    return overrides


def _env_float(environ: Mapping[str, str], name: str, default: float | None) -> float | None:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(environ: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == "":
        return default
    value = int(raw)
    # Zero or less disables the limit.
    return value if value > 0 else None


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_llm_settings() -> LLMSettings:
    """Read environment variables and return cached LLM settings."""

    environ = os.environ
    return LLMSettings(
        openai_api_key=environ.get("OPENAI_API_KEY"),
        openai_base_url=environ.get("OPENAI_BASE_URL"),
    )


@lru_cache(maxsize=1)
def get_pipeline_settings() -> PipelineSettings:
    """Read ``VENTUREFORGE_*`` variables and return cached pipeline settings."""

    environ = os.environ
    defaults = PipelineSettings()
    return PipelineSettings(
        model=environ.get(ENV_PREFIX + "MODEL", defaults.model),
        temperature=_env_float(environ, "TEMPERATURE", defaults.temperature),
        max_tokens=int(environ.get(ENV_PREFIX + "MAX_TOKENS", defaults.max_tokens)),
        request_timeout=_env_float(environ, "REQUEST_TIMEOUT", defaults.request_timeout),
        max_attempts=int(environ.get(ENV_PREFIX + "MAX_ATTEMPTS", defaults.max_attempts)),
        backoff_base=_env_float(environ, "BACKOFF_BASE", defaults.backoff_base),
        backoff_max=_env_float(environ, "BACKOFF_MAX", defaults.backoff_max),
        stage_attempts=_parse_stage_attempts(environ.get(ENV_PREFIX + "STAGE_RETRIES")),
        store_path=environ.get(ENV_PREFIX + "STORE_PATH") or None,
        build_mode_timeout=_env_float(environ, "BUILD_MODE_TIMEOUT", None),
        contract_version=environ.get(ENV_PREFIX + "CONTRACT_VERSION", defaults.contract_version),
        mode_aware_strategy=_env_bool(environ, "MODE_AWARE_STRATEGY", defaults.mode_aware_strategy),
        provider_options=_env_bool(environ, "PROVIDER_OPTIONS", defaults.provider_options),
        session_ttl=_env_float(environ, "SESSION_TTL", defaults.session_ttl),
        max_sessions=_env_int(environ, "MAX_SESSIONS", defaults.max_sessions),
        log_level=environ.get(ENV_PREFIX + "LOG_LEVEL", defaults.log_level).upper(),
    )


def configure_logging(level: str) -> None:
    """Install a basic root handler once and apply *level*."""

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger().setLevel(level)
