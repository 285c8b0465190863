"""Configuration helpers for the journey engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, Mapping

from dotenv import load_dotenv

OTHER_PROVIDER_PREFIX = "JOURNEY_LLM_"
OTHER_PROVIDER_SUFFIX = "_API_KEY"
BASE_URL_SUFFIX = "_BASE_URL"

# OpenAI-compatible endpoints for the providers handled explicitly.
KNOWN_BASE_URLS: Dict[str, str | None] = {
    "openai": None,
    "gemini": "https://generativelanguage.googleapis.com/v1beta/openai/",
    "anthropic": "https://api.anthropic.com/v1/",
}

DEFAULT_MODELS: Dict[str, str] = {
    "openai": "gpt-4o-mini",
    "gemini": "gemini-2.0-flash",
    "anthropic": "claude-3-5-haiku-latest",
}

load_dotenv(override=False)


@dataclass(frozen=True)
class LLMSettings:
    """Settings container for LLM provider API keys.

    OpenAI is considered the primary provider; if its key is missing the
    configuration falls back to other vendors in priority order.
    """

    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    anthropic_api_key: str | None = None
    # Additional providers discovered from environment variables.
    additional_api_keys: Dict[str, str] = field(default_factory=dict)
    additional_base_urls: Dict[str, str] = field(default_factory=dict)

    @property
    def primary_provider(self) -> str | None:
        """Return the preferred provider based on available credentials."""

        if self.openai_api_key:
            return "openai"
        if self.gemini_api_key:
            return "gemini"
        if self.anthropic_api_key:
            return "anthropic"
        for provider, api_key in self.additional_api_keys.items():
            if api_key:
                return provider
        return None

    def get_api_key(self, provider: str | None = None) -> str | None:
        """Return the API key for the requested provider.

        When *provider* is omitted the primary provider's key is returned.
        """

        resolved_provider = provider or self.primary_provider
        if resolved_provider == "openai":
            return self.openai_api_key
        if resolved_provider == "gemini":
            return self.gemini_api_key
        if resolved_provider == "anthropic":
            return self.anthropic_api_key
        if resolved_provider is None:
            return None
        return self.additional_api_keys.get(resolved_provider)

    def get_base_url(self, provider: str | None = None) -> str | None:
        """Return the OpenAI-compatible endpoint for *provider*.

        ``None`` means the SDK default (api.openai.com).
        """

        resolved_provider = provider or self.primary_provider
        if resolved_provider in KNOWN_BASE_URLS:
            return KNOWN_BASE_URLS[resolved_provider]
        if resolved_provider is None:
            return None
        return self.additional_base_urls.get(resolved_provider)

    @property
    def has_any_keys(self) -> bool:
        """True when at least one provider API key is configured."""

        if self.primary_provider:
            return True
        return any(self.additional_api_keys.values())


@dataclass(frozen=True)
class EngineSettings:
    """Tunables for stage catalogs, persistence and the HTTP surface."""

    default_stage_count: int = 5
    min_stage_count: int = 3
    max_stage_count: int = 10
    data_dir: Path | None = None
    llm_model: str | None = None
    llm_timeout: float = 30.0
    log_level: str = "INFO"
    allowed_origins: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.min_stage_count < 1 or self.min_stage_count > self.max_stage_count:
            raise ValueError(
                f"Invalid stage bounds: {self.min_stage_count}..{self.max_stage_count}"
            )
        if not self.min_stage_count <= self.default_stage_count <= self.max_stage_count:
            raise ValueError(
                f"Default stage count {self.default_stage_count} is outside "
                f"{self.min_stage_count}..{self.max_stage_count}"
            )


def _extract_additional_api_keys(environ: Mapping[str, str]) -> Dict[str, str]:
    """Collect provider keys having the ``JOURNEY_LLM_*_API_KEY`` pattern."""

    discovered: Dict[str, str] = {}
    for env_key, value in environ.items():
        if not env_key.startswith(OTHER_PROVIDER_PREFIX) or not env_key.endswith(OTHER_PROVIDER_SUFFIX):
            continue

        provider = env_key[len(OTHER_PROVIDER_PREFIX) : -len(OTHER_PROVIDER_SUFFIX)].lower()
        if provider in KNOWN_BASE_URLS:
            # Skip duplicates for providers already handled explicitly.
            continue
        if value:
            discovered[provider] = value
    return discovered


def _extract_additional_base_urls(environ: Mapping[str, str]) -> Dict[str, str]:
    """Collect ``JOURNEY_LLM_*_BASE_URL`` overrides for discovered providers."""

    discovered: Dict[str, str] = {}
    for env_key, value in environ.items():
        if not env_key.startswith(OTHER_PROVIDER_PREFIX) or not env_key.endswith(BASE_URL_SUFFIX):
            continue
        provider = env_key[len(OTHER_PROVIDER_PREFIX) : -len(BASE_URL_SUFFIX)].lower()
        if provider and value:
            discovered[provider] = value
    return discovered


def _int_env(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_llm_settings() -> LLMSettings:
    """Read environment variables and return cached LLM settings."""

    environ = os.environ
    return LLMSettings(
        openai_api_key=environ.get("OPENAI_API_KEY"),
        gemini_api_key=environ.get("GEMINI_API_KEY"),
        anthropic_api_key=environ.get("ANTHROPIC_API_KEY"),
        additional_api_keys=_extract_additional_api_keys(environ),
        additional_base_urls=_extract_additional_base_urls(environ),
    )


@lru_cache(maxsize=1)
def get_engine_settings() -> EngineSettings:
    """Read environment variables and return cached engine settings."""

    environ = os.environ
    data_dir = environ.get("JOURNEY_DATA_DIR")
    origins = environ.get("JOURNEY_ALLOWED_ORIGINS", "")
    timeout = environ.get("JOURNEY_LLM_TIMEOUT")
    return EngineSettings(
        default_stage_count=_int_env(environ, "JOURNEY_DEFAULT_STAGE_COUNT", 5),
        min_stage_count=_int_env(environ, "JOURNEY_MIN_STAGES", 3),
        max_stage_count=_int_env(environ, "JOURNEY_MAX_STAGES", 10),
        data_dir=Path(data_dir).expanduser() if data_dir else None,
        llm_model=environ.get("JOURNEY_LLM_MODEL") or None,
        llm_timeout=float(timeout) if timeout else 30.0,
        log_level=environ.get("JOURNEY_LOG_LEVEL", "INFO").upper(),
        allowed_origins=tuple(origin.strip() for origin in origins.split(",") if origin.strip()),
    )


def configure_logging(level: str | None = None) -> None:
    """Install a basic root handler unless the host application already did."""

    resolved = level or get_engine_settings().log_level
    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
