"""Application configuration."""

import json
from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

from paper_writer.constants import (
    DEFAULT_SETTINGS_FILE,
    DEFAULT_TIMEOUT,
    LLM_DEFAULT_MAX_TOKENS,
    LLM_DEFAULT_TEMPERATURE,
    OPENROUTER_BASE_URL,
    OPENROUTER_SITE_NAME,
    PUBMED_MAX_RPS,
    SETTINGS_KEY,
)
from paper_writer.models.model_llm import LLMConfig, Provider
from paper_writer.utils.storage import KeyValueStore


class ConfigurationError(Exception):
    """Settings are missing or invalid.  Raised before any network call."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # PubMed
    ncbi_api_key: str = ""
    pubmed_max_rps: int = PUBMED_MAX_RPS

    # Persisted user settings (provider, keys, model, parameters)
    settings_file: Path = DEFAULT_SETTINGS_FILE
    prompts_dir: Path | None = None

    # HTTP
    request_timeout: float = DEFAULT_TIMEOUT
    openrouter_site_url: str = ""
    openrouter_site_name: str = OPENROUTER_SITE_NAME

    # App Settings
    log_level: str = "INFO"

    class Config:
        env_prefix = "PAPER_WRITER_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        frozen = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_llm_settings(store: KeyValueStore) -> LLMConfig:
    """
    Build an LLMConfig snapshot from the persisted unified settings document.

    Each way the settings can be unusable gets its own message so the user
    knows exactly what to fix.
    """
    saved = store.get_item(SETTINGS_KEY)
    if not saved:
        raise ConfigurationError(
            "Settings not configured. Please go to Settings and configure your LLM provider."
        )

    try:
        settings = json.loads(saved)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            "Invalid settings configuration. Please reconfigure in Settings."
        ) from e
    if not isinstance(settings, dict):
        raise ConfigurationError(
            "Invalid settings configuration. Please reconfigure in Settings."
        )

    parameters = _section(settings, "parameters")
    temperature = parameters.get("temperature")
    if temperature is None:
        temperature = LLM_DEFAULT_TEMPERATURE
    max_tokens = parameters.get("maxTokens")
    if max_tokens is None:
        max_tokens = LLM_DEFAULT_MAX_TOKENS
    if not _is_number(temperature) or not _is_number(max_tokens):
        raise ConfigurationError(
            "Invalid model parameters. Temperature and max tokens must be numbers."
        )

    provider_type = settings.get("providerType") or Provider.OPENROUTER.value

    if provider_type == Provider.OPENROUTER.value:
        openrouter = _section(settings, "openrouter")
        api_key = openrouter.get("apiKey")
        selected_model = _section(openrouter, "selectedModel")
        if not api_key:
            raise ConfigurationError(
                "OpenRouter API key not configured. "
                "Please go to Settings and add your OpenRouter API key."
            )
        if not selected_model.get("id"):
            raise ConfigurationError(
                "No model selected. Please go to Settings and select an OpenRouter model."
            )
        return LLMConfig(
            provider=Provider.OPENROUTER,
            api_key=api_key,
            model_name=selected_model["id"],
            base_url=OPENROUTER_BASE_URL,
            temperature=float(temperature),
            max_tokens=int(max_tokens),
        )

    if provider_type == Provider.CUSTOM.value:
        custom = _section(settings, "custom")
        if not custom.get("endpoint"):
            raise ConfigurationError(
                "Custom LLM endpoint not configured. "
                "Please go to Settings and add your API endpoint."
            )
        if not custom.get("modelName"):
            raise ConfigurationError(
                "Custom model name not configured. "
                "Please go to Settings and add your model name."
            )
        return LLMConfig(
            provider=Provider.CUSTOM,
            api_key=custom.get("apiKey") or "",
            model_name=custom["modelName"],
            base_url=custom["endpoint"],
            temperature=float(temperature),
            max_tokens=int(max_tokens),
        )

    raise ConfigurationError("Invalid provider type. Please reconfigure in Settings.")


def _section(document: dict, key: str) -> dict:
    """Nested object under `key`; a missing or non-object value reads as empty."""
    value = document.get(key)
    return value if isinstance(value, dict) else {}

def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
