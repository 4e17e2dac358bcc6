"""Configuration system for sublate.

Layered config loading (lowest to highest priority):
1. config/default.toml (shipped with package)
2. ~/.config/sublate/config.toml (user-level)
3. ./sublate.toml (project-level)
4. Environment variables (SUBLATE_TRANSLATION__BATCH_SIZE, etc.) for keys no TOML layer sets
5. CLI flags
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PACKAGE_ROOT = Path(__file__).resolve().parent.parent.parent.parent
_DEFAULT_CONFIG = _PACKAGE_ROOT / "config" / "default.toml"
_USER_CONFIG = Path.home() / ".config" / "sublate" / "config.toml"
_PROJECT_CONFIG = Path("sublate.toml")


class ProviderSettings(BaseModel):
    """Connection settings for one provider id."""

    model_prefix: str = ""  # LiteLLM route prefix, e.g. "openai" or "ollama_chat"
    api_base: str | None = None
    api_key: str | None = None


class LLMConfig(BaseModel):
    model: str = "gpt-4o-mini"
    api_base: str | None = None  # Fallback when the provider sets none
    temperature: float = 0.3
    max_tokens: int = 4096
    providers: dict[str, ProviderSettings] = Field(default_factory=dict)

    def provider(self, provider_id: str) -> ProviderSettings:
        """Return settings for a provider id, or bare defaults if unknown."""
        return self.providers.get(provider_id) or ProviderSettings(model_prefix=provider_id)


class TranslationConfig(BaseModel):
    batch_size: int = Field(20, gt=0)
    boundary_size: int = Field(5, ge=0)  # Tail of the previous batch sent as context
    max_style_examples: int = Field(8, ge=0)
    max_reference_glossary: int = Field(100, ge=0)
    style_guide_limit: int = Field(6, ge=0)
    progress_every: int = Field(20, gt=0)  # Save + publish every N processed segments
    jsonl_temperature: float = Field(0.2, ge=0)
    analysis_temperature: float = Field(0.1, ge=0)
    glossary_cache_ttl: float = Field(300.0, ge=0)  # seconds
    max_attempts: int = Field(2, gt=0)  # Original request + one retry
    failed_id_sample: int = Field(10, ge=0)
    stream: bool = True  # Forward response deltas as live conversation events


class SublateConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SUBLATE_",
        env_nested_delimiter="__",
    )

    llm: LLMConfig = LLMConfig()
    translation: TranslationConfig = TranslationConfig()
    store_dir: Path = Path("./sublate_store")


def _load_toml(path: Path) -> dict:
    """Load a TOML file if it exists, return empty dict otherwise."""
    if path.is_file():
        with open(path, "rb") as f:
            return tomllib.load(f)
    return {}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(**cli_overrides: object) -> SublateConfig:
    """Load configuration from all layers and merge.

    Args:
        **cli_overrides: Direct overrides from CLI flags. Keys can be
            dot-separated (e.g. translation.batch_size=10).
    """
    config_data: dict = {}
    for path in (_DEFAULT_CONFIG, _USER_CONFIG, _PROJECT_CONFIG):
        layer = _load_toml(path)
        config_data = _deep_merge(config_data, layer)

    # Flatten 'general' section into top-level
    if "general" in config_data:
        general = config_data.pop("general")
        config_data = _deep_merge(config_data, general)

    for key, value in cli_overrides.items():
        if value is None:
            continue
        parts = key.split(".")
        target = config_data
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        target[parts[-1]] = value

    # Env vars are handled by pydantic BaseSettings
    return SublateConfig(**config_data)
