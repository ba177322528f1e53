"""Configuration models and loading for PR Focus."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

CONFIG_FILENAME = ".prfocus.yaml"


class WebhookConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    secret_env: str = "GITHUB_WEBHOOK_SECRET"
    # Sentinel signatures are only honored when test_mode is enabled.
    test_mode: bool = False
    test_signature: str = "sha256=test-signature-ignore-verification"


class EventsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    capacity: int = Field(default=1000, ge=1)
    default_limit: int = Field(default=50, ge=1)
    max_limit: int = Field(default=1000, ge=1)
    allow_clear: bool = False


class AnalysisConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider: Literal["anthropic", "google", "openai", "near"] = "openai"
    model: str | None = None
    api_key_env: str | None = None
    endpoint: str | None = None
    max_lines: int = Field(default=50000, ge=1)
    max_tokens: int = Field(default=64000, ge=1)
    timeout_seconds: float = 120.0
    temperature: float = 0.7
    cache_entries: int = Field(default=64, ge=1)


class GithubConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    gh_bin: str = "gh"
    rate_limit_retries: int = 2
    secondary_backoff_base_seconds: float = 5.0
    rate_limit_max_sleep_seconds: float = 90.0


class PrFocusConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    github: GithubConfig = Field(default_factory=GithubConfig)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML at {path} must decode to a mapping")
    return data


def load_effective_config(
    repo_path: str | Path,
    org_defaults: dict[str, Any] | None = None,
    system_defaults: dict[str, Any] | None = None,
    runtime_override: dict[str, Any] | None = None,
) -> PrFocusConfig:
    """Load config with precedence runtime > repo .prfocus.yaml > org > system."""
    repo = Path(repo_path)
    repo_config = _load_yaml(repo / CONFIG_FILENAME)

    merged: dict[str, Any] = {}
    if system_defaults:
        merged = _deep_merge(merged, system_defaults)
    if org_defaults:
        merged = _deep_merge(merged, org_defaults)
    if repo_config:
        merged = _deep_merge(merged, repo_config)
    if runtime_override:
        merged = _deep_merge(merged, runtime_override)

    return PrFocusConfig.model_validate(merged)
