"""Configuration loader and LLM config builder.

Reads project settings from a YAML config file with ``${ENV_VAR}`` interpolation.
Credentials are never read at call sites: ``ProjectConfig`` is passed
explicitly to the pipeline and providers.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .models import LLMEndpointConfig, ProjectConfig

load_dotenv()

# ---------------------------------------------------------------------------
# YAML loading with ${ENV_VAR} interpolation
# ---------------------------------------------------------------------------

_ENV_RE = re.compile(r"\$\{([^}]+)\}")


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${ENV_VAR}`` references in strings."""
    if isinstance(value, str):
        def _replace(m: re.Match) -> str:
            return os.environ.get(m.group(1), "")
        return _ENV_RE.sub(_replace, value)
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(v) for v in value]
    return value


def apply_credential_fallbacks(config: ProjectConfig) -> ProjectConfig:
    """Fill empty credentials from environment variables and normalise endpoints."""
    if not config.llm.api_key:
        config.llm.api_key = os.getenv("LLM_API_KEY", "")
    if not config.llm.endpoint:
        config.llm.endpoint = os.getenv("LLM_ENDPOINT", "")
    if not config.llm.api_version:
        config.llm.api_version = os.getenv("LLM_API_VERSION", "")
    if not config.search.api_key:
        config.search.api_key = os.getenv("BRAVE_SEARCH_API_KEY", "")
    config.llm.endpoint = config.llm.endpoint.rstrip("/")
    return config


def load_config(config_path: str | Path) -> ProjectConfig:
    """Load a ``ProjectConfig`` from a YAML file.

    Environment variables referenced as ``${VAR_NAME}`` are resolved.
    If credential fields are empty after resolution, they fall back to
    well-known environment variables (``LLM_API_KEY``, ``LLM_ENDPOINT``,
    ``BRAVE_SEARCH_API_KEY``).
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    resolved = _resolve_env_vars(raw)
    config = ProjectConfig.model_validate(resolved)
    return apply_credential_fallbacks(config)


def require_llm_credentials(config: ProjectConfig) -> None:
    """Raise ``ConfigurationError`` if the LLM gateway cannot be reached."""
    missing = [name for name, value in (
        ("llm.api_key", config.llm.api_key),
        ("llm.endpoint", config.llm.endpoint),
    ) if not value]
    if missing:
        raise ConfigurationError(f"Missing required LLM settings: {', '.join(missing)}")


# ---------------------------------------------------------------------------
# LLM config builder
# ---------------------------------------------------------------------------

def _is_azure_openai_endpoint(endpoint: str) -> bool:
    lower = endpoint.lower()
    return "openai.azure.com" in lower or "cognitiveservices.azure.com" in lower


def _build_single_entry(model: str, llm: LLMEndpointConfig) -> dict[str, Any]:
    """Build a single AG2 config_list entry for the given model.

    Azure OpenAI endpoints use deployment-based routing; any other endpoint
    is treated as an OpenAI-compatible gateway via ``base_url``.
    ``max_retries`` is pinned to 0 so that ``LLMClient`` owns the retry policy.
    """
    entry: dict[str, Any] = {
        "model": model,
        "api_key": llm.api_key,
        "max_retries": 0,
    }
    if llm.endpoint and _is_azure_openai_endpoint(llm.endpoint):
        entry.update({
            "api_type": "azure",
            "azure_endpoint": llm.endpoint,
            "api_version": llm.api_version,
            "azure_deployment": model,
        })
    elif llm.endpoint:
        entry["base_url"] = llm.endpoint
    return entry


def resolve_role_model(role: str, config: ProjectConfig) -> str:
    """Return the model name configured for *role* (or the default)."""
    models = config.models
    role_map: dict[str, str | None] = {
        "decomposer": models.decomposer,
        "writer": models.writer,
        "fallback_writer": models.fallback_writer,
    }
    return role_map.get(role.lower()) or models.default


def build_role_llm_config(
    role: str,
    config: ProjectConfig,
    *,
    model: str | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """Return an AG2-compatible ``llm_config`` dict for the given *role*.

    Role mapping:
    - ``decomposer`` → models.decomposer (or default)
    - ``writer`` → models.writer (or default)
    - ``fallback_writer`` → models.fallback_writer (or default)

    Response caching is disabled: a retried synthesis must reach the model
    again instead of replaying the cached draft.
    """
    chosen = model or resolve_role_model(role, config)
    entry = _build_single_entry(chosen, config.llm)
    return {
        "config_list": [entry],
        "timeout": timeout if timeout is not None else config.llm_timeout,
        "cache_seed": None,
    }
