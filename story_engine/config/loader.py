from __future__ import annotations

from pathlib import Path
from typing import Any
import os
import re

import yaml
from loguru import logger

from story_engine.config.schema import AppConfigRoot, resolve_paths
from story_engine.domain.models import RequestClass

ENV_PREFIX = "STORY_ENGINE_"


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    return data or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _load_dotenv(dotenv_path: Path) -> None:
    if not dotenv_path.exists():
        return
    for raw_line in dotenv_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip("\"")
        os.environ.setdefault(key, value)


# (section, key) targets for plain string overrides
_PATH_OVERRIDES: dict[str, tuple[str, str]] = {
    "DATA_DIR": ("app", "data_dir"),
    "OUTPUT_DIR": ("app", "output_dir"),
    "SQLITE_PATH": ("storage", "sqlite_path"),
    "HISTORY_PATH": ("history", "path"),
}


def _provider_base_url_override_var(provider_name: str) -> str:
    normalized = re.sub(r"[^A-Za-z0-9]", "_", provider_name).upper()
    return f"{ENV_PREFIX}LLM_PROVIDER_{normalized}_BASE_URL"


def _quota_limit_override_var(request_class: RequestClass) -> str:
    return f"{ENV_PREFIX}QUOTA_{request_class.value.upper()}_LIMIT"


def _apply_env(config_data: dict[str, Any]) -> dict[str, Any]:
    providers = (config_data.get("llm") or {}).get("providers") or {}
    for provider_name, provider_cfg in providers.items():
        base_url = os.getenv(_provider_base_url_override_var(provider_name))
        if base_url and isinstance(provider_cfg, dict):
            provider_cfg["base_url"] = base_url

    limit_overrides = {
        request_class.value: os.getenv(_quota_limit_override_var(request_class)) for request_class in RequestClass
    }
    limit_overrides = {name: int(raw) for name, raw in limit_overrides.items() if raw}
    if limit_overrides:
        quota = config_data.setdefault("quota", {})
        limits = quota.setdefault("limits", {request_class.value: 100 for request_class in RequestClass})
        limits.update(limit_overrides)

    for suffix, (section, key) in _PATH_OVERRIDES.items():
        value = os.getenv(f"{ENV_PREFIX}{suffix}")
        if value:
            config_data.setdefault(section, {})[key] = value
    return config_data


def load_config(
    config_path: Path | None = None,
    profile: str | None = None,
    overrides: dict[str, Any] | None = None,
    base_dir: Path | None = None,
) -> AppConfigRoot:
    base_dir = base_dir or Path.cwd()
    _load_dotenv(base_dir / ".env")

    config_data: dict[str, Any] = {}
    config_data = _deep_merge(config_data, _read_yaml(base_dir / "configs" / "default.yaml"))

    if profile:
        profile_path = base_dir / "configs" / "profiles" / f"{profile}.yaml"
        config_data = _deep_merge(config_data, _read_yaml(profile_path))

    if config_path:
        config_data = _deep_merge(config_data, _read_yaml(config_path))

    if overrides:
        config_data = _deep_merge(config_data, overrides)

    config_data = _apply_env(config_data)

    config = AppConfigRoot.model_validate(config_data)
    config = resolve_paths(config, base_dir)

    logger.debug("Loaded config from {}", base_dir)
    return config


def masked_env_snapshot(config: AppConfigRoot | None = None) -> dict[str, str | None]:
    snapshot: dict[str, str | None] = {}
    for suffix in _PATH_OVERRIDES:
        snapshot[f"{ENV_PREFIX}{suffix}"] = os.getenv(f"{ENV_PREFIX}{suffix}")
    for request_class in RequestClass:
        override_var = _quota_limit_override_var(request_class)
        snapshot[override_var] = os.getenv(override_var)

    if config is None:
        return snapshot

    for provider_name, provider in config.llm.providers.items():
        override_var = _provider_base_url_override_var(provider_name)
        snapshot[override_var] = os.getenv(override_var)
        snapshot[f"llm.providers.{provider_name}.base_url"] = provider.base_url

        if provider.api_key_env:
            snapshot[provider.api_key_env] = "***" if os.getenv(provider.api_key_env) else None

    return snapshot
