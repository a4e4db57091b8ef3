from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from ..errors import ConfigInvalid

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"

ENV_API_KEY = "AIDRAW_API_KEY"
ENV_BASE_URL = "AIDRAW_BASE_URL"
ENV_MODEL = "AIDRAW_MODEL"
ENV_HOME = "AIDRAW_HOME"
ENV_SETTINGS_FILE = "AIDRAW_SETTINGS_FILE"


@dataclass(frozen=True)
class AIConfig:
    api_key: str = ""
    base_url: str = ""
    model: str = DEFAULT_MODEL

    def to_dict(self) -> dict[str, str]:
        return asdict(self)

    def redacted(self) -> dict[str, str]:
        data = self.to_dict()
        key = data["api_key"]
        data["api_key"] = (key[:4] + "..." + key[-2:]) if len(key) > 8 else ("***" if key else "")
        return data


def aidraw_home(environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    raw = env.get(ENV_HOME)
    return Path(raw).expanduser() if raw else Path.home() / ".aidraw"


def environ_with_home(home: Optional[str], environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    env = dict(os.environ if environ is None else environ)
    if home:
        env[ENV_HOME] = home
    return env


def settings_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    raw = env.get(ENV_SETTINGS_FILE)
    if raw:
        return Path(raw).expanduser()
    return aidraw_home(env) / "settings.yaml"


def scene_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    return aidraw_home(environ) / "scene.json"


def history_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    return aidraw_home(environ) / "history.json"


def _load_settings_file(path: Path) -> dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning("ignoring unreadable settings file %s: %s", path, e)
        return {}
    return loaded if isinstance(loaded, dict) else {}


def _str_setting(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def get_ai_config(*, environ: Optional[Mapping[str, str]] = None, path: Optional[Path] = None) -> AIConfig:
    env = os.environ if environ is None else environ
    env_config = AIConfig(
        api_key=_str_setting(env.get(ENV_API_KEY)),
        base_url=_str_setting(env.get(ENV_BASE_URL)),
        model=_str_setting(env.get(ENV_MODEL)) or DEFAULT_MODEL,
    )
    if env_config.api_key and env_config.base_url:
        return env_config

    stored = _load_settings_file(path or settings_path(env))
    if not stored:
        return env_config
    return AIConfig(
        api_key=_str_setting(stored.get("api_key")) or env_config.api_key,
        base_url=_str_setting(stored.get("base_url")) or env_config.base_url,
        model=_str_setting(stored.get("model")) or env_config.model,
    )


def save_ai_config(config: AIConfig, *, path: Optional[Path] = None) -> Path:
    target = path or settings_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, sort_keys=False, allow_unicode=True)
    return target


def missing_config_fields(config: AIConfig) -> list[str]:
    return [name for name in ("api_key", "base_url", "model") if not getattr(config, name)]


def is_config_valid(config: AIConfig) -> bool:
    return not missing_config_fields(config)


def require_valid_config(config: AIConfig) -> AIConfig:
    missing = missing_config_fields(config)
    if missing:
        raise ConfigInvalid(missing)
    return config


def apply_overrides(config: AIConfig, **overrides: Optional[str]) -> AIConfig:
    values = config.to_dict()
    for key, value in overrides.items():
        if value is not None:
            values[key] = value
    return AIConfig(**values)


__all__ = [
    "AIConfig",
    "DEFAULT_MODEL",
    "aidraw_home",
    "apply_overrides",
    "environ_with_home",
    "get_ai_config",
    "history_path",
    "is_config_valid",
    "missing_config_fields",
    "require_valid_config",
    "save_ai_config",
    "scene_path",
    "settings_path",
]
