from __future__ import annotations

from typing import Any

from ...config.loaders import AIConfig, apply_overrides, is_config_valid, missing_config_fields, save_ai_config, settings_path


def config_show_cmd(*, args: Any, config: AIConfig) -> int:
    for key, value in config.redacted().items():
        print(f"{key}: {value}")
    print(f"settings file: {settings_path(getattr(args, 'environ', None))}")
    if not is_config_valid(config):
        print(f"incomplete: missing {', '.join(missing_config_fields(config))}")
        return 1
    return 0


def config_set_cmd(*, args: Any, config: AIConfig) -> int:
    updated = apply_overrides(
        config,
        api_key=getattr(args, "api_key", None),
        base_url=getattr(args, "base_url", None),
        model=getattr(args, "model", None),
    )
    path = save_ai_config(updated, path=settings_path(getattr(args, "environ", None)))
    print(f"wrote: {path}")
    return 0
