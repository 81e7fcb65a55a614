"""配置加载。

支持 YAML 配置、环境变量占位符 `${VAR}` 展开，以及 .env/.env.local 自动加载，
最终校验为强类型的 `MainConfig`。
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from shared.config.schema import MainConfig
from shared.config.validation import format_validation_error
from shared.errors import ConfigError

AppConfig = MainConfig

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _load_env_file(env_path: Path) -> None:
    if not env_path.exists():
        return
    for line in env_path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _load_envs(cfg_path: Path) -> None:
    """
    加载配置文件目录与其上一级目录下的 .env/.env.local（不覆盖已有环境变量）。
    """
    candidates = [
        cfg_path.parent / ".env",
        cfg_path.parent / ".env.local",
        cfg_path.parent.parent / ".env",
        cfg_path.parent.parent / ".env.local",
    ]
    for env_file in candidates:
        _load_env_file(env_file)


def expand_env(value: Any) -> Any:
    """递归展开 `${VAR}`；未设置的变量直接报错，不静默替换为空。"""
    if isinstance(value, str):
        def replacer(match: re.Match[str]) -> str:
            var_name = match.group(1)
            if var_name not in os.environ:
                raise ConfigError(f"Missing environment variable: {var_name}")
            return os.environ[var_name]

        return _ENV_PATTERN.sub(replacer, value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def build_config(raw: dict[str, Any]) -> MainConfig:
    """把 raw dict 校验为 MainConfig；校验失败转换为带“did you mean”提示的 ConfigError。"""
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a dict")
    try:
        return MainConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(format_validation_error(exc, MainConfig)) from exc


def load_config(path: str | Path, load_env: bool = True, expand: bool = True) -> MainConfig:
    """从 YAML 读取并解析配置。

    Parameters
    ----------
    path:
        配置文件路径。
    load_env:
        是否自动加载 .env/.env.local。
    expand:
        是否展开 `${VAR}` 占位符。

    Returns
    -------
    MainConfig
        校验后的配置对象。

    Raises
    ------
    ConfigError
        配置文件不存在、YAML 非法、字段非法或缺失环境变量。
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise ConfigError(f"Config file not found: {cfg_path}")

    if load_env:
        _load_envs(cfg_path)

    try:
        with cfg_path.open("r", encoding="utf-8") as f:
            raw_cfg: dict[str, Any] = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {cfg_path}: {exc}") from exc

    if expand:
        raw_cfg = expand_env(raw_cfg)
    return build_config(raw_cfg)
