from __future__ import annotations

import os
import tempfile
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any, Callable

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from dotenv import find_dotenv, load_dotenv

from .config import ProxyConfig

CONFIG_FILE_ENV = "CHAT_PROXY_CONFIG_FILE"
ENV_PREFIX = "CHAT_PROXY_"
DEFAULT_CONFIG_PATH = Path("configs/chat_proxy.toml")

# Unprefixed names kept for deployments that already export them.
LEGACY_ENV = {"api_key": "API_KEY", "port": "PORT"}

_SECTION_MAP: dict[str, list[str]] = {
    "server": [
        "host",
        "port",
        "cors_origins",
        "static_dir",
        "max_body_bytes",
        "enable_metrics",
        "log_path",
        "max_log_bytes",
    ],
    "upstream": [
        "api_key",
        "openai_base_url",
        "google_base_url",
        "connect_timeout_s",
        "read_timeout_s",
    ],
    "rate_limits": [
        "chat_rate_limit",
        "status_rate_limit",
        "rate_limit_window_s",
    ],
    "storage": ["model_tags_path"],
}


def _field_types() -> dict[str, Any]:
    hints = {}
    for f in fields(ProxyConfig):
        hints[f.name] = f.type
    return hints


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return int(str(value))


def _coerce_float(value: Any) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    return float(str(value))


def _coerce_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _coerce_list(value: Any) -> list[str]:
    if isinstance(value, str):
        parts = [item.strip() for item in value.split(",")]
        return [item for item in parts if item]
    return [str(item) for item in value]


def _coerce_optional(value: Any, caster: Callable[[Any], Any]) -> Any:
    if value in ("", None):
        return None
    return caster(value)


# Annotations are strings under ``from __future__ import annotations``.
_CASTERS: dict[str, Callable[[Any], Any]] = {
    "bool": _coerce_bool,
    "int": _coerce_int,
    "float": _coerce_float,
    "str": _coerce_str,
    "List[str]": _coerce_list,
    "Optional[str]": lambda v: _coerce_optional(v, _coerce_str),
    "Optional[float]": lambda v: _coerce_optional(v, _coerce_float),
}


def _coerce_value(field_type: Any, value: Any) -> Any:
    caster = _CASTERS.get(str(field_type))
    if caster:
        return caster(value)
    return value


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    out: dict[str, Any] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = data.get(section, {})
        if not isinstance(section_values, dict):
            continue
        for key in keys:
            if key in section_values:
                out[key] = section_values[key]
    return out


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    env = os.environ
    field_types = _field_types()
    for key in config:
        names = [f"{ENV_PREFIX}{key.upper()}"]
        if key in LEGACY_ENV:
            names.append(LEGACY_ENV[key])
        for name in names:
            raw = env.get(name)
            if raw is None:
                continue
            try:
                config[key] = _coerce_value(field_types.get(key), raw)
            except ValueError:
                continue
            break
    return config


def _default_config_dict() -> dict[str, Any]:
    data = asdict(ProxyConfig())
    data.pop("config_file_path", None)
    return data


def _normalize(config: dict[str, Any]) -> dict[str, Any]:
    field_types = _field_types()
    normalized = {}
    for key, default_value in _default_config_dict().items():
        value = config.get(key, default_value)
        try:
            normalized[key] = _coerce_value(field_types.get(key), value)
        except (TypeError, ValueError):
            normalized[key] = default_value
    return normalized


def config_path() -> Path:
    return Path(os.environ.get(CONFIG_FILE_ENV, DEFAULT_CONFIG_PATH)).expanduser()


def load_file_config() -> dict[str, Any]:
    base = _default_config_dict()
    base.update(_read_config_file(config_path()))
    return _normalize(base)


def load_proxy_config(dotenv: bool = True) -> ProxyConfig:
    """Build the runtime config: environment, then config file, then defaults."""
    if dotenv:
        env_file = find_dotenv(usecwd=True)
        if env_file:
            load_dotenv(env_file, override=False)
    candidate = config_path()
    normalized = _normalize(_read_config_file(candidate))
    normalized = _apply_env_overrides(normalized)
    cfg = ProxyConfig(**normalized)
    cfg.config_file_path = str(candidate)
    return cfg


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        inner = ", ".join(_format_value(item) for item in value)
        return f"[{inner}]"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return '""'
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _ordered_sections(config: ProxyConfig) -> dict[str, dict[str, Any]]:
    config_dict = asdict(config)
    config_dict.pop("config_file_path", None)
    sections: dict[str, dict[str, Any]] = {}
    for section, keys in _SECTION_MAP.items():
        section_values = {}
        for key in keys:
            if key in config_dict:
                section_values[key] = config_dict[key]
        if section_values:
            sections[section] = section_values
    return sections


def write_config(config: ProxyConfig, path: Path | None = None) -> Path:
    path = Path(path or config_path()).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        "# chatgate chat proxy configuration.",
        "# Environment variables (CHAT_PROXY_*, API_KEY, PORT) override these values.",
    ]
    for section, values in _ordered_sections(config).items():
        lines.append("")
        lines.append(f"[{section}]")
        for key, value in values.items():
            if value is None:
                # Unset optionals stay commented so the default applies.
                lines.append(f"# {key} = \"\"")
                continue
            lines.append(f"{key} = {_format_value(value)}")

    tmp_fd, tmp_path = tempfile.mkstemp(
        prefix="chat_proxy_config_", suffix=".toml", dir=str(path.parent)
    )
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
        Path(tmp_path).replace(path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
    return path


def list_env_overrides() -> dict[str, str]:
    legacy = set(LEGACY_ENV.values())
    out = {}
    for key, value in os.environ.items():
        if key == CONFIG_FILE_ENV:
            continue
        if key.startswith(ENV_PREFIX) or key in legacy:
            out[key] = value
    return out
