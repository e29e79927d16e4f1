from __future__ import annotations
"""
Persisted settings for foldwise.

Settings are stored as JSON in ~/.foldwise/config.json (the directory can be
moved with FOLDWISE_CONFIG_DIR). Values are resolved in this order, last
one wins:

    built-in defaults -> config file -> FOLDWISE_* environment variables

Command-line flags are applied on top by the CLI, per invocation, and are
never written back.
"""

import json
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigError

CONFIG_DIR_ENV_VAR = "FOLDWISE_CONFIG_DIR"
ENV_PREFIX = "FOLDWISE_"
CONFIG_FILENAME = "config.json"

PROVIDERS = ("openai", "anthropic", "ollama")


@dataclass(frozen=True)
class Settings:
    provider: str = "openai"
    model: Optional[str] = None
    concurrency: int = 10
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    preview_chars: int = 1000
    suffix_format: str = "{stem}_{n}{suffix}"

    def validate(self) -> "Settings":
        """Return self, or raise ConfigError naming the first bad value."""
        if self.provider not in PROVIDERS:
            raise ConfigError(
                f"Unknown provider '{self.provider}'. Choose one of: {', '.join(PROVIDERS)}."
            )
        if self.concurrency < 1:
            raise ConfigError("concurrency must be at least 1.")
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1.")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigError("retry delays must not be negative.")
        if self.preview_chars < 16:
            raise ConfigError("preview_chars must be at least 16.")
        try:
            samples = {
                self.suffix_format.format(stem="report", n=n, suffix=".pdf") for n in (2, 3)
            }
        except (AttributeError, IndexError, KeyError, TypeError, ValueError) as exc:
            raise ConfigError(
                f"suffix_format may only use {{stem}}, {{n}} and {{suffix}}: {exc!r}"
            ) from exc
        if len(samples) < 2:
            raise ConfigError("suffix_format must contain {n} so every copy gets a different name.")
        if any(sep in name for name in samples for sep in ("/", "\\")):
            raise ConfigError("suffix_format must not contain path separators.")
        return self


def config_dir() -> Path:
    override = os.getenv(CONFIG_DIR_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".foldwise"


def config_path() -> Path:
    return config_dir() / CONFIG_FILENAME


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw (file or string) value to the type of Settings.<name>."""
    default = getattr(Settings(), name)
    if value is None or value == "":
        return None if name == "model" else default
    try:
        if name in ("concurrency", "max_attempts", "preview_chars"):
            if isinstance(value, bool):
                raise ValueError(value)
            return int(value)
        if name in ("base_delay", "max_delay"):
            return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value for '{name}': {value!r}") from exc
    return str(value)


def settings_from_mapping(data: Mapping[str, Any], base: Optional[Settings] = None) -> Settings:
    """Overlay known keys of `data` on `base`; unknown keys are ignored."""
    known = {f.name for f in fields(Settings)}
    updates = {k: _coerce(k, v) for k, v in data.items() if k in known}
    return replace(base or Settings(), **updates)


def _read_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Config file is not valid JSON: {path} ({exc})") from exc
    except OSError as exc:
        raise ConfigError(f"Could not read config file: {path} ({exc})") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a JSON object: {path}")
    return data


def _env_overrides() -> Dict[str, str]:
    out = {}
    for f in fields(Settings):
        value = os.getenv(ENV_PREFIX + f.name.upper())
        if value is not None:
            out[f.name] = value
    return out


def load_settings() -> Settings:
    """
    Resolve the effective settings.

    Raises
    ------
    ConfigError
        If the config file is malformed or a value is out of range.
    """
    settings = settings_from_mapping(_read_file(config_path()))
    settings = settings_from_mapping(_env_overrides(), settings)
    return settings.validate()


def save_settings(settings: Settings) -> Path:
    """Validate and write `settings` to the config file; returns its path."""
    settings.validate()
    path = config_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(asdict(settings), indent=2) + "\n", encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Could not write config file: {path} ({exc})") from exc
    return path


def update_setting(key: str, value: str) -> Settings:
    """Set one key in the config file (not the environment) and save it."""
    known = [f.name for f in fields(Settings)]
    if key not in known:
        raise ConfigError(f"Unknown setting '{key}'. Known settings: {', '.join(known)}.")
    current = settings_from_mapping(_read_file(config_path()))
    updated = settings_from_mapping({key: value}, current)
    if key == "provider" and updated.provider != current.provider:
        # A model name only means something to the provider it came from.
        updated = replace(updated, model=None)
    save_settings(updated)
    return updated


def reset_settings() -> None:
    """Delete the config file, returning to built-in defaults."""
    path = config_path()
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        raise ConfigError(f"Could not remove config file: {path} ({exc})") from exc
