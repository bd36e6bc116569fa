from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import os
import yaml


class ConfigError(RuntimeError):
    """Raised when the configuration file is invalid."""


@dataclass(slots=True)
class LoggingConfig:
    level: str
    logger_channel_id: Optional[int]


@dataclass(slots=True)
class BackendConfig:
    base_url: str
    auth_token: Optional[str] = None
    timeout_seconds: float = 15.0
    entries_path: str = "/api/photos/lottery-feed"
    draw_path: str = "/api/photos/spin-lottery"
    winner_path: str = "/api/photos/current-winner"


@dataclass(slots=True)
class DrawConfig:
    cycle_hours: int = 24
    tick_seconds: float = 1.0
    cooldown_seconds: float = 5.0

    @property
    def cycle_seconds(self) -> int:
        return self.cycle_hours * 60 * 60


@dataclass(slots=True)
class LoaderConfig:
    max_attempts: int = 3
    backoff_base_seconds: float = 2.0


@dataclass(slots=True)
class NotificationsConfig:
    history_limit: int = 50
    channel_id: Optional[int] = None


@dataclass(slots=True)
class PermissionsConfig:
    admin_roles: List[int] = field(default_factory=list)
    development_guild_id: Optional[int] = None


@dataclass(slots=True)
class StorageConfig:
    data_dir: Path = Path("data")


@dataclass(slots=True)
class Config:
    token: str
    application_id: int
    logging: LoggingConfig
    backend: BackendConfig
    draw: DrawConfig
    loader: LoaderConfig
    notifications: NotificationsConfig
    permissions: PermissionsConfig
    storage: StorageConfig


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data:
        raise ConfigError(f"Missing required config key: {key}")
    return data[key]

def _resolve_env_value(value: str, key: str) -> str:
    trimmed = value.strip()
    if trimmed.startswith("${") and trimmed.endswith("}"):
        env_name = trimmed[2:-1].strip()
        if not env_name:
            raise ConfigError(f"Environment reference for '{key}' is empty.")
        env_value = os.getenv(env_name)
        if env_value is None:
            raise ConfigError(
                f"Environment variable '{env_name}' referenced by '{key}' is not set."
            )
        return env_value
    return value


def _optional_channel_id(value: Any, key: str) -> Optional[int]:
    if value in (None, "", 0):
        return None
    if not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{key} must be a positive integer channel ID or null.")
    return value


def _positive_number(data: Dict[str, Any], key: str, default: float, section: str) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{section}.{key} must be a positive number.")
    return float(value)


def _parse_logging(data: Dict[str, Any]) -> LoggingConfig:
    level = data.get("level", "INFO")
    logger_channel_id = _optional_channel_id(
        data.get("logger_channel_id"), "logging.logger_channel_id"
    )
    return LoggingConfig(level=level, logger_channel_id=logger_channel_id)


def _parse_backend(data: Dict[str, Any]) -> BackendConfig:
    base_url = str(_require(data, "base_url")).strip().rstrip("/")
    if not base_url.startswith(("http://", "https://")):
        raise ConfigError("backend.base_url must be an http(s) URL.")

    auth_token: Optional[str] = None
    token_raw = data.get("auth_token")
    if token_raw not in (None, ""):
        auth_token = _resolve_env_value(str(token_raw), "backend.auth_token").strip() or None

    paths: Dict[str, str] = {}
    for key in ("entries_path", "draw_path", "winner_path"):
        if key not in data:
            continue
        path = str(data[key]).strip()
        if not path.startswith("/"):
            raise ConfigError(f"backend.{key} must start with '/'.")
        paths[key] = path

    return BackendConfig(
        base_url=base_url,
        auth_token=auth_token,
        timeout_seconds=_positive_number(data, "timeout_seconds", 15.0, "backend"),
        **paths,
    )


def _parse_draw(data: Dict[str, Any]) -> DrawConfig:
    cycle_hours = data.get("cycle_hours", 24)
    if not isinstance(cycle_hours, int) or cycle_hours <= 0:
        raise ConfigError("draw.cycle_hours must be a positive integer.")
    cooldown = data.get("cooldown_seconds", 5)
    if isinstance(cooldown, bool) or not isinstance(cooldown, (int, float)) or cooldown < 0:
        raise ConfigError("draw.cooldown_seconds must be zero or greater.")
    return DrawConfig(
        cycle_hours=cycle_hours,
        tick_seconds=_positive_number(data, "tick_seconds", 1.0, "draw"),
        cooldown_seconds=float(cooldown),
    )


def _parse_loader(data: Dict[str, Any]) -> LoaderConfig:
    max_attempts = data.get("max_attempts", 3)
    if not isinstance(max_attempts, int) or max_attempts <= 0:
        raise ConfigError("loader.max_attempts must be a positive integer.")
    return LoaderConfig(
        max_attempts=max_attempts,
        backoff_base_seconds=_positive_number(data, "backoff_base_seconds", 2.0, "loader"),
    )


def _parse_notifications(data: Dict[str, Any]) -> NotificationsConfig:
    history_limit = data.get("history_limit", 50)
    if not isinstance(history_limit, int) or history_limit <= 0:
        raise ConfigError("notifications.history_limit must be a positive integer.")
    channel_id = _optional_channel_id(data.get("channel_id"), "notifications.channel_id")
    return NotificationsConfig(history_limit=history_limit, channel_id=channel_id)


def _parse_permissions(data: Dict[str, Any]) -> PermissionsConfig:
    admin_roles_raw = data.get("admin_roles", [])
    if not isinstance(admin_roles_raw, list):
        raise ConfigError("permissions.admin_roles must be a list of role IDs.")
    admin_roles: List[int] = []
    for role_id in admin_roles_raw:
        try:
            admin_roles.append(int(role_id))
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"permissions.admin_roles contains invalid role id: {role_id!r}"
            ) from exc
    dev_guild_raw = data.get("development_guild_id")
    development_guild_id: Optional[int]
    if dev_guild_raw in (None, "", 0):
        development_guild_id = None
    else:
        try:
            development_guild_id = int(dev_guild_raw)
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                "permissions.development_guild_id must be an integer guild ID or null."
            ) from exc
        if development_guild_id <= 0:
            raise ConfigError(
                "permissions.development_guild_id must be a positive integer."
            )
    return PermissionsConfig(
        admin_roles=admin_roles, development_guild_id=development_guild_id
    )


def _parse_storage(data: Dict[str, Any]) -> StorageConfig:
    data_dir = str(data.get("data_dir", "data")).strip()
    if not data_dir:
        raise ConfigError("storage.data_dir must not be empty.")
    return StorageConfig(data_dir=Path(data_dir))


def load_config(path: Path) -> Config:
    if not path.exists():
        raise ConfigError(f"Config file {path} does not exist.")

    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping at the root.")

    token_raw = str(_require(data, "token"))
    token = _resolve_env_value(token_raw, "token").strip()
    if not token:
        raise ConfigError("token must not be empty.")
    try:
        application_id = int(_require(data, "application_id"))
    except (TypeError, ValueError) as exc:
        raise ConfigError("application_id must be an integer.") from exc

    sections = {}
    for name in ("logging", "backend", "draw", "loader", "notifications", "permissions", "storage"):
        section = data.get(name) or {}
        if not isinstance(section, dict):
            raise ConfigError(f"{name} must be a mapping.")
        sections[name] = section

    return Config(
        token=token,
        application_id=application_id,
        logging=_parse_logging(sections["logging"]),
        backend=_parse_backend(sections["backend"]),
        draw=_parse_draw(sections["draw"]),
        loader=_parse_loader(sections["loader"]),
        notifications=_parse_notifications(sections["notifications"]),
        permissions=_parse_permissions(sections["permissions"]),
        storage=_parse_storage(sections["storage"]),
    )
