"""Application-level configuration loaded from ``app.json``."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from verge_guard.core.storage import get_config_dir, load_json

APP_CONFIG_FILE = "app.json"

DEFAULT_OPERATION_TIMEOUT_S = 30.0
DEFAULT_SERVICE_NAME = "clash_verge_service"


@dataclass(frozen=True, slots=True)
class AppConfig:
    operation_timeout_s: float = DEFAULT_OPERATION_TIMEOUT_S
    service_name: str = DEFAULT_SERVICE_NAME
    service_dir: Path | None = None
    core_dir: Path | None = None
    helper_args: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AppConfig":
        timeout = _to_positive_float(data.get("operation_timeout_s"), DEFAULT_OPERATION_TIMEOUT_S)
        service_name = str(data.get("service_name") or "").strip() or DEFAULT_SERVICE_NAME

        raw_args = data.get("helper_args")
        helper_args: tuple[str, ...] = ()
        if isinstance(raw_args, list):
            helper_args = tuple(str(item) for item in raw_args if str(item).strip())

        return cls(
            operation_timeout_s=timeout,
            service_name=service_name,
            service_dir=_to_path(data.get("service_dir")),
            core_dir=_to_path(data.get("core_dir")),
            helper_args=helper_args,
        )


def load_app_config(path: Path | None = None) -> AppConfig:
    path = path or (get_config_dir() / APP_CONFIG_FILE)
    data = load_json(path, {})
    if not isinstance(data, dict):
        return AppConfig()
    return AppConfig.from_dict(data)


def _to_path(value: Any) -> Path | None:
    if not isinstance(value, str) or not value.strip():
        return None
    return Path(value.strip()).expanduser()


def _to_positive_float(value: Any, default: float) -> float:
    if isinstance(value, bool):
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default
