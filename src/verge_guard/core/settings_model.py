"""The boolean system settings managed by the settings panel."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Final, Mapping

DEFAULT_CLASH_CORE: Final[str] = "verge-mihomo"


@dataclass(frozen=True, slots=True)
class SettingField:
    key: str
    label: str
    requires_escalation: bool = False
    # Keys that may be written together with this one (see SystemSettings).
    companions: tuple[str, ...] = ()
    info: str | None = None

    def value_in(self, verge: Mapping[str, Any]) -> bool:
        return bool(verge.get(self.key, False))


TUN_MODE = SettingField(
    key="enable_tun_mode",
    label="Tun Mode",
    requires_escalation=True,
    companions=("enable_service_mode",),
    info="Route all system traffic through a virtual network interface.",
)
SERVICE_MODE = SettingField(
    key="enable_service_mode",
    label="Service Mode",
    info="Run the core through the background service so it keeps elevated rights.",
)
SYSTEM_PROXY = SettingField(
    key="enable_system_proxy",
    label="System Proxy",
    info="Point the desktop proxy settings at the local proxy.",
)
AUTO_LAUNCH = SettingField(key="enable_auto_launch", label="Auto Launch")
SILENT_START = SettingField(
    key="enable_silent_start",
    label="Silent Start",
    info="Start minimized without opening the main window.",
)

SYSTEM_FIELDS: Final[tuple[SettingField, ...]] = (
    TUN_MODE,
    SERVICE_MODE,
    SYSTEM_PROXY,
    AUTO_LAUNCH,
    SILENT_START,
)

_FIELD_BY_KEY: Final[dict[str, SettingField]] = {field.key: field for field in SYSTEM_FIELDS}


def field_by_key(key: str) -> SettingField:
    try:
        return _FIELD_BY_KEY[key]
    except KeyError:
        raise KeyError(f"Unknown setting: {key}") from None


def default_verge() -> dict[str, Any]:
    defaults: dict[str, Any] = {field.key: False for field in SYSTEM_FIELDS}
    defaults["clash_core"] = DEFAULT_CLASH_CORE
    return defaults
