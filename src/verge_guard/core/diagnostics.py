"""Diagnostics collection."""

from __future__ import annotations

import platform
import shutil
import sys

from verge_guard.core.app_config import AppConfig
from verge_guard.core.errors import BinaryMissingError
from verge_guard.core.native_ops import core_is_privileged, resolve_core_path
from verge_guard.core.platform_info import detect_platform
from verge_guard.core.settings_model import DEFAULT_CLASH_CORE, SYSTEM_FIELDS
from verge_guard.core.storage import get_config_dir, get_logs_dir
from verge_guard.core.verge_store import VergeStore

_TOOLS = ("pkexec", "sudo", "setcap", "getcap", "osascript", "sc", "systemctl")


def _tool_available(name: str) -> bool:
    return shutil.which(name) is not None


def collect_diagnostics(
    store: VergeStore | None = None,
    app_config: AppConfig | None = None,
) -> str:
    app_config = app_config or AppConfig()
    os_name = detect_platform()
    lines: list[str] = []
    lines.append("verge-guard diagnostics")
    lines.append("")

    lines.append("System")
    lines.append(f"- OS: {platform.system()} {platform.release()}")
    lines.append(f"- Platform: {os_name}")
    lines.append(f"- Arch: {platform.machine()}")
    lines.append(f"- Python: {sys.version.split()[0]}")
    lines.append("")

    lines.append("Tools")
    for tool in _TOOLS:
        lines.append(f"- {tool}: {'yes' if _tool_available(tool) else 'no'}")
    lines.append("")

    lines.append("Paths")
    lines.append(f"- Config: {get_config_dir()}")
    lines.append(f"- Logs: {get_logs_dir()}")
    lines.append(f"- Service dir: {app_config.service_dir or '(default)'}")
    lines.append("")

    core = DEFAULT_CLASH_CORE
    if store is not None:
        core = str(store.get("clash_core", DEFAULT_CLASH_CORE))
    lines.append("Core")
    lines.append(f"- Identity: {core}")
    try:
        core_path = resolve_core_path(core, os_name, app_config.core_dir)
    except BinaryMissingError:
        lines.append("- Binary: not found")
    else:
        lines.append(f"- Binary: {core_path}")
        lines.append(f"- Privileged: {'yes' if core_is_privileged(core_path, os_name) else 'no'}")
    lines.append("")

    if store is not None:
        lines.append("Settings")
        for field in SYSTEM_FIELDS:
            shown = field.value_in(store.verge)
            saved = bool(store.committed(field.key, False))
            suffix = "" if shown == saved else f" (saved: {saved})"
            lines.append(f"- {field.key}: {shown}{suffix}")
        if store.last_load_error:
            lines.append(f"- Load error: {store.last_load_error}")
        lines.append("")

    return "\n".join(lines)
