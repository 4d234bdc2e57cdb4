"""Platform resolution.

The platform is resolved once per process and then passed explicitly to the
components that branch on it, so tests can inject any value.
"""

from __future__ import annotations

from functools import lru_cache
import platform
from typing import Literal

PlatformName = Literal["windows", "macos", "linux", "other"]


def platform_from_system(system: str) -> PlatformName:
    """Map a ``platform.system()`` / ``sys.platform`` style name to a PlatformName."""
    value = (system or "").strip().lower()
    if value in {"windows", "win32", "cygwin", "msys"}:
        return "windows"
    if value in {"darwin", "macos", "mac"}:
        return "macos"
    if value.startswith("linux"):
        return "linux"
    return "other"


@lru_cache(maxsize=1)
def detect_platform() -> PlatformName:
    return platform_from_system(platform.system())
