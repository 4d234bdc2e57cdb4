"""Privileged operation boundary.

These are the remote/native calls that guard a toggle. The core only depends on
the protocol; ``native_ops`` provides the subprocess-backed implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, Literal, Protocol, runtime_checkable

SERVICE_OK: Final[int] = 0
SERVICE_INSTALLED: Final[int] = 400
SERVICE_MISSING: Final[int] = 404

ServiceCategory = Literal["not_installed", "active", "installed", "unknown"]


@dataclass(frozen=True, slots=True)
class PrivilegeCheckResult:
    code: int
    message: str = ""

    @property
    def category(self) -> ServiceCategory:
        if self.code == SERVICE_OK:
            return "active"
        if self.code == SERVICE_INSTALLED:
            return "installed"
        return "not_installed"

    @property
    def needs_install(self) -> bool:
        return self.category == "not_installed"


def category_of(result: PrivilegeCheckResult | None) -> ServiceCategory:
    """Category of a possibly missing result; no result means "unknown"."""
    if result is None:
        return "unknown"
    return result.category


@runtime_checkable
class PrivilegedOps(Protocol):
    async def check_service(self) -> PrivilegeCheckResult:
        """Query the background service; raises StructuralQueryFailure if the query itself fails."""

    async def install_service(self) -> None:
        """Install the background service; raises EscalationFailure."""

    async def grant_permission(self, core: str) -> None:
        """Grant the core binary the rights it needs for tun mode; raises EscalationFailure."""

    async def restart_helper(self) -> None:
        """Restart the core sidecar process."""
