"""Privilege escalation performed before a guarded toggle may turn on.

macOS / Linux grant the core binary its capabilities and restart the helper.
Windows and everything else make sure the background service is installed:

    check_service ──ok/400──────────────▶ True
         │ other code     │ query failed
         ▼                ▼
    install_service   install_service (fallback, once)
         │                │
         ▼                ▼
    True / False      True / False

At most two privileged operations run per call and no state is kept between
calls, so a failed escalation can simply be attempted again.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from verge_guard.core.app_config import DEFAULT_OPERATION_TIMEOUT_S
from verge_guard.core.errors import AppError, OperationTimeoutError, StructuralQueryFailure
from verge_guard.core.platform_info import PlatformName
from verge_guard.core.privileged_ops import PrivilegeCheckResult, PrivilegedOps
from verge_guard.core.settings_model import DEFAULT_CLASH_CORE, SettingField

logger = logging.getLogger(__name__)

NoticeSink = Callable[[str], None]

T = TypeVar("T")


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, AppError):
        return exc.user_message
    return str(exc) or type(exc).__name__


class PrivilegeEscalationFlow:
    def __init__(
        self,
        ops: PrivilegedOps,
        platform: PlatformName,
        *,
        core_identity: Callable[[], str] | None = None,
        notice: NoticeSink | None = None,
        timeout_s: float = DEFAULT_OPERATION_TIMEOUT_S,
    ) -> None:
        self._ops = ops
        self.platform = platform
        self._core_identity = core_identity or (lambda: DEFAULT_CLASH_CORE)
        self._notice = notice
        self._timeout_s = timeout_s
        self._background: set[asyncio.Task[None]] = set()

    async def escalate(self, field: SettingField) -> bool:
        logger.info("Escalating for %s on %s", field.key, self.platform)
        if self.platform in ("macos", "linux"):
            return await self._grant_and_restart()
        return await self._ensure_service()

    async def wait_background(self) -> None:
        """Wait for scheduled helper restarts to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _grant_and_restart(self) -> bool:
        core = self._core_identity()
        try:
            await self._bounded(self._ops.grant_permission(core), f"grant permission for {core}")
        except Exception as exc:
            self._report(f"Failed to grant permission for {core}", exc)
            return False

        task = asyncio.create_task(self._restart_helper())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return True

    async def _restart_helper(self) -> None:
        try:
            await self._bounded(self._ops.restart_helper(), "restart helper")
        except Exception:
            logger.exception("Helper restart failed")

    async def _ensure_service(self) -> bool:
        try:
            result: PrivilegeCheckResult = await self._bounded(
                self._ops.check_service(), "check service"
            )
        except Exception as exc:
            if not isinstance(exc, StructuralQueryFailure):
                exc = StructuralQueryFailure(str(exc) or type(exc).__name__)
            logger.warning("Service status query failed (%s); installing as fallback", exc)
            return await self._install()

        logger.info("Service status code=%s category=%s", result.code, result.category)
        if not result.needs_install:
            return True
        return await self._install()

    async def _install(self) -> bool:
        try:
            await self._bounded(self._ops.install_service(), "install service")
        except Exception as exc:
            self._report("Failed to install service", exc)
            return False
        logger.info("Service installed")
        return True

    async def _bounded(self, awaitable: Awaitable[T], what: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout_s)
        except asyncio.TimeoutError as exc:
            raise OperationTimeoutError(
                f"Timed out after {self._timeout_s:g}s: {what}",
                user_message=f"Timed out while trying to {what}.",
            ) from exc

    def _report(self, context: str, exc: BaseException) -> None:
        message = _error_text(exc)
        logger.error("%s: %s", context, message)
        if self._notice is not None:
            self._notice(message)
