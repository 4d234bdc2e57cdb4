"""Wiring for the five system toggles.

Owns the rules that are specific to a field pair or to one control:

- on Windows, turning tun mode on also turns service mode on in the same patch;
- service mode can only be changed while the background service is active or
  installed.
"""

from __future__ import annotations

import logging
from typing import Any

from verge_guard.core.app_config import DEFAULT_OPERATION_TIMEOUT_S
from verge_guard.core.errors import ToggleDisabledError
from verge_guard.core.escalation import NoticeSink, PrivilegeEscalationFlow
from verge_guard.core.guarded_toggle import ErrorSink, GuardedToggle, ToggleRequest
from verge_guard.core.platform_info import PlatformName
from verge_guard.core.privileged_ops import (
    PrivilegeCheckResult,
    PrivilegedOps,
    ServiceCategory,
    category_of,
)
from verge_guard.core.settings_model import (
    AUTO_LAUNCH,
    DEFAULT_CLASH_CORE,
    SERVICE_MODE,
    SILENT_START,
    SYSTEM_FIELDS,
    SYSTEM_PROXY,
    TUN_MODE,
    SettingField,
    field_by_key,
)
from verge_guard.core.verge_store import ConfigStore

logger = logging.getLogger(__name__)

_SERVICE_USABLE: frozenset[ServiceCategory] = frozenset({"active", "installed"})


class SystemSettings:
    def __init__(
        self,
        store: ConfigStore,
        ops: PrivilegedOps,
        platform: PlatformName,
        *,
        notice: NoticeSink | None = None,
        on_error: ErrorSink | None = None,
        timeout_s: float = DEFAULT_OPERATION_TIMEOUT_S,
    ) -> None:
        self.store = store
        self.platform = platform
        self._ops = ops
        self.escalation = PrivilegeEscalationFlow(
            ops,
            platform,
            core_identity=self._core_identity,
            notice=notice,
            timeout_s=timeout_s,
        )
        self.toggle = GuardedToggle(store, self.escalation, on_error=on_error)
        self.service_status: ServiceCategory = "unknown"

    def _core_identity(self) -> str:
        return str(self.store.get("clash_core", DEFAULT_CLASH_CORE) or DEFAULT_CLASH_CORE)

    def values(self) -> dict[str, bool]:
        return {field.key: bool(self.store.get(field.key, False)) for field in SYSTEM_FIELDS}

    @property
    def service_mode_enabled(self) -> bool:
        return self.service_status in _SERVICE_USABLE

    async def refresh_service_status(self) -> ServiceCategory:
        result: PrivilegeCheckResult | None
        try:
            result = await self._ops.check_service()
        except Exception as exc:
            logger.warning("Service status unavailable: %s", exc)
            result = None
        self.service_status = category_of(result)
        logger.info("Service status: %s", self.service_status)
        return self.service_status

    async def set_tun_mode(self, value: bool) -> ToggleRequest:
        companions: dict[str, Any] = {}
        if value and self.platform == "windows":
            companions = dict.fromkeys(TUN_MODE.companions, True)
        return await self.toggle.attempt_change(TUN_MODE, value, companions=companions)

    async def set_service_mode(self, value: bool) -> ToggleRequest:
        if not self.service_mode_enabled:
            raise ToggleDisabledError(
                f"Service mode is disabled (service status: {self.service_status})",
                user_message="Install the background service before enabling service mode.",
            )
        return await self.toggle.attempt_change(SERVICE_MODE, value)

    async def set_system_proxy(self, value: bool) -> ToggleRequest:
        return await self.toggle.attempt_change(SYSTEM_PROXY, value)

    async def set_auto_launch(self, value: bool) -> ToggleRequest:
        return await self.toggle.attempt_change(AUTO_LAUNCH, value)

    async def set_silent_start(self, value: bool) -> ToggleRequest:
        return await self.toggle.attempt_change(SILENT_START, value)

    async def set(self, field: SettingField | str, value: bool) -> ToggleRequest:
        if isinstance(field, str):
            field = field_by_key(field)
        setter = {
            TUN_MODE.key: self.set_tun_mode,
            SERVICE_MODE.key: self.set_service_mode,
            SYSTEM_PROXY.key: self.set_system_proxy,
            AUTO_LAUNCH.key: self.set_auto_launch,
            SILENT_START.key: self.set_silent_start,
        }[field.key]
        return await setter(value)
