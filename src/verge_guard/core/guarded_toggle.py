"""Optimistic boolean toggles guarded by an async side effect.

``attempt_change`` renders the requested value right away, then confirms it
(escalation when the field needs it, then a store patch) and compensates by
reverting the view when confirmation fails.

Requests for the same field are serialized. Each rendered key carries a
generation number so a request that was overtaken by a newer one for the same
key never reverts what the newer request rendered. When the newest request for
a key fails while an older one is still pending, the key goes back to the
older request's value and ownership, not to the committed value.

Companion keys are always committed together with their field, so a paired
value is never persisted without its field.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field as dc_field
import logging
from typing import Any, Callable, Literal, Mapping

from verge_guard.core.errors import AppError, GuardFailure
from verge_guard.core.escalation import PrivilegeEscalationFlow
from verge_guard.core.settings_model import SettingField
from verge_guard.core.verge_store import ConfigStore

logger = logging.getLogger(__name__)

ToggleStatus = Literal["pending", "committed", "rolled_back"]
ErrorSink = Callable[[GuardFailure], None]


@dataclass(slots=True)
class ToggleRequest:
    field: SettingField
    previous: bool
    requested: bool
    patch: dict[str, Any]
    generations: dict[str, int] = dc_field(default_factory=dict)
    status: ToggleStatus = "pending"
    error: GuardFailure | None = None

    @property
    def resolved(self) -> bool:
        return self.status != "pending"


class GuardedToggle:
    def __init__(
        self,
        store: ConfigStore,
        escalation: PrivilegeEscalationFlow | None = None,
        *,
        on_error: ErrorSink | None = None,
    ) -> None:
        self._store = store
        self._escalation = escalation
        self._on_error = on_error
        self._generations: dict[str, int] = {}
        # key -> {generation: rendered value} for requests still in flight
        self._pending: dict[str, dict[int, Any]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def value(self, field: SettingField) -> bool:
        return bool(self._store.get(field.key, False))

    async def attempt_change(
        self,
        field: SettingField,
        requested: bool,
        *,
        companions: Mapping[str, Any] | None = None,
    ) -> ToggleRequest:
        requested = bool(requested)
        patch: dict[str, Any] = {**(companions or {}), field.key: requested}
        request = ToggleRequest(
            field=field,
            previous=self.value(field),
            requested=requested,
            patch=patch,
        )
        self._render(request)

        lock = self._locks.setdefault(field.key, asyncio.Lock())
        async with lock:
            try:
                failure = await self._confirm(request)
            except AppError as exc:
                failure = GuardFailure(field.key, str(exc), user_message=exc.user_message)
            except Exception as exc:
                logger.exception("Unexpected error while changing %s", field.key)
                failure = GuardFailure(field.key, str(exc) or type(exc).__name__)

            try:
                if failure is None:
                    request.status = "committed"
                    logger.info("Committed %s", request.patch)
                    self._resync(request)
                else:
                    self._rollback(request, failure)
            finally:
                self._settle(request)
        return request

    def _render(self, request: ToggleRequest) -> None:
        for key in request.patch:
            generation = self._generations.get(key, 0) + 1
            self._generations[key] = generation
            request.generations[key] = generation
            self._pending.setdefault(key, {})[generation] = request.patch[key]
        self._store.mutate(request.patch, revalidate=False)

    async def _confirm(self, request: ToggleRequest) -> GuardFailure | None:
        field = request.field
        if field.requires_escalation and request.requested:
            if self._escalation is None:
                return GuardFailure(field.key, "no escalation flow configured")
            if not await self._escalation.escalate(field):
                return GuardFailure(
                    field.key,
                    "privilege escalation failed",
                    user_message=f"{field.label} could not be enabled: missing privileges.",
                )
        await self._store.patch(request.patch)
        return None

    def _others_pending(self, key: str, generation: int) -> dict[int, Any]:
        return {g: v for g, v in self._pending.get(key, {}).items() if g != generation}

    def _settle(self, request: ToggleRequest) -> None:
        for key, generation in request.generations.items():
            pending = self._pending.get(key)
            if pending is None:
                continue
            pending.pop(generation, None)
            if not pending:
                del self._pending[key]

    def _resync(self, request: ToggleRequest) -> None:
        # Keys a newer, already settled request rendered may now be stale.
        stale: dict[str, Any] = {}
        for key, generation in request.generations.items():
            if self._generations.get(key) == generation:
                continue
            if self._others_pending(key, generation):
                continue
            stale[key] = bool(self._store.committed(key, False))
        if stale:
            self._store.mutate(stale, revalidate=False)

    def _rollback(self, request: ToggleRequest, failure: GuardFailure) -> None:
        request.status = "rolled_back"
        request.error = failure

        revert: dict[str, Any] = {}
        for key, generation in request.generations.items():
            if self._generations.get(key) != generation:
                logger.info("Skipping rollback of %s; a newer request owns it", key)
                continue
            others = self._others_pending(key, generation)
            if others:
                owner = max(others)
                self._generations[key] = owner
                revert[key] = others[owner]
            else:
                revert[key] = bool(self._store.committed(key, False))
        if revert:
            self._store.mutate(revert, revalidate=False)

        logger.warning("Rolled back %s: %s", request.field.key, failure.reason)
        if self._on_error is not None:
            self._on_error(failure)
