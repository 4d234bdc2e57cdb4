from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from verge_guard.core.privileged_ops import SERVICE_OK, PrivilegeCheckResult
from verge_guard.core.verge_store import VergeStore


class FakeOps:
    """Scripted PrivilegedOps that records every call."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.granted: list[str] = []
        self.check_result: PrivilegeCheckResult | BaseException = PrivilegeCheckResult(SERVICE_OK)
        self.install_error: BaseException | None = None
        self.grant_error: BaseException | None = None
        self.restart_error: BaseException | None = None
        self.hang: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}

    def gate(self, name: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[name] = event
        return event

    async def _enter(self, name: str) -> None:
        self.calls.append(name)
        if name in self.hang:
            await asyncio.Event().wait()
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()

    async def check_service(self) -> PrivilegeCheckResult:
        await self._enter("check_service")
        if isinstance(self.check_result, BaseException):
            raise self.check_result
        return self.check_result

    async def install_service(self) -> None:
        await self._enter("install_service")
        if self.install_error is not None:
            raise self.install_error

    async def grant_permission(self, core: str) -> None:
        self.granted.append(core)
        await self._enter("grant_permission")
        if self.grant_error is not None:
            raise self.grant_error

    async def restart_helper(self) -> None:
        await self._enter("restart_helper")
        if self.restart_error is not None:
            raise self.restart_error


@pytest.fixture
def ops() -> FakeOps:
    return FakeOps()


@pytest.fixture
def store(tmp_path: Path) -> VergeStore:
    store = VergeStore(path=tmp_path / "verge.json")
    store.load()
    return store


@pytest.fixture
def patches(store: VergeStore, monkeypatch) -> list[dict[str, Any]]:
    """Every partial passed to ``store.patch``, in call order."""
    recorded: list[dict[str, Any]] = []
    original = store.patch

    async def spy(partial):
        recorded.append(dict(partial))
        await original(partial)

    monkeypatch.setattr(store, "patch", spy)
    return recorded


@pytest.fixture
def notices() -> list[str]:
    return []
