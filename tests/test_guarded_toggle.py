from __future__ import annotations

import asyncio
import json

import pytest

import verge_guard.core.verge_store as vs
from verge_guard.core.errors import EscalationFailure, GuardFailure
from verge_guard.core.escalation import PrivilegeEscalationFlow
from verge_guard.core.guarded_toggle import GuardedToggle
from verge_guard.core.settings_model import AUTO_LAUNCH, SYSTEM_PROXY, TUN_MODE


class _RaisingEscalation:
    async def escalate(self, field):
        raise RuntimeError("helper socket closed")


def _broken_write(monkeypatch) -> None:
    def boom(path, data, **_kwargs):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr(vs, "atomic_write_json", boom)


def test_commit_without_escalation_persists(store, ops, patches) -> None:
    errors: list[GuardFailure] = []
    toggle = GuardedToggle(store, PrivilegeEscalationFlow(ops, "linux"), on_error=errors.append)

    request = asyncio.run(toggle.attempt_change(SYSTEM_PROXY, True))

    assert request.status == "committed"
    assert request.previous is False
    assert store.get("enable_system_proxy") is True
    assert store.committed("enable_system_proxy") is True
    assert patches == [{"enable_system_proxy": True}]
    assert json.loads(store.path.read_text(encoding="utf-8"))["enable_system_proxy"] is True
    assert ops.calls == []
    assert errors == []


def test_persistence_failure_rolls_back(store, monkeypatch) -> None:
    _broken_write(monkeypatch)
    errors: list[GuardFailure] = []
    toggle = GuardedToggle(store, on_error=errors.append)

    request = asyncio.run(toggle.attempt_change(AUTO_LAUNCH, True))

    assert request.status == "rolled_back"
    assert store.get("enable_auto_launch") is False
    assert store.committed("enable_auto_launch") is False
    assert len(errors) == 1
    assert errors[0].field == "enable_auto_launch"
    assert "Permission denied" in errors[0].user_message
    assert request.error is errors[0]


def test_escalation_failure_rolls_back_without_persisting(store, ops, patches, notices) -> None:
    ops.grant_error = EscalationFailure("setcap failed", user_message="Operation not permitted")
    errors: list[GuardFailure] = []
    flow = PrivilegeEscalationFlow(ops, "macos", notice=notices.append)
    toggle = GuardedToggle(store, flow, on_error=errors.append)

    async def scenario():
        request = await toggle.attempt_change(TUN_MODE, True)
        await flow.wait_background()
        return request

    request = asyncio.run(scenario())

    assert request.status == "rolled_back"
    assert store.get("enable_tun_mode") is False
    assert patches == []
    assert ops.calls == ["grant_permission"]
    assert notices == ["Operation not permitted"]
    assert [e.field for e in errors] == ["enable_tun_mode"]


def test_escalation_exception_rolls_back(store) -> None:
    errors: list[GuardFailure] = []
    toggle = GuardedToggle(store, _RaisingEscalation(), on_error=errors.append)

    request = asyncio.run(toggle.attempt_change(TUN_MODE, True))

    assert request.status == "rolled_back"
    assert store.get("enable_tun_mode") is False
    assert "helper socket closed" in errors[0].reason


def test_disable_never_escalates(store, ops, patches) -> None:
    asyncio.run(store.patch({"enable_tun_mode": True}))
    store.mutate({"enable_tun_mode": True})
    patches.clear()
    toggle = GuardedToggle(store, PrivilegeEscalationFlow(ops, "windows"))

    request = asyncio.run(toggle.attempt_change(TUN_MODE, False))

    assert request.status == "committed"
    assert ops.calls == []
    assert patches == [{"enable_tun_mode": False}]
    assert store.get("enable_tun_mode") is False


def test_same_value_is_idempotent(store, patches) -> None:
    toggle = GuardedToggle(store)

    request = asyncio.run(toggle.attempt_change(SYSTEM_PROXY, False))

    assert request.status == "committed"
    assert store.get("enable_system_proxy") is False
    assert patches == [{"enable_system_proxy": False}]


def test_value_is_rendered_before_guard_resolves(store, ops) -> None:
    flow = PrivilegeEscalationFlow(ops, "windows")
    toggle = GuardedToggle(store, flow)
    seen: list[dict] = []
    store.subscribe(seen.append)

    async def scenario():
        gate = ops.gate("check_service")
        task = asyncio.create_task(toggle.attempt_change(TUN_MODE, True))
        await asyncio.sleep(0)
        rendered = store.get("enable_tun_mode")
        persisted = store.committed("enable_tun_mode")
        gate.set()
        request = await task
        return rendered, persisted, request

    rendered, persisted, request = asyncio.run(scenario())

    assert rendered is True
    assert persisted is False
    assert request.status == "committed"
    assert seen[0]["enable_tun_mode"] is True


def test_other_fields_are_not_blocked_by_pending_escalation(store, ops) -> None:
    toggle = GuardedToggle(store, PrivilegeEscalationFlow(ops, "windows"))

    async def scenario():
        gate = ops.gate("check_service")
        tun = asyncio.create_task(toggle.attempt_change(TUN_MODE, True))
        await asyncio.sleep(0)
        proxy = await toggle.attempt_change(SYSTEM_PROXY, True)
        tun_pending = not tun.done()
        gate.set()
        return proxy, tun_pending, await tun

    proxy, tun_pending, tun = asyncio.run(scenario())

    assert proxy.status == "committed"
    assert tun_pending is True
    assert tun.status == "committed"
    assert store.persisted["enable_system_proxy"] is True
    assert store.persisted["enable_tun_mode"] is True


def test_stale_failure_does_not_undo_newer_request(store, ops, notices) -> None:
    ops.grant_error = EscalationFailure("denied")
    flow = PrivilegeEscalationFlow(ops, "linux", notice=notices.append)
    errors: list[GuardFailure] = []
    toggle = GuardedToggle(store, flow, on_error=errors.append)

    async def scenario():
        gate = ops.gate("grant_permission")
        first = asyncio.create_task(toggle.attempt_change(TUN_MODE, True))
        await asyncio.sleep(0)
        second = asyncio.create_task(toggle.attempt_change(TUN_MODE, False))
        await asyncio.sleep(0)
        gate.set()
        return await first, await second

    first, second = asyncio.run(scenario())

    assert first.status == "rolled_back"
    assert second.status == "committed"
    assert store.get("enable_tun_mode") is False
    assert store.committed("enable_tun_mode") is False
    assert len(errors) == 1


def test_overlapping_requests_converge_on_last(store, ops) -> None:
    toggle = GuardedToggle(store, PrivilegeEscalationFlow(ops, "windows"))

    async def scenario():
        gate = ops.gate("check_service")
        first = asyncio.create_task(toggle.attempt_change(TUN_MODE, True))
        await asyncio.sleep(0)
        second = asyncio.create_task(toggle.attempt_change(TUN_MODE, False))
        await asyncio.sleep(0)
        gate.set()
        return await first, await second

    first, second = asyncio.run(scenario())

    assert first.status == "committed"
    assert second.status == "committed"
    assert store.get("enable_tun_mode") is False
    assert store.committed("enable_tun_mode") is False


def test_newest_failure_reverts_to_committed_value(store, ops, monkeypatch) -> None:
    toggle = GuardedToggle(store)
    asyncio.run(toggle.attempt_change(SYSTEM_PROXY, True))
    _broken_write(monkeypatch)

    request = asyncio.run(toggle.attempt_change(SYSTEM_PROXY, False))

    assert request.status == "rolled_back"
    assert request.previous is True
    assert store.get("enable_system_proxy") is True
    assert store.committed("enable_system_proxy") is True


@pytest.mark.parametrize("outcome", ["grant_fails", "write_fails", "ok"])
def test_view_and_store_converge(store, ops, monkeypatch, outcome) -> None:
    if outcome == "grant_fails":
        ops.grant_error = EscalationFailure("denied")
    if outcome == "write_fails":
        _broken_write(monkeypatch)
    flow = PrivilegeEscalationFlow(ops, "linux")
    toggle = GuardedToggle(store, flow)

    async def scenario():
        request = await toggle.attempt_change(TUN_MODE, True)
        await flow.wait_background()
        return request

    request = asyncio.run(scenario())

    assert store.get("enable_tun_mode") == store.committed("enable_tun_mode")
    assert store.get("enable_tun_mode") is (outcome == "ok")
    assert request.resolved
