from __future__ import annotations

import asyncio
import logging

import pytest

from verge_guard.core.errors import EscalationFailure, StructuralQueryFailure
from verge_guard.core.escalation import PrivilegeEscalationFlow
from verge_guard.core.privileged_ops import PrivilegeCheckResult
from verge_guard.core.settings_model import TUN_MODE


def _flow(ops, platform, notices, **kwargs) -> PrivilegeEscalationFlow:
    return PrivilegeEscalationFlow(ops, platform, notice=notices.append, **kwargs)


@pytest.mark.parametrize("platform", ["macos", "linux"])
def test_grant_success_restarts_helper(ops, notices, platform) -> None:
    flow = _flow(ops, platform, notices, core_identity=lambda: "verge-mihomo-alpha")

    async def scenario():
        ok = await flow.escalate(TUN_MODE)
        await flow.wait_background()
        return ok

    assert asyncio.run(scenario()) is True
    assert ops.granted == ["verge-mihomo-alpha"]
    assert ops.calls == ["grant_permission", "restart_helper"]
    assert notices == []


def test_macos_grant_failure_skips_restart(ops, notices) -> None:
    ops.grant_error = EscalationFailure("osascript failed", user_message="User canceled.")
    flow = _flow(ops, "macos", notices)

    async def scenario():
        ok = await flow.escalate(TUN_MODE)
        await flow.wait_background()
        return ok

    assert asyncio.run(scenario()) is False
    assert ops.calls == ["grant_permission"]
    assert notices == ["User canceled."]


def test_helper_restart_failure_does_not_fail_escalation(ops, notices, caplog) -> None:
    ops.restart_error = RuntimeError("sidecar crashed")
    flow = _flow(ops, "linux", notices)

    async def scenario():
        ok = await flow.escalate(TUN_MODE)
        await flow.wait_background()
        return ok

    with caplog.at_level(logging.ERROR):
        assert asyncio.run(scenario()) is True
    assert "Helper restart failed" in caplog.text
    assert notices == []


@pytest.mark.parametrize("code", [0, 400])
def test_service_ready_needs_no_install(ops, notices, code) -> None:
    ops.check_result = PrivilegeCheckResult(code)
    flow = _flow(ops, "windows", notices)

    assert asyncio.run(flow.escalate(TUN_MODE)) is True
    assert ops.calls == ["check_service"]


def test_unexpected_status_code_installs_once(ops, notices) -> None:
    ops.check_result = PrivilegeCheckResult(403)
    flow = _flow(ops, "windows", notices)

    assert asyncio.run(flow.escalate(TUN_MODE)) is True
    assert ops.calls == ["check_service", "install_service"]
    assert notices == []


def test_install_failure_after_status_code_reports(ops, notices) -> None:
    ops.check_result = PrivilegeCheckResult(404)
    ops.install_error = EscalationFailure("installer exited 1", user_message="Service install refused.")
    flow = _flow(ops, "other", notices)

    assert asyncio.run(flow.escalate(TUN_MODE)) is False
    assert ops.calls == ["check_service", "install_service"]
    assert notices == ["Service install refused."]


def test_structural_query_failure_falls_back_to_install(ops, notices) -> None:
    ops.check_result = StructuralQueryFailure("sc is not available")
    flow = _flow(ops, "windows", notices)

    assert asyncio.run(flow.escalate(TUN_MODE)) is True
    assert ops.calls == ["check_service", "install_service"]


def test_structural_failure_and_install_failure_stops(ops, notices) -> None:
    ops.check_result = OSError("pipe closed")
    ops.install_error = EscalationFailure("nope", user_message="Installer missing.")
    flow = _flow(ops, "windows", notices)

    assert asyncio.run(flow.escalate(TUN_MODE)) is False
    assert ops.calls == ["check_service", "install_service"]
    assert notices == ["Installer missing."]


def test_escalation_is_reentrant_after_failure(ops, notices) -> None:
    ops.check_result = PrivilegeCheckResult(500)
    ops.install_error = EscalationFailure("nope")
    flow = _flow(ops, "windows", notices)

    async def scenario():
        first = await flow.escalate(TUN_MODE)
        ops.install_error = None
        second = await flow.escalate(TUN_MODE)
        return first, second

    assert asyncio.run(scenario()) == (False, True)
    assert ops.calls == ["check_service", "install_service", "check_service", "install_service"]


def test_hung_status_query_times_out_into_install(ops, notices) -> None:
    ops.hang.add("check_service")
    flow = _flow(ops, "windows", notices, timeout_s=0.05)

    assert asyncio.run(flow.escalate(TUN_MODE)) is True
    assert ops.calls == ["check_service", "install_service"]


def test_hung_grant_times_out(ops, notices) -> None:
    ops.hang.add("grant_permission")
    flow = _flow(ops, "linux", notices, timeout_s=0.05)

    assert asyncio.run(flow.escalate(TUN_MODE)) is False
    assert ops.calls == ["grant_permission"]
    assert len(notices) == 1
    assert "Timed out" in notices[0]


def test_missing_notice_sink_still_returns_false(ops) -> None:
    ops.grant_error = EscalationFailure("denied")
    flow = PrivilegeEscalationFlow(ops, "macos")

    assert asyncio.run(flow.escalate(TUN_MODE)) is False
