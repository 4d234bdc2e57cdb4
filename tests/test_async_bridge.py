from __future__ import annotations

import asyncio

import pytest

from verge_guard.core.async_bridge import AsyncBridge


async def _double(value: int) -> int:
    await asyncio.sleep(0)
    return value * 2


def test_submit_before_start_raises() -> None:
    bridge = AsyncBridge()
    with pytest.raises(RuntimeError):
        bridge.submit(_double(1))


def test_run_sync_returns_result_and_stops() -> None:
    bridge = AsyncBridge()
    bridge.start()
    try:
        assert bridge.is_running
        assert bridge.run_sync(_double(21), timeout=5) == 42
        future = bridge.submit(_double(2))
        assert future.result(timeout=5) == 4
    finally:
        bridge.stop()
    assert not bridge.is_running
