"""Application entry point."""

from __future__ import annotations

import logging
import sys

from PyQt6.QtWidgets import QApplication

from verge_guard.core.app_config import load_app_config
from verge_guard.core.async_bridge import AsyncBridge
from verge_guard.core.errors import BinaryMissingError
from verge_guard.core.helper_process import HelperProcess
from verge_guard.core.logging_setup import setup_logging
from verge_guard.core.native_ops import NativePrivilegedOps, resolve_core_path
from verge_guard.core.platform_info import detect_platform
from verge_guard.core.settings_model import DEFAULT_CLASH_CORE
from verge_guard.core.storage import ensure_dirs
from verge_guard.core.system_settings import SystemSettings
from verge_guard.core.verge_store import VergeStore
from verge_guard.ui.main_window import NoticeRelay, SettingsWindow

logger = logging.getLogger(__name__)


def main() -> int:
    ensure_dirs()
    log_path = setup_logging()
    logger.info("Logging to %s", log_path)

    platform = detect_platform()
    app_config = load_app_config()
    store = VergeStore()
    store.load()

    core = str(store.get("clash_core", DEFAULT_CLASH_CORE))
    try:
        core_path = resolve_core_path(core, platform, app_config.core_dir)
    except BinaryMissingError:
        logger.warning("Core binary %s not found; helper restarts will fail", core)
        core_path = None
    helper = HelperProcess(core_path, app_config.helper_args)
    ops = NativePrivilegedOps(platform, app_config, helper=helper)

    app = QApplication(sys.argv)
    app.setApplicationName("verge-guard")
    relay = NoticeRelay()

    bridge = AsyncBridge()
    bridge.start()

    settings = SystemSettings(
        store,
        ops,
        platform,
        notice=relay.notice,
        on_error=relay.guard_failed,
        timeout_s=app_config.operation_timeout_s,
    )
    window = SettingsWindow(
        settings=settings,
        store=store,
        bridge=bridge,
        app_config=app_config,
        relay=relay,
    )
    window.show()

    try:
        return app.exec()
    finally:
        try:
            bridge.run_sync(settings.escalation.wait_background(), timeout=app_config.operation_timeout_s)
        except Exception:
            logger.exception("Helper restart still pending at exit")
        bridge.stop()
        helper.stop()


if __name__ == "__main__":
    sys.exit(main())
