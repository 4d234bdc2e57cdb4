"""Settings window."""

from __future__ import annotations

import logging

from PyQt6.QtCore import QObject, Qt, pyqtSignal
from PyQt6.QtWidgets import QLabel, QMainWindow, QMessageBox, QTabWidget, QVBoxLayout, QWidget

from verge_guard.core.app_config import AppConfig
from verge_guard.core.async_bridge import AsyncBridge
from verge_guard.core.errors import GuardFailure
from verge_guard.core.settings_model import field_by_key
from verge_guard.core.system_settings import SystemSettings
from verge_guard.core.verge_store import VergeStore
from verge_guard.ui.diagnostics_widget import DiagnosticsWidget
from verge_guard.ui.system_settings_panel import SystemSettingsPanel

logger = logging.getLogger(__name__)


class NoticeRelay(QObject):
    """Thread-safe sink for notices raised on the loop thread."""

    message = pyqtSignal(str)

    def notice(self, text: str) -> None:
        self.message.emit(text)

    def guard_failed(self, failure: GuardFailure) -> None:
        self.message.emit(failure.user_message)


class SettingsWindow(QMainWindow):
    def __init__(
        self,
        *,
        settings: SystemSettings,
        store: VergeStore,
        bridge: AsyncBridge,
        app_config: AppConfig,
        relay: NoticeRelay,
    ) -> None:
        super().__init__()
        self.setWindowTitle("Settings")
        self.resize(560, 420)
        self._bridge = bridge

        self.notice_label = QLabel("")
        self.notice_label.setWordWrap(True)
        self.notice_label.setStyleSheet("color: #c62828; font-weight: 600;")
        self.notice_label.setAlignment(Qt.AlignmentFlag.AlignLeft | Qt.AlignmentFlag.AlignVCenter)
        relay.message.connect(self.show_notice)

        self.system_panel = SystemSettingsPanel(settings, store, bridge)
        self.system_panel.notice.connect(self.show_notice)
        self.system_panel.detail_requested.connect(self._on_detail_requested)

        settings_page = QWidget()
        settings_layout = QVBoxLayout()
        settings_layout.addWidget(self.system_panel)
        settings_layout.addStretch(1)
        settings_page.setLayout(settings_layout)

        self.diagnostics_widget = DiagnosticsWidget(bridge, store, app_config)

        tabs = QTabWidget()
        tabs.addTab(settings_page, "Settings")
        tabs.addTab(self.diagnostics_widget, "Diagnostics")
        tabs.currentChanged.connect(self._on_tab_changed)
        self._tabs = tabs

        central = QWidget(self)
        layout = QVBoxLayout()
        layout.addWidget(self.notice_label)
        layout.addWidget(tabs, 1)
        central.setLayout(layout)
        self.setCentralWidget(central)

        if store.last_load_error:
            self.show_notice(store.last_load_error)

    def show_notice(self, text: str) -> None:
        logger.info("Notice: %s", text)
        self.notice_label.setText(text)

    def _on_tab_changed(self, index: int) -> None:
        if self._tabs.widget(index) is self.diagnostics_widget:
            self.diagnostics_widget.refresh()

    def _on_detail_requested(self, key: str) -> None:
        field = field_by_key(key)
        QMessageBox.information(self, field.label, field.info or field.label)
