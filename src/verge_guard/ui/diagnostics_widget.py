"""Diagnostics panel widget."""

from __future__ import annotations

from concurrent.futures import Future
import asyncio
import logging

from PyQt6.QtCore import Qt, QUrl, pyqtSignal
from PyQt6.QtGui import QDesktopServices
from PyQt6.QtWidgets import (
    QApplication,
    QHBoxLayout,
    QLabel,
    QPushButton,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from verge_guard.core.app_config import AppConfig
from verge_guard.core.async_bridge import AsyncBridge
from verge_guard.core.diagnostics import collect_diagnostics
from verge_guard.core.storage import get_logs_dir
from verge_guard.core.verge_store import VergeStore

logger = logging.getLogger(__name__)


class DiagnosticsWidget(QWidget):
    report_ready = pyqtSignal(str)

    def __init__(
        self,
        bridge: AsyncBridge,
        store: VergeStore,
        app_config: AppConfig,
        parent: QWidget | None = None,
    ) -> None:
        super().__init__(parent)
        self._bridge = bridge
        self._store = store
        self._app_config = app_config

        self.hint_label = QLabel("")
        self.hint_label.setAlignment(Qt.AlignmentFlag.AlignLeft | Qt.AlignmentFlag.AlignVCenter)

        self.text_area = QTextEdit()
        self.text_area.setReadOnly(True)
        self.text_area.setLineWrapMode(QTextEdit.LineWrapMode.NoWrap)

        self.refresh_button = QPushButton("Refresh")
        self.copy_button = QPushButton("Copy report")
        self.open_logs_button = QPushButton("Open logs folder")

        self.refresh_button.clicked.connect(self.refresh)
        self.copy_button.clicked.connect(self.copy_report)
        self.open_logs_button.clicked.connect(self.open_logs_folder)
        self.report_ready.connect(self._on_report)

        button_row = QHBoxLayout()
        button_row.setSpacing(8)
        button_row.addWidget(self.refresh_button)
        button_row.addWidget(self.copy_button)
        button_row.addWidget(self.open_logs_button)
        button_row.addStretch(1)

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(10)
        layout.addWidget(self.hint_label)
        layout.addLayout(button_row)
        layout.addWidget(self.text_area, 1)
        self.setLayout(layout)

    def refresh(self) -> None:
        self.hint_label.setText("")
        self.text_area.setPlainText("Refreshing diagnostics...")
        self.refresh_button.setEnabled(False)
        future = self._bridge.submit(self._collect())
        future.add_done_callback(self._on_done)

    async def _collect(self) -> str:
        return await asyncio.to_thread(collect_diagnostics, self._store, self._app_config)

    def _on_done(self, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("Diagnostics failed", exc_info=exc)
            self.report_ready.emit(f"Diagnostics error: {exc}")
            return
        self.report_ready.emit(future.result())

    def _on_report(self, text: str) -> None:
        self.text_area.setPlainText(text)
        self.refresh_button.setEnabled(True)

    def copy_report(self) -> None:
        QApplication.clipboard().setText(self.text_area.toPlainText())
        self.hint_label.setText("Diagnostics copied to clipboard.")

    def open_logs_folder(self) -> None:
        logs_dir = get_logs_dir()
        QDesktopServices.openUrl(QUrl.fromLocalFile(str(logs_dir)))
        self.hint_label.setText(f"Opened logs folder: {logs_dir}")
