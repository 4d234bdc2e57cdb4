"""The "System Setting" group: five guarded switches."""

from __future__ import annotations

from concurrent.futures import Future
import logging

from PyQt6.QtCore import Qt, pyqtSignal
from PyQt6.QtWidgets import (
    QCheckBox,
    QGridLayout,
    QGroupBox,
    QLabel,
    QToolButton,
    QWidget,
)

from verge_guard.core.async_bridge import AsyncBridge
from verge_guard.core.errors import AppError
from verge_guard.core.settings_model import SERVICE_MODE, SYSTEM_FIELDS, TUN_MODE, SettingField
from verge_guard.core.system_settings import SystemSettings
from verge_guard.core.verge_store import VergeStore

logger = logging.getLogger(__name__)

# Fields with an info button that opens a detail view.
DETAIL_FIELDS = (TUN_MODE.key, SERVICE_MODE.key)


class SystemSettingsPanel(QGroupBox):
    # Emitted from the loop thread; Qt queues them onto the GUI thread.
    view_changed = pyqtSignal(dict)
    service_status_changed = pyqtSignal(str)
    notice = pyqtSignal(str)

    detail_requested = pyqtSignal(str)

    def __init__(
        self,
        settings: SystemSettings,
        store: VergeStore,
        bridge: AsyncBridge,
        parent: QWidget | None = None,
    ) -> None:
        super().__init__("System Setting", parent)
        self._settings = settings
        self._bridge = bridge
        self.switches: dict[str, QCheckBox] = {}

        grid = QGridLayout()
        grid.setHorizontalSpacing(10)
        grid.setVerticalSpacing(8)
        grid.setColumnStretch(0, 1)

        for row, field in enumerate(SYSTEM_FIELDS):
            label = QLabel(field.label)
            if field.info:
                label.setToolTip(field.info)
            grid.addWidget(label, row, 0)

            if field.key in DETAIL_FIELDS:
                info_button = QToolButton()
                info_button.setText("ⓘ")
                info_button.setAutoRaise(True)
                info_button.setToolTip(field.info or "")
                info_button.clicked.connect(
                    lambda _checked=False, key=field.key: self.detail_requested.emit(key)
                )
                grid.addWidget(info_button, row, 1)

            switch = QCheckBox()
            switch.setObjectName(field.key)
            switch.setChecked(field.value_in(store.verge))
            switch.clicked.connect(lambda checked, f=field: self._on_switch_clicked(f, checked))
            grid.addWidget(switch, row, 2, alignment=Qt.AlignmentFlag.AlignRight)
            self.switches[field.key] = switch

        self.setLayout(grid)

        self.view_changed.connect(self._apply_view)
        self.service_status_changed.connect(self._apply_service_status)
        self._apply_service_status(settings.service_status)

        store.subscribe(self.view_changed.emit)
        self.refresh_service_status()

    def refresh_service_status(self) -> None:
        future = self._bridge.submit(self._settings.refresh_service_status())
        future.add_done_callback(self._on_status_done)

    def _on_switch_clicked(self, field: SettingField, checked: bool) -> None:
        logger.info("User toggled %s -> %s", field.key, checked)
        future = self._bridge.submit(self._settings.set(field, checked))
        future.add_done_callback(lambda f: self._on_request_done(field, f))

    def _on_request_done(self, field: SettingField, future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            if isinstance(exc, AppError):
                self.notice.emit(exc.user_message)
            else:
                logger.error("Toggle of %s failed", field.key, exc_info=exc)
                self.notice.emit(str(exc))
            # The view never changed, so put the switch back where the store is.
            self.view_changed.emit(self._settings.values())
            return
        if field.key == TUN_MODE.key:
            # Enabling tun mode may have installed the service.
            self.refresh_service_status()

    def _on_status_done(self, future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self.service_status_changed.emit(str(future.result()))

    def _apply_view(self, verge: dict) -> None:
        for key, switch in self.switches.items():
            value = bool(verge.get(key, False))
            if switch.isChecked() != value:
                switch.setChecked(value)

    def _apply_service_status(self, status: str) -> None:
        switch = self.switches[SERVICE_MODE.key]
        switch.setEnabled(status in ("active", "installed"))
        switch.setToolTip(f"Service status: {status}")
