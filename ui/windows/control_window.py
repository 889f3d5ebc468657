from __future__ import annotations

from PySide6 import QtCore
from PySide6.QtWidgets import (
    QCheckBox,
    QComboBox,
    QHBoxLayout,
    QLabel,
    QListWidget,
    QPlainTextEdit,
    QPushButton,
    QSlider,
    QSpinBox,
    QVBoxLayout,
    QWidget,
)

from engine.tuning import MIN_CHAOS_INTERVAL_MS, CadenceMode
from gui.engine_adapter import EngineAdapter
from persistence.preferences import Preferences

MAX_LOG_LINES = 500


class ControlWindow(QWidget):
    """Small control panel: arm, preload, test, volume, interval, shout, scene."""

    def __init__(self, adapter: EngineAdapter, prefs: Preferences, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.adapter = adapter
        self.prefs = prefs
        self.setWindowTitle('Idle Sounds')
        self.resize(420, 560)

        self.status_label = QLabel('...')
        self.status_label.setFixedHeight(24)
        self.status_label.setAlignment(QtCore.Qt.AlignmentFlag.AlignCenter)

        self.arm_btn = QPushButton('Enable audio')
        self.preload_btn = QPushButton('Preload')
        self.test_btn = QPushButton('Test sound')

        self.volume_slider = QSlider(QtCore.Qt.Orientation.Horizontal)
        self.volume_slider.setRange(0, 100)
        self.volume_slider.setValue(int(round(prefs.volume() * 100)))

        self.interval_spin = QSpinBox()
        self.interval_spin.setRange(MIN_CHAOS_INTERVAL_MS, 10_000)
        self.interval_spin.setSingleStep(10)
        self.interval_spin.setSuffix(' ms')
        self.interval_spin.setValue(prefs.interval_ms())

        self.mode_combo = QComboBox()
        for mode in CadenceMode:
            self.mode_combo.addItem(mode.value.capitalize(), mode.value)
        self.mode_combo.setCurrentIndex(max(0, self.mode_combo.findData(prefs.mode().value)))

        self.shout_check = QCheckBox('Shout')
        self.shout_check.setChecked(prefs.shout_enabled())
        self.shout_check.setEnabled(prefs.shout_url() is not None)

        self.scene_check = QCheckBox('Scene open')

        self.file_list = QListWidget()
        self.log_view = QPlainTextEdit()
        self.log_view.setReadOnly(True)
        self.log_view.setMaximumBlockCount(MAX_LOG_LINES)

        buttons = QHBoxLayout()
        buttons.addWidget(self.arm_btn)
        buttons.addWidget(self.preload_btn)
        buttons.addWidget(self.test_btn)

        cadence = QHBoxLayout()
        cadence.addWidget(QLabel('Mode'))
        cadence.addWidget(self.mode_combo)
        cadence.addWidget(QLabel('Interval'))
        cadence.addWidget(self.interval_spin)

        toggles = QHBoxLayout()
        toggles.addWidget(self.shout_check)
        toggles.addWidget(self.scene_check)

        layout = QVBoxLayout(self)
        layout.addWidget(self.status_label)
        layout.addLayout(buttons)
        layout.addWidget(QLabel('Volume'))
        layout.addWidget(self.volume_slider)
        layout.addLayout(cadence)
        layout.addLayout(toggles)
        layout.addWidget(QLabel('Sounds'))
        layout.addWidget(self.file_list, 1)
        layout.addWidget(QLabel('Log'))
        layout.addWidget(self.log_view, 1)

        self.arm_btn.clicked.connect(adapter.on_user_arm)
        self.preload_btn.clicked.connect(adapter.on_preload_requested)
        self.test_btn.clicked.connect(adapter.on_test_requested)
        self.volume_slider.valueChanged.connect(lambda v: adapter.on_volume_changed(v / 100.0))
        self.interval_spin.valueChanged.connect(adapter.on_interval_changed)
        self.mode_combo.currentIndexChanged.connect(lambda _i: adapter.on_mode_changed(self.mode_combo.currentData()))
        self.shout_check.toggled.connect(adapter.on_shout_toggle)
        self.scene_check.toggled.connect(adapter.on_scene_toggle)

        adapter.status_changed.connect(self.render_status)
        adapter.file_list_changed.connect(self.render_file_list)
        adapter.log_line.connect(self.append_log_line)
        adapter.permission_required.connect(self.on_permission_required)
        adapter.gate_state_changed.connect(self.on_gate_state)

    def render_status(self, text: str, color: str) -> None:
        self.status_label.setText(text)
        self.status_label.setStyleSheet(f"background-color: {color}; color: #111827;")

    def render_file_list(self, urls: list) -> None:
        self.file_list.clear()
        self.file_list.addItems([str(u) for u in urls])

    def append_log_line(self, text: str) -> None:
        self.log_view.appendPlainText(text)

    def on_permission_required(self, reason: str) -> None:
        # Arming again retries the unlock, so the button stays clickable.
        self.arm_btn.setText('Enable audio (retry)')
        self.append_log_line(f"audio blocked: {reason}")

    def on_gate_state(self, state: str) -> None:
        if state != 'unarmed':
            self.arm_btn.setText('Audio enabled')

    def closeEvent(self, event) -> None:
        self.adapter.stop()
        self.prefs.flush()
        super().closeEvent(event)
