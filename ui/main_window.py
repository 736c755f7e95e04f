"""
Main window: left sidebar (source, start/stop, capabilities, model options),
center video, right tabs (Results, Logs, Performance, Export).
"""

from __future__ import annotations

import json
import logging
from typing import Any

import cv2
from PySide6.QtCore import Qt, Slot
from PySide6.QtGui import QImage, QPixmap
from PySide6.QtWidgets import (
    QCheckBox,
    QComboBox,
    QFileDialog,
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QPushButton,
    QSpinBox,
    QTabWidget,
    QVBoxLayout,
    QWidget,
)

from perception.config import PipelineConfig
from perception.decoding import load_labels
from perception.models import Capability, FrameResults
from ui.panels import LogsPanel, PerformancePanel, QtLogHandler, ResultsPanel
from ui.runner import PipelineRunner

logger = logging.getLogger(__name__)

BODY_VARIANTS = ("lite", "full", "heavy")


class MainWindow(QWidget):
    """Main application window with sidebar, video view, and right panels."""

    def __init__(self, config: PipelineConfig | None = None) -> None:
        super().__init__()
        self.setWindowTitle("Vision Lab")
        self._config = config or PipelineConfig()
        self._runner: PipelineRunner | None = None
        self._current_frame: cv2.typing.MatLike | None = None
        self._latest_results: dict[str, Any] = {}
        self._checks: dict[Capability, QCheckBox] = {}

        layout = QHBoxLayout(self)
        # --- Left sidebar ---
        sidebar = QWidget()
        sidebar_layout = QVBoxLayout(sidebar)
        sidebar_layout.addWidget(QLabel("Input"))
        input_hint = QLabel("Pick a camera index, or open a video file.")
        input_hint.setWordWrap(True)
        input_hint.setStyleSheet("color: #666; font-size: 11px;")
        sidebar_layout.addWidget(input_hint)
        self._camera_spin = QSpinBox()
        self._camera_spin.setRange(0, 9)
        self._camera_spin.setPrefix("Camera ")
        device = self._config.camera.device_id
        if isinstance(device, int):
            self._camera_spin.setValue(device)
        self._camera_spin.valueChanged.connect(self._on_camera_changed)
        sidebar_layout.addWidget(self._camera_spin)
        self._open_video_btn = QPushButton("Open Video")
        self._open_video_btn.setToolTip("Use a video file instead of the camera.")
        self._open_video_btn.clicked.connect(self._on_open_video)
        sidebar_layout.addWidget(self._open_video_btn)
        self._start_stop_btn = QPushButton("Start")
        self._start_stop_btn.clicked.connect(self._on_start_stop)
        sidebar_layout.addWidget(self._start_stop_btn)

        caps_group = QGroupBox("Capabilities")
        caps_layout = QVBoxLayout(caps_group)
        for capability in Capability:
            check = QCheckBox(capability.display_name)
            check.toggled.connect(lambda on, c=capability: self._on_capability_toggled(c, on))
            caps_layout.addWidget(check)
            self._checks[capability] = check
        sidebar_layout.addWidget(caps_group)

        options_group = QGroupBox("Models")
        options_layout = QVBoxLayout(options_group)
        options_layout.addWidget(QLabel("Body model:"))
        self._body_combo = QComboBox()
        self._body_combo.addItems(BODY_VARIANTS)
        body_variant = self._config.detectors.get("body", {}).get("variant")
        if body_variant in BODY_VARIANTS:
            self._body_combo.setCurrentText(body_variant)
        self._body_combo.currentTextChanged.connect(self._on_body_variant_changed)
        options_layout.addWidget(self._body_combo)
        self._model_btn = QPushButton("Object model (.onnx)...")
        self._model_btn.clicked.connect(self._on_choose_object_model)
        options_layout.addWidget(self._model_btn)
        self._labels_btn = QPushButton("Object labels (.txt)...")
        self._labels_btn.clicked.connect(self._on_choose_labels)
        options_layout.addWidget(self._labels_btn)
        self._model_label = QLabel(self._config.object_detector.model_path or "No object model")
        self._model_label.setWordWrap(True)
        self._model_label.setStyleSheet("color: #666; font-size: 11px;")
        options_layout.addWidget(self._model_label)
        sidebar_layout.addWidget(options_group)
        sidebar_layout.addStretch()
        layout.addWidget(sidebar)

        # --- Center: video ---
        self._video_label = QLabel()
        self._video_label.setMinimumSize(640, 480)
        self._video_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self._video_label.setStyleSheet("background-color: #1e1e1e; color: #888;")
        self._video_label.setText("No video")
        layout.addWidget(self._video_label, stretch=1)

        # --- Right: tabs ---
        self._save_frame_btn = QPushButton("Save Frame (PNG)")
        self._save_frame_btn.clicked.connect(self._on_save_frame)
        self._save_json_btn = QPushButton("Save Results JSON")
        self._save_json_btn.clicked.connect(self._on_save_json)
        tabs = QTabWidget()
        self._results_panel = ResultsPanel()
        tabs.addTab(self._results_panel, "Results")
        self._logs_panel = LogsPanel()
        tabs.addTab(self._logs_panel, "Logs")
        self._performance_panel = PerformancePanel()
        tabs.addTab(self._performance_panel, "Performance")
        export_panel = QWidget()
        export_layout = QVBoxLayout(export_panel)
        export_layout.addWidget(self._save_frame_btn)
        export_layout.addWidget(self._save_json_btn)
        export_layout.addStretch()
        tabs.addTab(export_panel, "Export")
        layout.addWidget(tabs)

        self._log_handler = QtLogHandler(self._logs_panel)
        logging.getLogger().addHandler(self._log_handler)
        logger.info("Application started. Pick an input, press Start, then enable capabilities.")
        self.resize(1280, 720)

    # ------------------------------------------------------------------ input

    def _on_camera_changed(self, index: int) -> None:
        self._config.camera.device_id = index

    def _on_open_video(self) -> None:
        path, _ = QFileDialog.getOpenFileName(
            self, "Open Video", "", "Video (*.mp4 *.avi *.mov *.mkv);;All (*)"
        )
        if not path:
            return
        self._config.camera.device_id = path
        logger.info("Selected video: %s", path)

    # ------------------------------------------------------------------ run

    def _on_start_stop(self) -> None:
        if self._runner is not None:
            self._runner.stop()
            self._start_stop_btn.setEnabled(False)
            return
        runner = PipelineRunner(self._config)
        runner.frame_painted.connect(self._on_frame_painted)
        runner.error_occurred.connect(self._on_runner_error)
        runner.status_changed.connect(self._performance_panel.update_status)
        runner.started.connect(self._on_runner_started)
        runner.stopped.connect(self._on_runner_stopped)
        self._runner = runner
        runner.start()
        self._start_stop_btn.setText("Stop")
        self._performance_panel.reset()

    @Slot()
    def _on_runner_started(self) -> None:
        for capability, check in self._checks.items():
            if check.isChecked():
                self._activate(capability)

    @Slot()
    def _on_runner_stopped(self) -> None:
        if self._runner is not None:
            self._runner.finish_thread()
            self._runner = None
        self._start_stop_btn.setText("Start")
        self._start_stop_btn.setEnabled(True)
        self._performance_panel.reset()
        logger.info("Processing stopped.")

    def _activate(self, capability: Capability) -> None:
        if self._runner is None:
            return
        variant = None
        if capability is Capability.BODY:
            variant = self._body_combo.currentText()
        elif capability is Capability.OBJECT:
            variant = self._config.object_detector.model_path or None
        self._runner.activate(capability, variant)

    def _on_capability_toggled(self, capability: Capability, on: bool) -> None:
        if self._runner is None:
            return
        if on:
            self._activate(capability)
        else:
            self._runner.deactivate(capability)

    def _on_body_variant_changed(self, variant: str) -> None:
        self._config.detectors.setdefault("body", {})["variant"] = variant
        if self._runner is not None:
            self._runner.swap_variant(Capability.BODY, variant)

    def _on_choose_object_model(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Object Model", "", "ONNX (*.onnx);;All (*)")
        if not path:
            return
        self._config.object_detector.model_path = path
        self._model_label.setText(path)
        if self._runner is not None:
            self._runner.swap_variant(Capability.OBJECT, path)

    def _on_choose_labels(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Object Labels", "", "Text (*.txt);;All (*)")
        if not path:
            return
        try:
            labels = load_labels(path)
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read labels %s: %s", path, e)
            return
        self._config.object_detector.labels = labels
        logger.info("Loaded %d object labels from %s", len(labels), path)
        if self._runner is not None:
            self._runner.set_object_labels(labels)

    @Slot(object, float)
    def _on_frame_painted(self, composed: FrameResults, fps: float) -> None:
        image = composed.image
        self._current_frame = image
        self._latest_results = composed.results
        self._results_panel.update_results(composed.results)
        self._performance_panel.update_display_fps(fps)
        h, w = image.shape[:2]
        qimg = QImage(image.data, w, h, 3 * w, QImage.Format.Format_BGR888)
        self._video_label.setPixmap(QPixmap.fromImage(qimg).scaled(
            self._video_label.size(),
            Qt.AspectRatioMode.KeepAspectRatio,
            Qt.TransformationMode.SmoothTransformation,
        ))

    @Slot(str, str)
    def _on_runner_error(self, source: str, message: str) -> None:
        self._logs_panel.append(f"Error [{source}]: {message}")

    # ------------------------------------------------------------------ export

    def _on_save_frame(self) -> None:
        if self._current_frame is None:
            self._logs_panel.append("No frame to save.")
            return
        path, _ = QFileDialog.getSaveFileName(self, "Save Frame", "", "PNG (*.png);;All (*)")
        if not path:
            return
        if cv2.imwrite(path, self._current_frame):
            self._logs_panel.append(f"Saved frame: {path}")
        else:
            self._logs_panel.append(f"Failed to save: {path}")

    def _on_save_json(self) -> None:
        if not self._latest_results:
            self._logs_panel.append("No results to save.")
            return
        path, _ = QFileDialog.getSaveFileName(self, "Save Results JSON", "", "JSON (*.json);;All (*)")
        if not path:
            return
        try:
            with open(path, "w", encoding="utf-8") as f:
                json.dump(self._latest_results, f, indent=2, default=str)
            self._logs_panel.append(f"Saved results: {path}")
        except OSError as e:
            self._logs_panel.append(f"Failed to save JSON: {e}")

    def closeEvent(self, event) -> None:
        if self._runner is not None:
            self._runner.stop()
            self._runner.finish_thread()
            self._runner = None
        logging.getLogger().removeHandler(self._log_handler)
        event.accept()
