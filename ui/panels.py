"""
Right-side panels: Results (JSON), Logs, Performance.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from PySide6.QtCore import QObject, Signal
from PySide6.QtWidgets import (
    QLabel,
    QPlainTextEdit,
    QTableWidget,
    QTableWidgetItem,
    QVBoxLayout,
    QWidget,
)


def _pretty_json(obj: Any) -> str:
    """Pretty-print dict/list for display."""
    try:
        return json.dumps(obj, indent=2, default=str)
    except (TypeError, ValueError):
        return str(obj)


class ResultsPanel(QWidget):
    """Shows the latest results of every active capability as JSON."""

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        self._text = QPlainTextEdit(self)
        self._text.setReadOnly(True)
        self._text.setPlaceholderText("Results appear here while a capability is active.")
        layout.addWidget(self._text, stretch=1)

    def update_results(self, results: dict[str, Any] | None) -> None:
        if not results:
            self._text.setPlainText("")
            return
        self._text.setPlainText(_pretty_json(results))


class LogsPanel(QWidget):
    """Shows application log records and capability errors."""

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        layout = QVBoxLayout(self)
        self._text = QPlainTextEdit(self)
        self._text.setReadOnly(True)
        self._text.setMaximumBlockCount(2000)
        layout.addWidget(self._text)

    def append(self, message: str) -> None:
        self._text.appendPlainText(message)
        # Auto-scroll to bottom
        scrollbar = self._text.verticalScrollBar()
        scrollbar.setValue(scrollbar.maximum())

    def clear(self) -> None:
        self._text.clear()


class _LogBridge(QObject):
    message = Signal(str)


class QtLogHandler(logging.Handler):
    """Forwards log records to a LogsPanel; safe to call from any thread."""

    def __init__(self, panel: LogsPanel, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._bridge = _LogBridge()
        self._bridge.message.connect(panel.append)
        self.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._bridge.message.emit(self.format(record))
        except Exception:  # noqa: BLE001
            self.handleError(record)


class PerformancePanel(QWidget):
    """Display FPS plus per-capability state, inference rate and latency."""

    _COLUMNS = ("Capability", "State", "Variant", "FPS", "Latency (ms)", "Error")

    def __init__(self, parent: QWidget | None = None) -> None:
        super().__init__(parent)
        layout = QVBoxLayout(self)
        self._fps_label = QLabel("Display FPS: -")
        layout.addWidget(self._fps_label)
        self._table = QTableWidget(0, len(self._COLUMNS), self)
        self._table.setHorizontalHeaderLabels(self._COLUMNS)
        self._table.verticalHeader().setVisible(False)
        layout.addWidget(self._table, stretch=1)

    def update_display_fps(self, fps: float) -> None:
        self._fps_label.setText(f"Display FPS: {fps:.1f}")

    def update_status(self, rows: list[dict[str, Any]]) -> None:
        self._table.setRowCount(len(rows))
        for r, row in enumerate(rows):
            if row.get("loading"):
                state = "loading"
            elif not row.get("active"):
                state = "off"
            else:
                state = row.get("state", "")
            values = (
                row.get("capability", ""),
                state,
                row.get("variant") or "",
                f"{row.get('fps', 0.0):.1f}",
                f"{row.get('latency_ms', 0.0):.1f}",
                row.get("error") or "",
            )
            for c, value in enumerate(values):
                self._table.setItem(r, c, QTableWidgetItem(str(value)))
        self._table.resizeColumnsToContents()

    def reset(self) -> None:
        self._fps_label.setText("Display FPS: -")
        self._table.setRowCount(0)
