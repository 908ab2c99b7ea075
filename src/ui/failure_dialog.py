from __future__ import annotations

from PySide6.QtCore import Qt, Signal
from PySide6.QtWidgets import QDialog, QHBoxLayout, QLabel, QPushButton, QVBoxLayout, QWidget


class FailureDialog(QDialog):
    """Modal shown when the very first send could not reach qwen."""

    acknowledged = Signal()
    retry_requested = Signal()

    def __init__(self, parent: QWidget | None = None):
        super().__init__(parent)
        self.setModal(True)
        self.setWindowFlag(Qt.WindowType.WindowStaysOnTopHint, True)
        self.setMinimumWidth(320)

        root = QVBoxLayout(self)
        self._message_label = QLabel(self)
        self._message_label.setWordWrap(True)
        root.addWidget(self._message_label)

        buttons = QHBoxLayout()
        buttons.addStretch(1)
        self.acknowledge_button = QPushButton("我知道了", self)
        self.retry_button = QPushButton("重试", self)
        self.retry_button.setDefault(True)
        buttons.addWidget(self.acknowledge_button)
        buttons.addWidget(self.retry_button)
        root.addLayout(buttons)

        self.acknowledge_button.clicked.connect(self._on_acknowledge)
        self.retry_button.clicked.connect(self._on_retry)

    @property
    def message(self) -> str:
        return self._message_label.text()

    def present(self, title: str, message: str) -> None:
        self.setWindowTitle(title)
        self._message_label.setText(message)
        self.show()
        self.raise_()

    def _on_acknowledge(self) -> None:
        self.hide()
        self.acknowledged.emit()

    def _on_retry(self) -> None:
        self.hide()
        self.retry_requested.emit()

    def reject(self) -> None:
        # closing via Escape or the title bar counts as acknowledging
        self._on_acknowledge()
