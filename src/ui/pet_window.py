from __future__ import annotations

from pathlib import Path

from PySide6.QtCore import QPoint, Qt, Signal
from PySide6.QtGui import QFont, QGuiApplication, QKeyEvent, QMouseEvent, QPixmap
from PySide6.QtWidgets import QApplication, QLabel, QLineEdit, QPushButton, QVBoxLayout, QWidget

INPUT_MAX_CHARS = 240


class ChatInput(QLineEdit):
    """Single-line input; Enter submits, Escape cancels."""

    submitted = Signal(str)
    cancelled = Signal()

    def __init__(self, parent: QWidget | None = None):
        super().__init__(parent)
        self.setMaxLength(INPUT_MAX_CHARS)
        self.setPlaceholderText("想和我说什么？")

    def keyPressEvent(self, event: QKeyEvent) -> None:
        if event.key() in (Qt.Key.Key_Return, Qt.Key.Key_Enter):
            self.submitted.emit(self.text())
            event.accept()
            return
        if event.key() == Qt.Key.Key_Escape:
            self.cancelled.emit()
            event.accept()
            return
        super().keyPressEvent(event)


class PetWindow(QWidget):
    """
    Frameless desktop pet with a speech bubble and an input line.

    The window only renders what it is told; round semantics live in the
    controller. A short left click on the pet opens the input, a left drag
    moves the window and a right click asks for the context menu.
    """

    submit_requested = Signal(str)
    close_requested = Signal()
    dismiss_requested = Signal()
    context_menu_requested = Signal(object)

    BUBBLE_STYLE = (
        "QPushButton { background: rgba(255, 255, 255, 235); color: #222; border: 1px solid #bbb;"
        " border-radius: 10px; padding: 8px; text-align: left; }"
    )
    ERROR_BUBBLE_STYLE = (
        "QPushButton { background: rgba(255, 236, 236, 240); color: #a33; border: 1px solid #d9534f;"
        " border-radius: 10px; padding: 8px; text-align: left; }"
    )
    PLACEHOLDER_BUBBLE_STYLE = (
        "QPushButton { background: rgba(255, 255, 255, 200); color: #888; border: 1px dashed #bbb;"
        " border-radius: 10px; padding: 8px; text-align: left; }"
    )

    def __init__(
        self,
        *,
        pet_image: Path | str | None = None,
        always_on_top: bool = True,
        parent: QWidget | None = None,
    ):
        super().__init__(parent)
        self._drag_active = False
        self._drag_started = False
        self._drag_offset = QPoint()
        self._left_press_global = QPoint()
        self._placeholder_visible = False
        self._setup_window_flags(always_on_top)
        self._setup_ui(pet_image)

    def _setup_window_flags(self, always_on_top: bool) -> None:
        flags = Qt.WindowType.FramelessWindowHint | Qt.WindowType.Tool
        if always_on_top:
            flags |= Qt.WindowType.WindowStaysOnTopHint
        self.setWindowFlags(flags)
        self.setAttribute(Qt.WidgetAttribute.WA_TranslucentBackground, True)

    def _setup_ui(self, pet_image: Path | str | None) -> None:
        layout = QVBoxLayout(self)
        layout.setContentsMargins(4, 4, 4, 4)
        layout.setSpacing(6)

        self._bubble = QPushButton(self)
        self._bubble.setFlat(False)
        self._bubble.setCursor(Qt.CursorShape.PointingHandCursor)
        self._bubble.setStyleSheet(self.BUBBLE_STYLE)
        self._bubble.setMaximumWidth(320)
        self._bubble.clicked.connect(self.dismiss_requested)
        self._bubble.hide()

        self._pet_label = QLabel(self)
        self._pet_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self._pet_label.setStyleSheet("QLabel { background: transparent; }")
        pixmap = QPixmap(str(pet_image)) if pet_image else QPixmap()
        if not pixmap.isNull():
            self._pet_label.setPixmap(
                pixmap.scaled(
                    128,
                    128,
                    Qt.AspectRatioMode.KeepAspectRatio,
                    Qt.TransformationMode.SmoothTransformation,
                )
            )
        else:
            self._pet_label.setText("=^..^=")
            self._pet_label.setFont(QFont("Consolas", 20))

        self._input = ChatInput(self)
        self._input.submitted.connect(self.submit_requested)
        self._input.cancelled.connect(self.close_requested)
        self._input.hide()

        layout.addWidget(self._bubble)
        layout.addWidget(self._pet_label)
        layout.addWidget(self._input)
        self.setMinimumSize(140, 120)

    @property
    def bubble_text(self) -> str:
        return self._bubble.text()

    def is_bubble_visible(self) -> bool:
        return not self._bubble.isHidden()

    def is_input_open(self) -> bool:
        return not self._input.isHidden()

    def is_placeholder_visible(self) -> bool:
        return self._placeholder_visible and self.is_bubble_visible()

    def input_widget(self) -> ChatInput:
        return self._input

    def set_always_on_top(self, enabled: bool) -> None:
        visible = self.isVisible()
        self.setWindowFlag(Qt.WindowType.WindowStaysOnTopHint, bool(enabled))
        if visible:
            self.show()

    def show_placeholder(self, text: str) -> None:
        self._placeholder_visible = True
        self._show_bubble(text, self.PLACEHOLDER_BUBBLE_STYLE)

    def clear_placeholder(self) -> None:
        if not self._placeholder_visible:
            return
        self._placeholder_visible = False
        self._bubble.setText("")

    def show_text(self, text: str) -> None:
        self._placeholder_visible = False
        self._show_bubble(text, self.BUBBLE_STYLE)

    def show_error(self, text: str) -> None:
        self._placeholder_visible = False
        self._show_bubble(text, self.ERROR_BUBBLE_STYLE)

    def hide_bubble(self) -> None:
        self._placeholder_visible = False
        self._bubble.setText("")
        self._bubble.hide()
        self.adjustSize()

    def open_input(self) -> None:
        self._input.show()
        self.activateWindow()
        self._input.setFocus(Qt.FocusReason.OtherFocusReason)
        self.adjustSize()

    def close_input(self) -> None:
        self._input.hide()
        self.adjustSize()

    def clear_input(self) -> None:
        self._input.clear()

    def _show_bubble(self, text: str, style: str) -> None:
        self._bubble.setStyleSheet(style)
        self._bubble.setText(text)
        self._bubble.show()
        self.adjustSize()

    def _drag_threshold(self) -> int:
        app = QApplication.instance()
        if app is None:
            return 10
        return max(1, int(app.startDragDistance()))

    def _clamp_point_to_screen(self, point: QPoint) -> QPoint:
        screen = QGuiApplication.primaryScreen()
        if screen is None:
            return point
        geometry = screen.availableGeometry()
        max_x = max(geometry.x(), geometry.x() + geometry.width() - self.width())
        max_y = max(geometry.y(), geometry.y() + geometry.height() - self.height())
        return QPoint(
            max(geometry.x(), min(point.x(), max_x)),
            max(geometry.y(), min(point.y(), max_y)),
        )

    def keyPressEvent(self, event: QKeyEvent) -> None:
        if event.key() == Qt.Key.Key_Escape:
            self.close_requested.emit()
            event.accept()
            return
        super().keyPressEvent(event)

    def mousePressEvent(self, event: QMouseEvent) -> None:
        if event.button() == Qt.MouseButton.LeftButton:
            self._drag_active = True
            self._drag_started = False
            self._drag_offset = event.globalPosition().toPoint() - self.frameGeometry().topLeft()
            self._left_press_global = event.globalPosition().toPoint()
            event.accept()
            return
        if event.button() == Qt.MouseButton.RightButton:
            self.context_menu_requested.emit(event.globalPosition().toPoint())
            event.accept()
            return
        super().mousePressEvent(event)

    def mouseMoveEvent(self, event: QMouseEvent) -> None:
        if self._drag_active and (event.buttons() & Qt.MouseButton.LeftButton):
            global_point = event.globalPosition().toPoint()
            if (global_point - self._left_press_global).manhattanLength() >= self._drag_threshold():
                self._drag_started = True
            if self._drag_started:
                self.move(self._clamp_point_to_screen(global_point - self._drag_offset))
                event.accept()
                return
        super().mouseMoveEvent(event)

    def mouseReleaseEvent(self, event: QMouseEvent) -> None:
        if event.button() == Qt.MouseButton.LeftButton:
            was_drag = self._drag_started
            self._drag_active = False
            self._drag_started = False
            if not was_drag:
                self.open_input()
            event.accept()
            return
        super().mouseReleaseEvent(event)
