from __future__ import annotations

from typing import Callable

from PySide6.QtCore import QObject, Signal
from PySide6.QtGui import QAction, QIcon
from PySide6.QtWidgets import QApplication, QMenu, QStyle, QSystemTrayIcon

try:
    from core.state_machine import RoundState
except ModuleNotFoundError:
    from ..core.state_machine import RoundState

TRAY_TITLE = "Mew Companion"

_STATE_LABELS = {
    RoundState.IDLE: "空闲",
    RoundState.WAITING_FIRST_FRAGMENT: "等待 qwen 回复",
    RoundState.STREAMING: "正在回复",
    RoundState.DONE: "回复完成",
    RoundState.ERROR: "出错了",
}


class SystemTrayManager(QObject):
    """Tray icon for the pet: window toggle, chat entry, round interrupt and housekeeping."""

    toggle_requested = Signal()
    chat_requested = Signal()
    interrupt_requested = Signal()
    settings_requested = Signal()
    status_requested = Signal()
    open_logs_requested = Signal()
    quit_requested = Signal()

    def __init__(self, app: QApplication, icon_path: str | None = None):
        super().__init__(app)
        fallback = app.style().standardIcon(QStyle.StandardPixmap.SP_ComputerIcon)
        self._tray = QSystemTrayIcon(QIcon(icon_path) if icon_path else fallback, app)
        self._menu = QMenu()
        self._round_state = RoundState.IDLE
        self._interrupt_action = self._populate_menu()
        self._tray.setContextMenu(self._menu)
        self._tray.activated.connect(self._on_activated)
        self._refresh_tooltip()

    def _entry(self, text: str, emit: Callable[[], None], hint: str, *, enabled: bool = True) -> QAction:
        action = self._menu.addAction(text)
        action.setToolTip(hint)
        action.setEnabled(enabled)
        action.triggered.connect(lambda _checked=False, cb=emit: cb())
        return action

    def _populate_menu(self) -> QAction:
        self._entry("显示/隐藏", self.toggle_requested.emit, "切换桌宠窗口的显示状态。")
        self._entry("和我聊天", self.chat_requested.emit, "打开输入框。")
        interrupt = self._entry(
            "中断回复",
            self.interrupt_requested.emit,
            "终止正在进行的 qwen 回合。",
            enabled=False,
        )
        self._entry("设置", self.settings_requested.emit, "打开设置面板。")
        self._menu.addSeparator()
        self._entry("状态", self.status_requested.emit, "查看当前运行状态。")
        self._entry("打开日志目录", self.open_logs_requested.emit, "打开 app.log 所在目录。")
        self._menu.addSeparator()
        self._entry("退出", self.quit_requested.emit, f"退出 {TRAY_TITLE}。")
        return interrupt

    def menu(self) -> QMenu:
        return self._menu

    def tooltip(self) -> str:
        return self._tray.toolTip()

    def set_round_state(self, state: RoundState) -> None:
        """Mirror the controller's round state: tooltip text and the interrupt entry."""
        if not isinstance(state, RoundState):
            return
        self._round_state = state
        self._interrupt_action.setEnabled(state.is_active)
        self._refresh_tooltip()

    def _refresh_tooltip(self) -> None:
        self._tray.setToolTip(f"{TRAY_TITLE} · {_STATE_LABELS[self._round_state]}")

    def show(self) -> None:
        self._tray.show()

    def hide(self) -> None:
        self._tray.hide()

    def show_message(self, title: str, message: str, timeout_ms: int = 3000) -> None:
        self._tray.showMessage(title, message, QSystemTrayIcon.MessageIcon.Information, timeout_ms)

    def _on_activated(self, reason: QSystemTrayIcon.ActivationReason) -> None:
        if reason == QSystemTrayIcon.ActivationReason.DoubleClick:
            self.toggle_requested.emit()
