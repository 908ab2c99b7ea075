import os
import subprocess
import sys

# High-DPI setup must happen before creating QApplication.
os.environ.setdefault("QT_ENABLE_HIGHDPI_SCALING", "1")
os.environ.setdefault("QT_SCALE_FACTOR_ROUNDING_POLICY", "PassThrough")

from PySide6.QtGui import QGuiApplication
from PySide6.QtWidgets import QApplication, QMenu, QSystemTrayIcon

try:
    from ai.headless_backend import HeadlessBackend
    from core.config_manager import AppConfig, ConfigManager
    from core.logger import setup_logger
    from core.paths import get_base_dir, get_log_dir, get_log_file, resolve_config_path
    from core.round_controller import ChatRoundController
    from core.transport import HeadlessConfig, OpenAIConfig
    from ui.failure_dialog import FailureDialog
    from ui.pet_window import PetWindow
    from ui.settings_dialog import SettingsDialog
    from ui.tray_icon import SystemTrayManager
except ModuleNotFoundError:
    from .ai.headless_backend import HeadlessBackend
    from .core.config_manager import AppConfig, ConfigManager
    from .core.logger import setup_logger
    from .core.paths import get_base_dir, get_log_dir, get_log_file, resolve_config_path
    from .core.round_controller import ChatRoundController
    from .core.transport import HeadlessConfig, OpenAIConfig
    from .ui.failure_dialog import FailureDialog
    from .ui.pet_window import PetWindow
    from .ui.settings_dialog import SettingsDialog
    from .ui.tray_icon import SystemTrayManager


def _backend_configs(config: AppConfig) -> tuple[OpenAIConfig, HeadlessConfig]:
    backend = config.backend
    openai_config = OpenAIConfig(
        api_key=backend.openai_api_key or None,
        base_url=backend.openai_base_url or None,
        model=backend.openai_model or None,
    )
    headless_config = HeadlessConfig(
        working_directory=backend.working_directory or None,
        approval_mode=backend.approval_mode or None,
    )
    return openai_config, headless_config


def _apply_config(config: AppConfig, backend: HeadlessBackend, controller: ChatRoundController) -> None:
    backend.configure(program=config.backend.command, start_timeout_ms=config.backend.start_timeout_ms)
    controller.configure_backend(*_backend_configs(config))
    controller.configure_timings(
        flush_interval_ms=config.chat.flush_interval_ms,
        batch_chars=config.chat.batch_chars,
        silence_ms=config.chat.silence_ms,
        first_fragment_timeout_ms=config.chat.first_fragment_timeout_ms,
    )


def _place_bottom_right(window: PetWindow, margin: int = 40) -> None:
    screen = QGuiApplication.primaryScreen()
    if screen is None:
        return
    geometry = screen.availableGeometry()
    window.adjustSize()
    window.move(
        geometry.x() + geometry.width() - window.width() - margin,
        geometry.y() + geometry.height() - window.height() - margin,
    )


def main() -> int:
    app = QApplication(sys.argv)
    app.setQuitOnLastWindowClosed(False)

    base_dir = get_base_dir()
    config_path = resolve_config_path()
    config_manager = ConfigManager(config_path)
    config = config_manager.load()
    logger = setup_logger(get_log_dir(), debug=config.behavior.debug_mode)
    log_file = get_log_file()
    logger.info("Application starting. base_dir=%s config=%s", base_dir, config_path)

    backend = HeadlessBackend(
        program=config.backend.command,
        start_timeout_ms=config.backend.start_timeout_ms,
    )
    controller = ChatRoundController(backend)
    _apply_config(config, backend, controller)

    backend.fragment_received.connect(controller.on_fragment)
    backend.stream_error.connect(controller.on_stream_error)
    backend.session_interrupted.connect(controller.on_session_interrupted)
    backend.first_submission_failed.connect(controller.on_first_submission_failed)

    pet_image = base_dir / "assets" / "pet.png"
    pet_window = PetWindow(
        pet_image=pet_image if pet_image.exists() else None,
        always_on_top=config.behavior.always_on_top,
    )
    failure_dialog = FailureDialog(pet_window)

    controller.placeholder_shown.connect(pet_window.show_placeholder)
    controller.placeholder_cleared.connect(pet_window.clear_placeholder)
    controller.text_shown.connect(pet_window.show_text)
    controller.error_shown.connect(pet_window.show_error)
    controller.response_dismissed.connect(pet_window.hide_bubble)
    controller.failure_dialog_opened.connect(failure_dialog.present)
    controller.failure_dialog_closed.connect(failure_dialog.hide)
    failure_dialog.acknowledged.connect(controller.acknowledge_failure)
    failure_dialog.retry_requested.connect(controller.retry_last)

    def _on_submit(text: str) -> None:
        if controller.submit(text):
            pet_window.clear_input()
            pet_window.close_input()

    def _on_close_requested() -> None:
        pet_window.close_input()
        if pet_window.is_bubble_visible():
            controller.dismiss()

    pet_window.submit_requested.connect(_on_submit)
    pet_window.close_requested.connect(_on_close_requested)
    pet_window.dismiss_requested.connect(controller.dismiss)

    tray_manager = None

    def _notify(title: str, message: str, timeout_ms: int = 3000) -> None:
        if tray_manager is not None:
            tray_manager.show_message(title, message, timeout_ms)
        logger.info("%s: %s", title, message)

    def _toggle_window() -> None:
        if pet_window.isVisible():
            pet_window.hide()
        else:
            pet_window.show()
            pet_window.raise_()

    def _open_chat() -> None:
        if not pet_window.isVisible():
            pet_window.show()
        pet_window.open_input()

    def _status_summary() -> str:
        state = controller.state
        lines = [
            f"回合状态: {state.value}",
            f"当前回合: {controller.current_round_id or '无'}",
            f"qwen 进程: {'运行中' if backend.is_running() else '空闲'}",
            f"命令: {config.backend.command}",
        ]
        if config.backend.working_directory:
            lines.append(f"工作目录: {config.backend.working_directory}")
        return "\n".join(lines)

    def _open_logs_location() -> None:
        target = log_file.parent
        try:
            if sys.platform == "win32":
                os.startfile(str(target))  # type: ignore[attr-defined]
            elif sys.platform == "darwin":
                subprocess.Popen(["open", str(target)])
            else:
                subprocess.Popen(["xdg-open", str(target)])
        except OSError as exc:
            logger.warning("Failed to open log directory: %s", exc)
            _notify("日志目录", f"打开失败，请手动查看: {target}", timeout_ms=6000)

    def _open_settings() -> None:
        nonlocal config
        dialog = SettingsDialog(config=config, parent=pet_window)
        if not dialog.exec():
            return
        config = dialog.to_config()
        if not config_manager.save(config):
            _notify("设置", "保存配置失败，请检查权限。", timeout_ms=5000)
            return
        setup_logger(get_log_dir(), debug=config.behavior.debug_mode)
        _apply_config(config, backend, controller)
        pet_window.set_always_on_top(config.behavior.always_on_top)
        _notify("设置", "已保存，下一轮对话生效。", timeout_ms=2200)

    def _show_context_menu(global_pos) -> None:
        menu = QMenu()
        chat_action = menu.addAction("和我聊天")
        interrupt_action = menu.addAction("中断回复")
        interrupt_action.setEnabled(controller.state.is_active)
        settings_action = menu.addAction("设置")
        open_logs_action = menu.addAction("打开日志目录")
        menu.addSeparator()
        hide_action = menu.addAction("隐藏")
        quit_action = menu.addAction("退出")

        chosen = menu.exec(global_pos)
        if chosen == chat_action:
            _open_chat()
        elif chosen == interrupt_action:
            backend.interrupt()
        elif chosen == settings_action:
            _open_settings()
        elif chosen == open_logs_action:
            _open_logs_location()
        elif chosen == hide_action:
            pet_window.hide()
        elif chosen == quit_action:
            app.quit()

    pet_window.context_menu_requested.connect(_show_context_menu)

    if QSystemTrayIcon.isSystemTrayAvailable():
        icon_path = base_dir / "assets" / "icon.ico"
        tray_manager = SystemTrayManager(app, icon_path=str(icon_path) if icon_path.exists() else None)
        tray_manager.toggle_requested.connect(_toggle_window)
        tray_manager.chat_requested.connect(_open_chat)
        tray_manager.interrupt_requested.connect(backend.interrupt)
        tray_manager.settings_requested.connect(_open_settings)
        tray_manager.status_requested.connect(lambda: tray_manager.show_message("状态", _status_summary()))
        tray_manager.open_logs_requested.connect(_open_logs_location)
        tray_manager.quit_requested.connect(app.quit)
        controller.state_changed.connect(lambda _old, new: tray_manager.set_round_state(new))
        tray_manager.show()

    _place_bottom_right(pet_window)
    pet_window.show()
    if config.behavior.debug_mode:
        _notify("Mew Companion 已启动", f"调试模式: 开\n日志文件: {log_file}", timeout_ms=4000)

    def _shutdown() -> None:
        logger.info("Application shutting down.")
        controller.shutdown()
        backend.shutdown()
        if tray_manager is not None:
            tray_manager.hide()

    app.aboutToQuit.connect(_shutdown)
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
