from __future__ import annotations

from dataclasses import replace

from PySide6.QtWidgets import (
    QCheckBox,
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QFileDialog,
    QFormLayout,
    QHBoxLayout,
    QLineEdit,
    QMessageBox,
    QPushButton,
    QSpinBox,
    QTabWidget,
    QVBoxLayout,
    QWidget,
)

try:
    from ai.endpoint_probe import is_valid_http_url, probe_endpoint
    from core.config_manager import APPROVAL_MODES, AppConfig
    from core.paths import get_log_file
except ModuleNotFoundError:
    from ..ai.endpoint_probe import is_valid_http_url, probe_endpoint
    from ..core.config_manager import APPROVAL_MODES, AppConfig
    from ..core.paths import get_log_file


class SettingsDialog(QDialog):
    """Runtime settings editor."""

    def __init__(self, config: AppConfig, parent: QWidget | None = None):
        super().__init__(parent)
        self._source = config
        self._defaults = AppConfig(version=config.version)
        self.setWindowTitle("Mew Companion 设置")
        self.setMinimumWidth(520)
        self._build_ui()
        self._load_from_config(config)

    def _build_ui(self) -> None:
        root = QVBoxLayout(self)

        tabs = QTabWidget(self)
        tabs.addTab(self._create_backend_tab(), "qwen")
        tabs.addTab(self._create_chat_tab(), "对话")
        tabs.addTab(self._create_general_tab(), "基础")
        root.addWidget(tabs)

        footer = QHBoxLayout()
        self.restore_defaults_button = QPushButton("恢复默认值", self)
        self.restore_defaults_button.clicked.connect(self._restore_defaults)
        footer.addWidget(self.restore_defaults_button)
        footer.addStretch(1)
        footer.addWidget(self._create_button_box())
        root.addLayout(footer)

        self._setup_tooltips()

    def _create_backend_tab(self) -> QWidget:
        backend_tab = QWidget(self)
        form = QFormLayout(backend_tab)
        self.command_edit = QLineEdit(self)
        self.command_edit.setPlaceholderText("qwen")

        self.working_dir_edit = QLineEdit(self)
        self.working_dir_edit.setPlaceholderText("留空则使用当前目录")
        browse_button = QPushButton("浏览…", self)
        browse_button.clicked.connect(self._browse_working_directory)
        working_dir_row = QHBoxLayout()
        working_dir_row.addWidget(self.working_dir_edit, 1)
        working_dir_row.addWidget(browse_button)

        self.approval_mode_combo = QComboBox(self)
        self.approval_mode_combo.addItems(list(APPROVAL_MODES))

        self.api_key_edit = QLineEdit(self)
        self.api_key_edit.setEchoMode(QLineEdit.EchoMode.Password)
        self.base_url_edit = QLineEdit(self)
        self.base_url_edit.setPlaceholderText("例如 https://dashscope.aliyuncs.com/compatible-mode/v1")
        self.base_url_edit.textChanged.connect(lambda text: self._validate_url(self.base_url_edit, text))
        self.model_edit = QLineEdit(self)
        self.model_edit.setPlaceholderText("例如 qwen3-coder-plus")

        self.start_timeout_spin = QSpinBox(self)
        self.start_timeout_spin.setRange(500, 30_000)
        self.start_timeout_spin.setSingleStep(500)
        self.start_timeout_spin.setSuffix(" ms")

        self.test_api_button = QPushButton("测试连接", self)
        self.test_api_button.clicked.connect(self._test_api_connection)

        form.addRow("qwen 命令", self.command_edit)
        form.addRow("工作目录", working_dir_row)
        form.addRow("审批模式", self.approval_mode_combo)
        form.addRow("OpenAI API Key", self.api_key_edit)
        form.addRow("OpenAI Base URL", self.base_url_edit)
        form.addRow("OpenAI 模型", self.model_edit)
        form.addRow("启动超时", self.start_timeout_spin)
        form.addRow("", self.test_api_button)
        return backend_tab

    def _create_chat_tab(self) -> QWidget:
        chat_tab = QWidget(self)
        form = QFormLayout(chat_tab)
        self.flush_interval_spin = self._create_ms_spin(10, 1_000, 10)
        self.batch_chars_spin = QSpinBox(self)
        self.batch_chars_spin.setRange(1, 256)
        self.batch_chars_spin.setSuffix(" 字")
        self.silence_spin = self._create_ms_spin(100, 10_000, 100)
        self.first_fragment_spin = self._create_ms_spin(1_000, 120_000, 1_000)
        form.addRow("刷新间隔", self.flush_interval_spin)
        form.addRow("批量刷新字数", self.batch_chars_spin)
        form.addRow("静默结束", self.silence_spin)
        form.addRow("首段超时", self.first_fragment_spin)
        return chat_tab

    def _create_general_tab(self) -> QWidget:
        general_tab = QWidget(self)
        form = QFormLayout(general_tab)
        self.always_on_top_checkbox = QCheckBox("窗口置顶", self)
        self.debug_mode_checkbox = QCheckBox("调试模式", self)
        self.log_path_edit = QLineEdit(self)
        self.log_path_edit.setReadOnly(True)
        self.log_path_edit.setText(str(get_log_file()))
        form.addRow("", self.always_on_top_checkbox)
        form.addRow("", self.debug_mode_checkbox)
        form.addRow("日志文件", self.log_path_edit)
        return general_tab

    def _create_ms_spin(self, low: int, high: int, step: int) -> QSpinBox:
        spin = QSpinBox(self)
        spin.setRange(low, high)
        spin.setSingleStep(step)
        spin.setSuffix(" ms")
        return spin

    def _create_button_box(self) -> QDialogButtonBox:
        button_box = QDialogButtonBox(
            QDialogButtonBox.StandardButton.Ok | QDialogButtonBox.StandardButton.Cancel,
            parent=self,
        )
        button_box.accepted.connect(self.accept)
        button_box.rejected.connect(self.reject)
        return button_box

    def _setup_tooltips(self) -> None:
        self.command_edit.setToolTip("qwen-cli 可执行文件名或路径。Windows 下会通过 cmd.exe 调用 <命令>.cmd。")
        self.working_dir_edit.setToolTip("传给 qwen 的 --include-directories，同时作为进程工作目录。")
        self.approval_mode_combo.setToolTip(
            "qwen 审批模式:\n"
            "- default: 需要确认的操作会被拒绝\n"
            "- auto-edit: 自动允许编辑\n"
            "- yolo: 自动允许全部操作\n"
            "- plan: 只规划不执行"
        )
        self.api_key_edit.setToolTip("注入为 OPENAI_API_KEY，不写入日志。留空则沿用 qwen 自身登录。")
        self.base_url_edit.setToolTip("注入为 OPENAI_BASE_URL，仅接受 http/https。格式错误会显示红框。")
        self.model_edit.setToolTip("注入为 OPENAI_MODEL。")
        self.start_timeout_spin.setToolTip("等待 qwen 进程启动的最长时间。")
        self.test_api_button.setToolTip("对当前 Base URL 发起一次 GET /models 连通性测试。")
        self.flush_interval_spin.setToolTip("流式文本攒批后刷新到气泡的等待时间。")
        self.batch_chars_spin.setToolTip("待刷新文本达到该字数时立即刷新。")
        self.silence_spin.setToolTip("最后一段文本之后静默多久视为回复结束。")
        self.first_fragment_spin.setToolTip("发送后多久仍未收到任何输出即判定会话中断。")
        self.restore_defaults_button.setToolTip("将当前对话框中的所有设置恢复为程序默认值（未保存前可继续修改）。")

    def _browse_working_directory(self) -> None:
        selected = QFileDialog.getExistingDirectory(self, "选择工作目录", self.working_dir_edit.text().strip())
        if selected:
            self.working_dir_edit.setText(selected)

    def _validate_url(self, line_edit: QLineEdit, text: str) -> None:
        """Validate URL text and show a red border when invalid."""
        raw = (text or "").strip()
        if not raw or is_valid_http_url(raw):
            line_edit.setStyleSheet("")
            return
        line_edit.setStyleSheet("QLineEdit { border: 1px solid #d9534f; }")

    def _test_api_connection(self) -> None:
        base_url = self.base_url_edit.text().strip()
        self._validate_url(self.base_url_edit, base_url)
        if not base_url:
            QMessageBox.warning(self, "API 连接测试", "请先填写 OpenAI Base URL。")
            return
        if not is_valid_http_url(base_url):
            QMessageBox.warning(self, "API 连接测试", "OpenAI Base URL 格式错误，请修正后再测试。")
            return

        result = probe_endpoint(base_url, self.api_key_edit.text())
        if result.ok:
            QMessageBox.information(
                self,
                "API 连接测试",
                f"连接成功。\nURL: {result.url}\nHTTP 状态码: {result.status_code}",
            )
            return
        if result.status_code:
            extra = f"\n响应片段: {result.detail}" if result.detail else ""
            message = f"连接失败。\nURL: {result.url}\nHTTP 状态码: {result.status_code}{extra}"
        else:
            message = f"连接失败。\nURL: {result.url}\n错误: {result.detail}"
        QMessageBox.warning(self, "API 连接测试", message)

    def _restore_defaults(self) -> None:
        answer = QMessageBox.question(
            self,
            "恢复默认值",
            "确定将当前设置恢复为默认值吗？此操作只影响当前对话框，点击“确定”保存后才会生效。",
            QMessageBox.StandardButton.Yes | QMessageBox.StandardButton.No,
            QMessageBox.StandardButton.No,
        )
        if answer != QMessageBox.StandardButton.Yes:
            return
        self._load_from_config(self._defaults)

    def _load_from_config(self, config: AppConfig) -> None:
        backend = config.backend
        self.command_edit.setText(backend.command)
        self.working_dir_edit.setText(backend.working_directory)
        self._set_combo_text(self.approval_mode_combo, backend.approval_mode, "default")
        self.api_key_edit.setText(backend.openai_api_key)
        self.base_url_edit.setText(backend.openai_base_url)
        self.model_edit.setText(backend.openai_model)
        self.start_timeout_spin.setValue(int(backend.start_timeout_ms))
        self._validate_url(self.base_url_edit, self.base_url_edit.text())

        self.flush_interval_spin.setValue(int(config.chat.flush_interval_ms))
        self.batch_chars_spin.setValue(int(config.chat.batch_chars))
        self.silence_spin.setValue(int(config.chat.silence_ms))
        self.first_fragment_spin.setValue(int(config.chat.first_fragment_timeout_ms))

        self.always_on_top_checkbox.setChecked(bool(config.behavior.always_on_top))
        self.debug_mode_checkbox.setChecked(bool(config.behavior.debug_mode))

    def to_config(self) -> AppConfig:
        """Build and return a new AppConfig from current UI values."""
        backend = replace(
            self._source.backend,
            command=self.command_edit.text().strip() or "qwen",
            working_directory=self.working_dir_edit.text().strip(),
            approval_mode=self.approval_mode_combo.currentText().strip() or "default",
            openai_api_key=self.api_key_edit.text().strip(),
            openai_base_url=self.base_url_edit.text().strip(),
            openai_model=self.model_edit.text().strip(),
            start_timeout_ms=int(self.start_timeout_spin.value()),
        )
        chat = replace(
            self._source.chat,
            flush_interval_ms=int(self.flush_interval_spin.value()),
            batch_chars=int(self.batch_chars_spin.value()),
            silence_ms=int(self.silence_spin.value()),
            first_fragment_timeout_ms=int(self.first_fragment_spin.value()),
        )
        behavior = replace(
            self._source.behavior,
            always_on_top=self.always_on_top_checkbox.isChecked(),
            debug_mode=self.debug_mode_checkbox.isChecked(),
        )
        return AppConfig(version=self._source.version, chat=chat, backend=backend, behavior=behavior)

    @staticmethod
    def _set_combo_text(combo: QComboBox, value: str, default: str) -> None:
        preferred = (value or "").strip()
        idx = combo.findText(preferred)
        if idx < 0:
            idx = combo.findText(default)
        combo.setCurrentIndex(idx if idx >= 0 else 0)
