from __future__ import annotations

import logging
import re
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path

from PySide6.QtCore import QtMsgType, qInstallMessageHandler

LOGGER_NAME = "MewCompanion"
LOG_FILE_NAME = "app.log"
LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 3

_FILE_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
_CONSOLE_FORMAT = "[%(levelname)s] %(message)s"

_SECRET_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+"),
    re.compile(r"(OPENAI_API_KEY=)\S+"),
    re.compile(r"()\bsk-[A-Za-z0-9_\-]{6,}"),
)

_QT_LEVELS = {
    QtMsgType.QtDebugMsg: logging.DEBUG,
    QtMsgType.QtInfoMsg: logging.INFO,
    QtMsgType.QtWarningMsg: logging.WARNING,
    QtMsgType.QtCriticalMsg: logging.ERROR,
    QtMsgType.QtFatalMsg: logging.CRITICAL,
}


def redact_secrets(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda match: f"{match.group(1)}***", text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Mask API keys and bearer tokens before a record reaches any handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_secrets(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class _QtMessageBridge:
    """Routes Qt's own diagnostics into the application logger, chaining any previous handler."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._installed = False
        self._previous = None
        self.logger: logging.Logger | None = None

    def install(self, logger: logging.Logger) -> None:
        with self._lock:
            self.logger = logger
            if self._installed:
                return
            self._previous = qInstallMessageHandler(self.handle)
            self._installed = True

    def handle(self, mode, context, message: str) -> None:
        logger = self.logger
        if logger is None:
            return
        try:
            category = str(getattr(context, "category", "") or "").strip()
        except Exception:
            category = ""
        prefix = f"[Qt:{category}] " if category else "[Qt] "
        logger.log(_QT_LEVELS.get(mode, logging.INFO), "%s%s", prefix, message)

        if self._previous is not None:
            try:
                self._previous(mode, context, message)
            except Exception:
                pass


_QT_BRIDGE = _QtMessageBridge()


def _find_console_handler(logger: logging.Logger) -> logging.Handler | None:
    for handler in logger.handlers:
        if type(handler) is logging.StreamHandler:
            return handler
    return None


def _sync_console_handler(logger: logging.Logger, debug: bool) -> None:
    console = _find_console_handler(logger)
    if debug and console is None:
        console = logging.StreamHandler()
        console.setLevel(logging.DEBUG)
        console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        logger.addHandler(console)
    elif not debug and console is not None:
        logger.removeHandler(console)
        console.close()


def setup_logger(log_dir: Path, debug: bool = False) -> logging.Logger:
    """
    Configure the ``MewCompanion`` logger.

    The first call attaches a rotating ``app.log`` in ``log_dir`` and the Qt
    message bridge. Later calls (after the settings dialog) only switch the
    level and the debug console handler.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False

    if not any(isinstance(item, SecretRedactingFilter) for item in logger.filters):
        logger.addFilter(SecretRedactingFilter())

    if not any(isinstance(handler, RotatingFileHandler) for handler in logger.handlers):
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)

    _sync_console_handler(logger, debug)
    _QT_BRIDGE.install(logger)
    return logger
