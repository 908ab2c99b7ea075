from __future__ import annotations

import os
import sys
from pathlib import Path

from PySide6.QtCore import QStandardPaths

APP_NAME = "MewCompanion"
BASE_DIR_ENV = "MEW_BASE_DIR"
CONFIG_FILE_NAME = "config.json"


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def _platform_data_root() -> Path:
    if sys.platform == "win32":
        return Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    xdg_data = os.environ.get("XDG_DATA_HOME", "").strip()
    return Path(xdg_data) if xdg_data else Path.home() / ".local" / "share"


def get_base_dir() -> Path:
    """
    Directory holding read-only bundled files (``config/``, ``assets/``).

    ``MEW_BASE_DIR`` wins, then a PyInstaller bundle, then the source checkout.
    """
    override = os.environ.get(BASE_DIR_ENV, "").strip()
    if override:
        return Path(override)
    bundle_dir = getattr(sys, "_MEIPASS", None)
    if getattr(sys, "frozen", False) and bundle_dir:
        return Path(bundle_dir)
    return Path(__file__).resolve().parents[2]


def get_user_data_dir() -> Path:
    qt_location = QStandardPaths.writableLocation(QStandardPaths.StandardLocation.AppDataLocation)
    root = Path(qt_location) if qt_location else _platform_data_root()
    # Without an application name Qt hands back the shared data root.
    if root.name.lower() != APP_NAME.lower():
        root = root / APP_NAME
    return _ensure_dir(root)


def get_log_dir() -> Path:
    return _ensure_dir(get_user_data_dir() / "logs")


def get_log_file() -> Path:
    return get_log_dir() / "app.log"


def resolve_config_path() -> Path:
    """
    Writable ``config.json`` in the user data dir.

    On first run the bundled ``config/config.json`` is copied there; the path is
    returned even when neither file exists yet.
    """
    user_cfg = get_user_data_dir() / CONFIG_FILE_NAME
    if user_cfg.exists():
        return user_cfg

    bundled = get_base_dir() / "config" / CONFIG_FILE_NAME
    if bundled.is_file():
        try:
            user_cfg.write_bytes(bundled.read_bytes())
        except OSError:
            pass
    return user_cfg
