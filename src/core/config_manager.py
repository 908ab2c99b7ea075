from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from PySide6.QtCore import QIODevice, QSaveFile

APPROVAL_MODES: tuple[str, ...] = ("default", "auto-edit", "yolo", "plan")


@dataclass(slots=True)
class ChatConfig:
    flush_interval_ms: int = 50
    batch_chars: int = 8
    silence_ms: int = 800
    first_fragment_timeout_ms: int = 15_000


@dataclass(slots=True)
class BackendConfig:
    command: str = "qwen"
    working_directory: str = ""
    approval_mode: str = "default"
    openai_api_key: str = ""
    openai_base_url: str = ""
    openai_model: str = ""
    start_timeout_ms: int = 3_000


@dataclass(slots=True)
class BehaviorConfig:
    debug_mode: bool = False
    always_on_top: bool = True


@dataclass(slots=True)
class AppConfig:
    version: str = "1.0.0"
    chat: ChatConfig = field(default_factory=ChatConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    behavior: BehaviorConfig = field(default_factory=BehaviorConfig)


class ConfigManager:
    """Load app runtime configuration from JSON with safe defaults."""

    def __init__(self, config_path: Path):
        self._config_path = config_path

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> AppConfig:
        if not self._config_path.exists():
            return AppConfig()
        try:
            raw = json.loads(self._config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return AppConfig()
        if not isinstance(raw, dict):
            return AppConfig()

        return AppConfig(
            version=str(raw.get("version", "1.0.0")),
            chat=self._build_chat(raw.get("chat")),
            backend=self._build_backend(raw.get("backend")),
            behavior=self._build_behavior(raw.get("behavior")),
        )

    def save(self, config: AppConfig) -> bool:
        payload = self.to_dict(config)
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(payload, ensure_ascii=False, indent=2) + "\n"
        try:
            saver = QSaveFile(str(self._config_path))
            if not saver.open(QIODevice.OpenModeFlag.WriteOnly | QIODevice.OpenModeFlag.Truncate):
                return False
            raw = content.encode("utf-8")
            written = saver.write(raw)
            if written != len(raw):
                saver.cancelWriting()
                return False
            if not saver.commit():
                return False
        except Exception:
            return False
        return True

    @staticmethod
    def to_dict(config: AppConfig) -> dict[str, Any]:
        return {
            "version": str(config.version),
            "chat": {
                "flush_interval_ms": int(config.chat.flush_interval_ms),
                "batch_chars": int(config.chat.batch_chars),
                "silence_ms": int(config.chat.silence_ms),
                "first_fragment_timeout_ms": int(config.chat.first_fragment_timeout_ms),
            },
            "backend": {
                "command": str(config.backend.command),
                "working_directory": str(config.backend.working_directory),
                "approval_mode": str(config.backend.approval_mode).lower(),
                "openai_api_key": str(config.backend.openai_api_key),
                "openai_base_url": str(config.backend.openai_base_url),
                "openai_model": str(config.backend.openai_model),
                "start_timeout_ms": int(config.backend.start_timeout_ms),
            },
            "behavior": {
                "debug_mode": bool(config.behavior.debug_mode),
                "always_on_top": bool(config.behavior.always_on_top),
            },
        }

    @staticmethod
    def _int_field(payload: dict, key: str, default: int, low: int, high: int) -> int:
        try:
            value = int(payload.get(key, default))
        except (TypeError, ValueError):
            value = default
        return max(low, min(high, value))

    @classmethod
    def _build_chat(cls, payload: Any) -> ChatConfig:
        if not isinstance(payload, dict):
            return ChatConfig()
        return ChatConfig(
            flush_interval_ms=cls._int_field(payload, "flush_interval_ms", 50, 10, 1_000),
            batch_chars=cls._int_field(payload, "batch_chars", 8, 1, 256),
            silence_ms=cls._int_field(payload, "silence_ms", 800, 100, 10_000),
            first_fragment_timeout_ms=cls._int_field(
                payload, "first_fragment_timeout_ms", 15_000, 1_000, 120_000
            ),
        )

    @classmethod
    def _build_backend(cls, payload: Any) -> BackendConfig:
        if not isinstance(payload, dict):
            return BackendConfig()
        approval_mode = str(payload.get("approval_mode", "default")).strip().lower()
        if approval_mode not in APPROVAL_MODES:
            approval_mode = "default"
        return BackendConfig(
            command=str(payload.get("command", "qwen")).strip() or "qwen",
            working_directory=str(payload.get("working_directory", "")).strip(),
            approval_mode=approval_mode,
            openai_api_key=str(payload.get("openai_api_key", "")).strip(),
            openai_base_url=str(payload.get("openai_base_url", "")).strip(),
            openai_model=str(payload.get("openai_model", "")).strip(),
            start_timeout_ms=cls._int_field(payload, "start_timeout_ms", 3_000, 500, 30_000),
        )

    @staticmethod
    def _build_behavior(payload: Any) -> BehaviorConfig:
        if not isinstance(payload, dict):
            return BehaviorConfig()
        return BehaviorConfig(
            debug_mode=bool(payload.get("debug_mode", False)),
            always_on_top=bool(payload.get("always_on_top", True)),
        )
