from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Mapping

try:
    from core.config_manager import APPROVAL_MODES
    from core.transport import HeadlessConfig, OpenAIConfig
except ModuleNotFoundError:
    from ..core.config_manager import APPROVAL_MODES
    from ..core.transport import HeadlessConfig, OpenAIConfig

logger = logging.getLogger("MewCompanion")

FIRST_SEND_FAILED_TITLE = "qwen-cli 不可用"
FIRST_SEND_FAILED_MESSAGE = "未检测到可用的 qwen-cli 或未登录。请在终端运行 qwen 并完成登录后重试。"

_CI_ENV_KEYS = {"CI", "CONTINUOUS_INTEGRATION"}


def sanitize_optional(value: str | None) -> str | None:
    if value is None:
        return None
    trimmed = str(value).strip()
    return trimmed or None


def sanitize_approval_mode(mode: str | None) -> str | None:
    trimmed = sanitize_optional(mode)
    if trimmed is None:
        return None
    if trimmed not in APPROVAL_MODES:
        logger.warning("[Headless] Ignored unsupported approval mode: %s", trimmed)
        return None
    return trimmed


def sanitize_headless_config(config: HeadlessConfig | None) -> HeadlessConfig | None:
    if config is None:
        return None
    sanitized = HeadlessConfig(
        working_directory=sanitize_optional(config.working_directory),
        approval_mode=sanitize_approval_mode(config.approval_mode),
    )
    return None if sanitized.is_empty() else sanitized


def sanitize_openai_config(config: OpenAIConfig | None) -> OpenAIConfig | None:
    if config is None:
        return None
    sanitized = OpenAIConfig(
        api_key=sanitize_optional(config.api_key),
        base_url=sanitize_optional(config.base_url),
        model=sanitize_optional(config.model),
    )
    return None if sanitized.is_empty() else sanitized


def build_headless_command(
    prompt: str,
    *,
    use_continue: bool,
    headless_config: HeadlessConfig | None = None,
    program: str = "qwen",
    platform: str = sys.platform,
) -> tuple[str, list[str]]:
    """Return ``(program, arguments)`` for one headless round."""
    if platform == "win32":
        executable = "cmd.exe"
        args = ["/C", f"{program}.cmd"]
    else:
        executable = program
        args = []

    args += ["-p", prompt, "--output-format", "stream-json", "--include-partial-messages"]
    if use_continue:
        args.append("--continue")

    if headless_config is not None:
        if headless_config.working_directory:
            args += ["--include-directories", headless_config.working_directory]
        if headless_config.approval_mode:
            args += ["--approval-mode", headless_config.approval_mode]
    return executable, args


def build_process_environment(
    base_env: Mapping[str, str],
    openai_config: OpenAIConfig | None = None,
) -> dict[str, str]:
    """
    Environment for the headless process.

    CI markers are removed, TERM gets a default and OpenAI-compatible
    overrides are injected.
    """
    env = {
        key: value
        for key, value in base_env.items()
        if key not in _CI_ENV_KEYS and not key.startswith("CI_")
    }
    removed = len(base_env) - len(env)
    if removed:
        logger.info("[Headless] Removed %d CI-related env vars", removed)

    if "TERM" not in env:
        env["TERM"] = "xterm-256color"

    if openai_config is not None:
        applied: list[str] = []
        for key, value in (
            ("OPENAI_API_KEY", openai_config.api_key),
            ("OPENAI_BASE_URL", openai_config.base_url),
            ("OPENAI_MODEL", openai_config.model),
        ):
            if value:
                env[key] = value
                applied.append(key)
        if applied:
            logger.info("[Headless] Applied OpenAI-compatible overrides: %s", ", ".join(applied))
    return env


@dataclass(slots=True, frozen=True)
class RoundPlan:
    round_id: int
    input_text: str
    use_continue: bool
    openai_config: OpenAIConfig | None
    headless_config: HeadlessConfig | None
    is_first_attempt: bool = False


class HeadlessSession:
    """
    Session bookkeeping for headless rounds.

    Every send or retry attempt takes the next round id. A round continues the
    previous conversation only when a session was started before with an equal
    headless config; otherwise it starts a fresh one. The last failed input is
    kept for a single retry.
    """

    def __init__(self) -> None:
        self._generation_round = 0
        self._first_send_attempted = False
        self._session_started = False
        self._session_config: HeadlessConfig | None = None
        self._last_failed: RoundPlan | None = None

    @property
    def generation_round(self) -> int:
        return self._generation_round

    @property
    def has_failed_input(self) -> bool:
        return self._last_failed is not None

    def plan_send(
        self,
        text: str,
        openai_config: OpenAIConfig | None = None,
        headless_config: HeadlessConfig | None = None,
    ) -> RoundPlan:
        is_first_attempt = not self._first_send_attempted
        self._first_send_attempted = True
        return self._plan(
            text,
            sanitize_openai_config(openai_config),
            sanitize_headless_config(headless_config),
            is_first_attempt=is_first_attempt,
        )

    def plan_retry(self) -> RoundPlan | None:
        failed = self._last_failed
        if failed is None:
            return None
        return self._plan(failed.input_text, failed.openai_config, failed.headless_config)

    def mark_started(self, plan: RoundPlan) -> None:
        self._last_failed = None
        if not plan.use_continue:
            self._session_config = plan.headless_config
            self._session_started = True

    def mark_failed(self, plan: RoundPlan) -> None:
        self._last_failed = plan

    def _plan(
        self,
        text: str,
        openai_config: OpenAIConfig | None,
        headless_config: HeadlessConfig | None,
        *,
        is_first_attempt: bool = False,
    ) -> RoundPlan:
        self._generation_round += 1
        use_continue = self._session_started and self._session_config == headless_config
        if self._session_started and not use_continue:
            logger.info(
                "[Headless] Headless config changed; starting a fresh session for round_id=%s",
                self._generation_round,
            )
        return RoundPlan(
            round_id=self._generation_round,
            input_text=text,
            use_continue=use_continue,
            openai_config=openai_config,
            headless_config=headless_config,
            is_first_attempt=is_first_attempt,
        )
