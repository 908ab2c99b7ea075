from __future__ import annotations

import logging

from PySide6.QtCore import QObject, Signal, Slot

from .chat_round import ChatRound
from .retry_coordinator import RetryCoordinator
from .round_ledger import RoundLedger
from .round_timers import RoundTimers
from .state_machine import RoundState, RoundStateMachine
from .stream_assembler import StreamAssembler
from .text_sanitizer import sanitize
from .timer_scheduler import QtTimerScheduler, TimerScheduler
from .transport import BackendError, HeadlessConfig, OpenAIConfig, RoundTransport

logger = logging.getLogger("MewCompanion")

EMPTY_INPUT_HINT = "请说点什么～"
THINKING_HINT = "思考中…"
SESSION_INTERRUPTED_HINT = "会话已中断，请重试"
UNPARSABLE_STREAM_HINT = "没能读懂 qwen 的输出，请重试"
RETRY_FAILED_HINT = "重试失败，请在终端运行 qwen 并完成登录后再试。"


class ChatRoundController(QObject):
    """
    Streaming-response coordinator.

    Owns the current round, its buffers and timers. Transport events, timer
    callbacks and UI actions only reach round state through the entry points
    below, and every round-tagged entry point starts with the same guard: the
    round must be current and still active.

    Signals (presentation sinks):
    - placeholder_shown(str): transient "thinking" text for a fresh round
    - placeholder_cleared(): first fragment arrived
    - text_shown(str): full rendered text after a flush
    - error_shown(str): terminal error hint for the round
    - failure_dialog_opened(str, str) / failure_dialog_closed()
    - response_dismissed(): user closed the response
    - state_changed(RoundState, RoundState)
    """

    placeholder_shown = Signal(str)
    placeholder_cleared = Signal()
    text_shown = Signal(str)
    error_shown = Signal(str)
    failure_dialog_opened = Signal(str, str)
    failure_dialog_closed = Signal()
    response_dismissed = Signal()
    state_changed = Signal(object, object)

    def __init__(
        self,
        transport: RoundTransport,
        *,
        scheduler: TimerScheduler | None = None,
        flush_interval_ms: int = StreamAssembler.DEFAULT_FLUSH_INTERVAL_MS,
        batch_chars: int = StreamAssembler.DEFAULT_BATCH_CHARS,
        silence_ms: int = RoundTimers.DEFAULT_SILENCE_MS,
        first_fragment_timeout_ms: int = RoundTimers.DEFAULT_FIRST_FRAGMENT_TIMEOUT_MS,
        parent: QObject | None = None,
    ):
        super().__init__(parent)
        self._transport = transport
        self._scheduler = scheduler if scheduler is not None else QtTimerScheduler(self)
        self._ledger = RoundLedger()
        self._fsm = RoundStateMachine(self)
        self._fsm.state_changed.connect(self.state_changed.emit)
        self._assembler = StreamAssembler(
            self._scheduler,
            self._on_debounce_elapsed,
            flush_interval_ms=flush_interval_ms,
            batch_chars=batch_chars,
        )
        self._timers = RoundTimers(
            self._scheduler,
            on_first_fragment_timeout=self._on_first_fragment_timeout,
            on_silence=self._on_silence,
            first_fragment_timeout_ms=first_fragment_timeout_ms,
            silence_ms=silence_ms,
        )
        self._retry = RetryCoordinator(transport)
        self._round: ChatRound | None = None
        self._openai_config: OpenAIConfig | None = None
        self._headless_config: HeadlessConfig | None = None
        self._failure_dialog_visible = False

    # ─── Introspection ──────────────────────────────────────────

    @property
    def state(self) -> RoundState:
        return self._fsm.current_state

    @property
    def current_round_id(self) -> int:
        return self._ledger.current_round_id

    @property
    def current_round(self) -> ChatRound | None:
        return self._round

    @property
    def rendered_text(self) -> str:
        return self._round.rendered if self._round is not None else ""

    @property
    def pending_text(self) -> str:
        return self._round.pending if self._round is not None else ""

    @property
    def failure_dialog_visible(self) -> bool:
        return self._failure_dialog_visible

    @property
    def retry_available(self) -> bool:
        return self._retry.retry_available

    # ─── Configuration ──────────────────────────────────────────

    def configure_backend(
        self,
        openai_config: OpenAIConfig | None,
        headless_config: HeadlessConfig | None,
    ) -> None:
        """Overrides sent with the next submission; a running round keeps its own."""
        self._openai_config = openai_config
        self._headless_config = headless_config

    def configure_timings(
        self,
        *,
        flush_interval_ms: int,
        batch_chars: int,
        silence_ms: int,
        first_fragment_timeout_ms: int,
    ) -> None:
        self._assembler.configure(flush_interval_ms=flush_interval_ms, batch_chars=batch_chars)
        self._timers.configure(
            first_fragment_timeout_ms=first_fragment_timeout_ms,
            silence_ms=silence_ms,
        )

    # ─── User actions ───────────────────────────────────────────

    def submit(self, text: str) -> bool:
        """Submit user input; return True when the backend acknowledged a round."""
        if not (text or "").strip():
            self._fail_submission(EMPTY_INPUT_HINT)
            return False

        try:
            ack = self._transport.submit_round(text, self._openai_config, self._headless_config)
        except BackendError as exc:
            logger.warning("[ChatRound] Submission failed: %s", exc)
            # A first-message failure already opened the failure dialog.
            if not self._failure_dialog_visible:
                self._fail_submission(SESSION_INTERRUPTED_HINT)
            return False

        if not ack.ok:
            logger.warning("[ChatRound] Submission not acknowledged: round_id=%s", ack.round_id)
            self._fail_submission(SESSION_INTERRUPTED_HINT)
            return False

        self.start_round(ack.round_id)
        return True

    def start_round(self, round_id: int) -> None:
        self._discard_round()
        self._ledger.start_round(round_id)
        self._round = ChatRound(round_id=int(round_id))
        self._fsm.transition_to(RoundState.WAITING_FIRST_FRAGMENT)
        self._timers.arm_first_fragment(self._round)
        logger.info("[ChatRound] Round started: round_id=%s", round_id)
        self.placeholder_shown.emit(THINKING_HINT)

    def dismiss(self) -> None:
        """Close the response: drop buffers and timers and return to idle."""
        self._discard_round()
        self._fsm.transition_to(RoundState.IDLE)
        self.response_dismissed.emit()

    def acknowledge_failure(self) -> None:
        self._retry.dismiss()
        self._close_failure_dialog()

    def retry_last(self) -> bool:
        """Retry the failed first message once; return True if a round started."""
        if not self._retry.retry_available:
            logger.debug("[ChatRound] Retry ignored: no failure pending")
            return False
        self._close_failure_dialog()
        round_id = self._retry.retry()
        if round_id is None:
            self._fail_submission(RETRY_FAILED_HINT)
            return False
        self.start_round(round_id)
        return True

    def shutdown(self) -> None:
        self._discard_round()
        self._close_failure_dialog()

    # ─── Transport events ───────────────────────────────────────

    @Slot(int, str)
    def on_fragment(self, round_id: int, text: str) -> None:
        if not self._accepts(round_id):
            logger.debug("[ChatRound] Ignored fragment for stale round_id=%s", round_id)
            return
        chat_round = self._round
        chat_round.raw_fragment_seen = True
        if self._fsm.current_state == RoundState.WAITING_FIRST_FRAGMENT:
            self._timers.disarm_first_fragment(chat_round)
            self._fsm.transition_to(RoundState.STREAMING)
            self.placeholder_cleared.emit()
        self._timers.refresh_silence(chat_round)

        if self._assembler.append(chat_round, sanitize(text)):
            self.text_shown.emit(chat_round.rendered)

    @Slot(int, str, str)
    def on_stream_error(self, round_id: int, kind: str, message: str) -> None:
        if not self._accepts(round_id):
            logger.debug("[ChatRound] Ignored stream error for round_id=%s kind=%s", round_id, kind)
            return
        logger.warning("[ChatRound] Stream error: round_id=%s kind=%s message=%s", round_id, kind, message)
        self._finish_with_error(SESSION_INTERRUPTED_HINT)

    @Slot(str)
    def on_session_interrupted(self, message: str) -> None:
        if self._round is None or not self._fsm.current_state.is_active:
            logger.debug("[ChatRound] Session interruption with no active round: %s", message)
            return
        logger.warning("[ChatRound] Session interrupted: round_id=%s message=%s", self._round.round_id, message)
        self._finish_with_error(message or SESSION_INTERRUPTED_HINT)

    @Slot(str, str)
    def on_first_submission_failed(self, title: str, message: str) -> None:
        notice = self._retry.notice_failure(title, message)
        self._failure_dialog_visible = True
        self.failure_dialog_opened.emit(notice.title, notice.message)

    # ─── Timer callbacks ────────────────────────────────────────

    def _on_debounce_elapsed(self, round_id: int) -> None:
        if not self._accepts(round_id):
            return
        if self._assembler.flush(self._round):
            self.text_shown.emit(self._round.rendered)

    def _on_first_fragment_timeout(self, round_id: int) -> None:
        if not self._accepts(round_id) or self._fsm.current_state != RoundState.WAITING_FIRST_FRAGMENT:
            return
        logger.warning("[ChatRound] No output before first-fragment timeout: round_id=%s", round_id)
        self._finish_with_error(SESSION_INTERRUPTED_HINT)

    def _on_silence(self, round_id: int) -> None:
        if not self._accepts(round_id) or self._fsm.current_state != RoundState.STREAMING:
            return
        chat_round = self._round
        if self._assembler.flush(chat_round):
            self.text_shown.emit(chat_round.rendered)
        chat_round.cancel_timers()
        if chat_round.text_seen:
            self._fsm.transition_to(RoundState.DONE)
            logger.info(
                "[ChatRound] Round done: round_id=%s chars=%d",
                round_id,
                len(chat_round.rendered),
            )
            return
        logger.warning("[ChatRound] Stream produced no readable text: round_id=%s", round_id)
        self._fsm.transition_to(RoundState.ERROR)
        self.error_shown.emit(UNPARSABLE_STREAM_HINT)

    # ─── Internals ──────────────────────────────────────────────

    def _accepts(self, round_id: int) -> bool:
        return (
            self._round is not None
            and self._ledger.is_current(round_id)
            and self._fsm.current_state.is_active
        )

    def _finish_with_error(self, message: str) -> None:
        if self._round is not None:
            self._round.cancel_timers()
        self._fsm.transition_to(RoundState.ERROR)
        self.error_shown.emit(message)

    def _fail_submission(self, message: str) -> None:
        self._discard_round()
        self._fsm.transition_to(RoundState.ERROR)
        self.error_shown.emit(message)

    def _discard_round(self) -> None:
        if self._round is not None:
            self._round.cancel_timers()
            self._round = None

    def _close_failure_dialog(self) -> None:
        if not self._failure_dialog_visible:
            return
        self._failure_dialog_visible = False
        self.failure_dialog_closed.emit()
