from __future__ import annotations

from typing import Callable

from .chat_round import ChatRound
from .timer_scheduler import TimerScheduler


class StreamAssembler:
    """
    Batch sanitized fragments into the rendered text of a round.

    Text is flushed as soon as the pending buffer holds ``batch_chars`` code points,
    otherwise when the debounce timer fires. The debounce timer is armed once and
    coalesces further appends until it fires; it is never restarted while pending,
    so no text waits longer than ``flush_interval_ms``.
    """

    DEFAULT_FLUSH_INTERVAL_MS: int = 50
    DEFAULT_BATCH_CHARS: int = 8

    def __init__(
        self,
        scheduler: TimerScheduler,
        on_debounce_elapsed: Callable[[int], None],
        *,
        flush_interval_ms: int = DEFAULT_FLUSH_INTERVAL_MS,
        batch_chars: int = DEFAULT_BATCH_CHARS,
    ) -> None:
        self._scheduler = scheduler
        self._on_debounce_elapsed = on_debounce_elapsed
        self._flush_interval_ms = max(1, int(flush_interval_ms))
        self._batch_chars = max(1, int(batch_chars))

    @property
    def flush_interval_ms(self) -> int:
        return self._flush_interval_ms

    @property
    def batch_chars(self) -> int:
        return self._batch_chars

    def configure(self, *, flush_interval_ms: int, batch_chars: int) -> None:
        self._flush_interval_ms = max(1, int(flush_interval_ms))
        self._batch_chars = max(1, int(batch_chars))

    def append(self, chat_round: ChatRound, text: str) -> bool:
        """Buffer ``text``; return True when it triggered an immediate flush."""
        if not text:
            return False
        chat_round.pending += text
        if len(chat_round.pending) >= self._batch_chars:
            return self.flush(chat_round)
        if chat_round.flush_timer is None or not chat_round.flush_timer.is_active():
            round_id = chat_round.round_id
            chat_round.flush_timer = self._scheduler.call_later(
                self._flush_interval_ms,
                lambda: self._on_debounce_elapsed(round_id),
            )
        return False

    def flush(self, chat_round: ChatRound) -> bool:
        """Move pending text into rendered text; return True if anything moved."""
        if chat_round.flush_timer is not None:
            chat_round.flush_timer.cancel()
            chat_round.flush_timer = None
        if not chat_round.pending:
            return False
        chat_round.rendered += chat_round.pending
        chat_round.pending = ""
        chat_round.text_seen = True
        return True
