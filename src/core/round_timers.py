from __future__ import annotations

from typing import Callable

from .chat_round import ChatRound
from .timer_scheduler import TimerScheduler


class RoundTimers:
    """
    First-fragment deadline and rolling silence window for a round.

    Callbacks receive the id of the round that armed them; the owner decides at
    fire time whether that round is still current.
    """

    DEFAULT_FIRST_FRAGMENT_TIMEOUT_MS: int = 15_000
    DEFAULT_SILENCE_MS: int = 800

    def __init__(
        self,
        scheduler: TimerScheduler,
        *,
        on_first_fragment_timeout: Callable[[int], None],
        on_silence: Callable[[int], None],
        first_fragment_timeout_ms: int = DEFAULT_FIRST_FRAGMENT_TIMEOUT_MS,
        silence_ms: int = DEFAULT_SILENCE_MS,
    ) -> None:
        self._scheduler = scheduler
        self._on_first_fragment_timeout = on_first_fragment_timeout
        self._on_silence = on_silence
        self._first_fragment_timeout_ms = max(1, int(first_fragment_timeout_ms))
        self._silence_ms = max(1, int(silence_ms))

    @property
    def first_fragment_timeout_ms(self) -> int:
        return self._first_fragment_timeout_ms

    @property
    def silence_ms(self) -> int:
        return self._silence_ms

    def configure(self, *, first_fragment_timeout_ms: int, silence_ms: int) -> None:
        self._first_fragment_timeout_ms = max(1, int(first_fragment_timeout_ms))
        self._silence_ms = max(1, int(silence_ms))

    def arm_first_fragment(self, chat_round: ChatRound) -> None:
        self.disarm_first_fragment(chat_round)
        round_id = chat_round.round_id
        chat_round.first_fragment_timer = self._scheduler.call_later(
            self._first_fragment_timeout_ms,
            lambda: self._on_first_fragment_timeout(round_id),
        )

    @staticmethod
    def disarm_first_fragment(chat_round: ChatRound) -> None:
        if chat_round.first_fragment_timer is not None:
            chat_round.first_fragment_timer.cancel()
            chat_round.first_fragment_timer = None

    def refresh_silence(self, chat_round: ChatRound) -> None:
        if chat_round.silence_timer is not None:
            chat_round.silence_timer.cancel()
        round_id = chat_round.round_id
        chat_round.silence_timer = self._scheduler.call_later(
            self._silence_ms,
            lambda: self._on_silence(round_id),
        )

    @staticmethod
    def cancel(chat_round: ChatRound) -> None:
        chat_round.cancel_timers()
