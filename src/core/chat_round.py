from __future__ import annotations

from dataclasses import dataclass

from .timer_scheduler import TimerHandle


@dataclass(slots=True)
class ChatRound:
    """One submitted message and everything streamed back for it."""

    round_id: int
    rendered: str = ""
    pending: str = ""
    raw_fragment_seen: bool = False
    text_seen: bool = False
    first_fragment_timer: TimerHandle | None = None
    silence_timer: TimerHandle | None = None
    flush_timer: TimerHandle | None = None

    def cancel_timers(self) -> None:
        for name in ("first_fragment_timer", "silence_timer", "flush_timer"):
            handle = getattr(self, name)
            if handle is not None:
                handle.cancel()
                setattr(self, name, None)
