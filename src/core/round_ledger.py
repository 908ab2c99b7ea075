from __future__ import annotations


class RoundLedger:
    """Tracks which conversational round is current; everything else is stale."""

    def __init__(self) -> None:
        self._current_round_id = 0

    @property
    def current_round_id(self) -> int:
        return self._current_round_id

    def start_round(self, round_id: int) -> None:
        self._current_round_id = int(round_id)

    def is_current(self, round_id: int) -> bool:
        return self._current_round_id > 0 and int(round_id) == self._current_round_id
