from __future__ import annotations

import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from core.round_ledger import RoundLedger
from core.state_machine import RoundState, RoundStateMachine


class RoundStateMachineTest(unittest.TestCase):
    def test_legal_flow(self) -> None:
        fsm = RoundStateMachine()
        self.assertEqual(fsm.current_state, RoundState.IDLE)
        self.assertTrue(fsm.transition_to(RoundState.WAITING_FIRST_FRAGMENT))
        self.assertTrue(fsm.transition_to(RoundState.STREAMING))
        self.assertTrue(fsm.transition_to(RoundState.DONE))
        self.assertTrue(fsm.transition_to(RoundState.IDLE))
        self.assertEqual(fsm.current_state, RoundState.IDLE)

    def test_illegal_transition_rejected(self) -> None:
        fsm = RoundStateMachine()
        with self.assertLogs("MewCompanion", level="WARNING"):
            self.assertFalse(fsm.transition_to(RoundState.STREAMING))
        self.assertFalse(fsm.transition_to(RoundState.DONE))
        self.assertEqual(fsm.current_state, RoundState.IDLE)

    def test_done_only_reachable_from_streaming(self) -> None:
        fsm = RoundStateMachine()
        fsm.transition_to(RoundState.WAITING_FIRST_FRAGMENT)
        self.assertFalse(fsm.can_transition(RoundState.DONE))
        fsm.transition_to(RoundState.ERROR)
        self.assertFalse(fsm.can_transition(RoundState.DONE))
        self.assertFalse(fsm.can_transition(RoundState.STREAMING))

    def test_new_round_supersedes_every_state(self) -> None:
        for state in RoundState:
            fsm = RoundStateMachine()
            fsm._current_state = state
            self.assertTrue(fsm.can_transition(RoundState.WAITING_FIRST_FRAGMENT), msg=state)
            self.assertTrue(fsm.can_transition(RoundState.ERROR), msg=state)

    def test_callbacks_and_signal(self) -> None:
        fsm = RoundStateMachine()
        calls: list[str] = []
        changes: list[tuple[RoundState, RoundState]] = []
        fsm.state_changed.connect(lambda old, new: changes.append((old, new)))

        fsm.register_state_handler(
            RoundState.WAITING_FIRST_FRAGMENT,
            on_enter=lambda: calls.append("enter_waiting"),
            on_exit=lambda: calls.append("exit_waiting"),
        )
        fsm.register_state_handler(
            RoundState.STREAMING,
            on_enter=lambda: calls.append("enter_streaming"),
        )

        self.assertTrue(fsm.transition_to(RoundState.WAITING_FIRST_FRAGMENT))
        self.assertTrue(fsm.transition_to(RoundState.STREAMING))
        self.assertEqual(calls, ["enter_waiting", "exit_waiting", "enter_streaming"])
        self.assertEqual(
            changes,
            [
                (RoundState.IDLE, RoundState.WAITING_FIRST_FRAGMENT),
                (RoundState.WAITING_FIRST_FRAGMENT, RoundState.STREAMING),
            ],
        )

    def test_same_state_transition_is_silent(self) -> None:
        fsm = RoundStateMachine()
        changes: list[object] = []
        fsm.state_changed.connect(lambda old, new: changes.append(new))
        self.assertTrue(fsm.transition_to(RoundState.IDLE))
        self.assertEqual(changes, [])

    def test_active_states(self) -> None:
        active = {state for state in RoundState if state.is_active}
        self.assertEqual(active, {RoundState.WAITING_FIRST_FRAGMENT, RoundState.STREAMING})


class RoundLedgerTest(unittest.TestCase):
    def test_nothing_is_current_before_first_round(self) -> None:
        ledger = RoundLedger()
        self.assertEqual(ledger.current_round_id, 0)
        self.assertFalse(ledger.is_current(0))

    def test_start_round_overwrites_unconditionally(self) -> None:
        ledger = RoundLedger()
        ledger.start_round(5)
        self.assertTrue(ledger.is_current(5))
        ledger.start_round(2)
        self.assertTrue(ledger.is_current(2))
        self.assertFalse(ledger.is_current(5))
        self.assertEqual(ledger.current_round_id, 2)


if __name__ == "__main__":
    unittest.main()
