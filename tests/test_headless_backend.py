from __future__ import annotations

import json
import os
import sys
import unittest
from pathlib import Path

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from PySide6.QtCore import QCoreApplication, QObject, Signal
from PySide6.QtWidgets import QApplication

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from ai.headless_backend import HeadlessBackend, HeadlessJob
from ai.headless_session import FIRST_SEND_FAILED_MESSAGE, FIRST_SEND_FAILED_TITLE, RoundPlan
from core.transport import BackendError, HeadlessConfig, OpenAIConfig


def _get_or_create_app() -> QCoreApplication:
    current = QCoreApplication.instance()
    if current is not None:
        return current
    return QApplication(sys.argv)


class _FakeJob(QObject):
    chunk_ready = Signal(int, str)
    failed = Signal(int, str, str)
    completed = Signal(int)

    def __init__(self, plan: RoundPlan, fail_start: bool = False):
        super().__init__()
        self.plan = plan
        self.fail_start = fail_start
        self.started_with: tuple | None = None
        self.killed = False

    def start(self, program, arguments, environment, working_directory, timeout_ms) -> None:
        self.started_with = (program, arguments, environment, working_directory, timeout_ms)
        if self.fail_start:
            raise BackendError("failed to start qwen headless process")

    def kill(self) -> None:
        self.killed = True


class HeadlessBackendTest(unittest.TestCase):
    def setUp(self) -> None:
        self._app = _get_or_create_app()
        self.jobs: list[_FakeJob] = []
        self.fail_next: list[bool] = []

        def _factory(plan: RoundPlan) -> _FakeJob:
            fail = self.fail_next.pop(0) if self.fail_next else False
            job = _FakeJob(plan, fail_start=fail)
            self.jobs.append(job)
            return job

        self.backend = HeadlessBackend(program="qwen", start_timeout_ms=1234, job_factory=_factory)
        self.fragments: list[tuple[int, str]] = []
        self.errors: list[tuple[int, str, str]] = []
        self.interruptions: list[str] = []
        self.first_failures: list[tuple[str, str]] = []
        self.backend.fragment_received.connect(lambda rid, text: self.fragments.append((rid, text)))
        self.backend.stream_error.connect(lambda rid, kind, msg: self.errors.append((rid, kind, msg)))
        self.backend.session_interrupted.connect(self.interruptions.append)
        self.backend.first_submission_failed.connect(lambda t, m: self.first_failures.append((t, m)))

    def test_submit_spawns_job_and_forwards_chunks(self) -> None:
        ack = self.backend.submit_round(
            "hello",
            OpenAIConfig(api_key="sk"),
            HeadlessConfig(working_directory="/work", approval_mode="plan"),
        )
        self.assertTrue(ack.ok)
        self.assertEqual(ack.round_id, 1)
        self.assertTrue(self.backend.is_running())

        job = self.jobs[0]
        program, arguments, environment, working_directory, timeout_ms = job.started_with
        self.assertIn("-p", arguments)
        self.assertIn("hello", arguments)
        self.assertNotIn("--continue", arguments)
        self.assertEqual(environment["OPENAI_API_KEY"], "sk")
        self.assertEqual(working_directory, "/work")
        self.assertEqual(timeout_ms, 1234)

        job.chunk_ready.emit(1, "Hi")
        job.failed.emit(1, "command_failed", "boom")
        job.completed.emit(1)
        self.assertEqual(self.fragments, [(1, "Hi")])
        self.assertEqual(self.errors, [(1, "command_failed", "boom")])
        self.assertFalse(self.backend.is_running())

    def test_second_round_continues_session(self) -> None:
        self.backend.submit_round("one")
        self.backend.submit_round("two")
        self.assertNotIn("--continue", self.jobs[0].started_with[1])
        self.assertIn("--continue", self.jobs[1].started_with[1])

    def test_first_send_failure_reports_and_raises(self) -> None:
        self.fail_next = [True]
        with self.assertRaises(BackendError):
            self.backend.submit_round("hello")
        self.assertEqual(self.first_failures, [(FIRST_SEND_FAILED_TITLE, FIRST_SEND_FAILED_MESSAGE)])
        self.assertFalse(self.backend.is_running())

    def test_later_send_failure_only_raises(self) -> None:
        self.backend.submit_round("one")
        self.fail_next = [True]
        with self.assertRaises(BackendError):
            self.backend.submit_round("two")
        self.assertEqual(self.first_failures, [])

    def test_retry_resends_failed_input(self) -> None:
        self.assertEqual(self.backend.retry_last().resent, False)

        self.fail_next = [True]
        with self.assertRaises(BackendError):
            self.backend.submit_round("again")

        ack = self.backend.retry_last()
        self.assertTrue(ack.ok)
        self.assertTrue(ack.resent)
        self.assertEqual(ack.round_id, 2)
        self.assertIn("again", self.jobs[-1].started_with[1])

    def test_retry_spawn_failure_is_refused(self) -> None:
        self.fail_next = [True, True]
        with self.assertRaises(BackendError):
            self.backend.submit_round("again")
        ack = self.backend.retry_last()
        self.assertFalse(ack.ok)
        self.assertFalse(ack.resent)
        self.assertIsNone(ack.round_id)

    def test_interrupt_notifies_then_kills(self) -> None:
        self.backend.interrupt()
        self.assertEqual(self.interruptions, [])

        self.backend.submit_round("long task")
        self.backend.interrupt("stop")
        self.assertEqual(self.interruptions, ["stop"])
        self.assertTrue(self.jobs[0].killed)

    def test_configure_changes_program(self) -> None:
        self.backend.configure(program="qwen-nightly", start_timeout_ms=500)
        self.backend.submit_round("hi")
        program, arguments, _, _, timeout_ms = self.jobs[0].started_with
        if sys.platform == "win32":
            self.assertIn("qwen-nightly.cmd", arguments)
        else:
            self.assertEqual(program, "qwen-nightly")
        self.assertEqual(timeout_ms, 500)

    def test_shutdown_kills_running_jobs(self) -> None:
        self.backend.submit_round("hi")
        self.backend.shutdown()
        self.assertTrue(self.jobs[0].killed)
        self.assertFalse(self.backend.is_running())


class HeadlessJobTest(unittest.TestCase):
    def setUp(self) -> None:
        self._app = _get_or_create_app()
        plan = RoundPlan(round_id=3, input_text="hi", use_continue=False, openai_config=None, headless_config=None)
        self.job = HeadlessJob(plan)
        self.events: list[tuple] = []
        self.job.chunk_ready.connect(lambda rid, text: self.events.append(("chunk", rid, text)))
        self.job.failed.connect(lambda rid, kind, msg: self.events.append(("failed", rid, kind, msg)))
        self.job.completed.connect(lambda rid: self.events.append(("completed", rid)))

    def tearDown(self) -> None:
        self.job.deleteLater()

    def test_stream_json_output_becomes_chunks(self) -> None:
        line = json.dumps({"event": {"delta": {"text": "喵"}}}, ensure_ascii=False)
        data = (line + "\n").encode("utf-8")
        self.job.consume_stdout(data[:5])
        self.assertEqual(self.events, [])
        self.job.consume_stdout(data[5:])
        self.job.complete(0)
        self.assertEqual(self.events, [("chunk", 3, "喵"), ("completed", 3)])

    def test_trailing_line_without_newline_is_decoded(self) -> None:
        self.job.consume_stdout(b"raw text")
        self.job.complete(0)
        self.assertEqual(self.events, [("chunk", 3, "raw text\n"), ("completed", 3)])

    def test_clean_exit_without_output_is_empty_output(self) -> None:
        self.job.consume_stderr(b"not logged in")
        self.job.complete(0)
        kind, message = self.events[0][2], self.events[0][3]
        self.assertEqual(kind, "empty_output")
        self.assertIn("not logged in", message)
        self.assertEqual(self.events[-1], ("completed", 3))

    def test_non_zero_exit_is_command_failed(self) -> None:
        self.job.consume_stdout(b"partial\n")
        self.job.complete(2)
        failed = [event for event in self.events if event[0] == "failed"]
        self.assertEqual(failed[0][2], "command_failed")
        self.assertIn("2", failed[0][3])

    def test_crash_is_reported_as_signal_termination(self) -> None:
        self.job.complete(0, crashed=True)
        self.assertEqual(self.events[0][2], "command_failed")
        self.assertIn("terminated by signal", self.events[0][3])

    def test_real_process_round_trip(self) -> None:
        script = (
            "import json, sys\n"
            "for piece in ('He', 'llo'):\n"
            "    print(json.dumps({'event': {'delta': {'text': piece}}}), flush=True)\n"
        )
        self.job.start(sys.executable, ["-c", script], dict(os.environ), None, 5000)
        self.assertTrue(self.job._process.waitForFinished(10_000))
        self._app.processEvents()
        chunks = [event[2] for event in self.events if event[0] == "chunk"]
        self.assertEqual("".join(chunks), "Hello")
        self.assertIn(("completed", 3), self.events)

    def test_missing_program_raises_backend_error(self) -> None:
        with self.assertRaises(BackendError):
            self.job.start("/nonexistent/qwen-binary", [], {}, None, 1000)


if __name__ == "__main__":
    unittest.main()
