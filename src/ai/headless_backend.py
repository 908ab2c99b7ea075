from __future__ import annotations

import logging
import os
from typing import Callable

from PySide6.QtCore import QObject, QProcess, QProcessEnvironment, Signal, Slot

from .headless_session import (
    FIRST_SEND_FAILED_MESSAGE,
    FIRST_SEND_FAILED_TITLE,
    HeadlessSession,
    RoundPlan,
    build_headless_command,
    build_process_environment,
)
from .stream_json import StreamJsonDecoder, StreamLineReader

try:
    from core.transport import BackendError, HeadlessConfig, OpenAIConfig, RetryAck, SubmitAck
except ModuleNotFoundError:
    from ..core.transport import BackendError, HeadlessConfig, OpenAIConfig, RetryAck, SubmitAck

logger = logging.getLogger("MewCompanion")


class HeadlessJob(QObject):
    """One ``qwen`` process streaming a single round."""

    chunk_ready = Signal(int, str)
    failed = Signal(int, str, str)
    completed = Signal(int)

    def __init__(self, plan: RoundPlan, parent: QObject | None = None):
        super().__init__(parent)
        self._round_id = plan.round_id
        self._reader = StreamLineReader()
        self._decoder = StreamJsonDecoder()
        self._stderr = bytearray()
        self._read_error: str | None = None
        self._process = QProcess(self)
        self._process.readyReadStandardOutput.connect(self._on_stdout)
        self._process.readyReadStandardError.connect(self._on_stderr)
        self._process.errorOccurred.connect(self._on_error)
        self._process.finished.connect(self._on_finished)

    @property
    def round_id(self) -> int:
        return self._round_id

    def start(
        self,
        program: str,
        arguments: list[str],
        environment: dict[str, str],
        working_directory: str | None,
        timeout_ms: int,
    ) -> None:
        process_env = QProcessEnvironment()
        for key, value in environment.items():
            process_env.insert(key, value)
        self._process.setProcessEnvironment(process_env)
        if working_directory:
            self._process.setWorkingDirectory(working_directory)
        self._process.setStandardInputFile(QProcess.nullDevice())
        self._process.start(program, arguments)
        if not self._process.waitForStarted(max(1, int(timeout_ms))):
            raise BackendError(f"failed to start qwen headless process: {self._process.errorString()}")
        logger.info("[Headless] Process spawned for round_id=%s", self._round_id)

    def kill(self) -> None:
        if self._process.state() != QProcess.ProcessState.NotRunning:
            self._process.kill()
            self._process.waitForFinished(1000)

    def consume_stdout(self, data: bytes) -> None:
        for line in self._reader.feed(data):
            self._handle_line(line)

    def consume_stderr(self, data: bytes) -> None:
        self._stderr += data

    def complete(self, exit_code: int, *, crashed: bool = False) -> None:
        """Report how the round ended; emits ``failed`` for every unhappy exit."""
        for line in self._reader.finish():
            self._handle_line(line)
        stderr_output = self._stderr.decode("utf-8", errors="replace").strip()
        round_id = self._round_id

        if self._read_error is not None:
            message = f"failed reading qwen headless stdout: {self._read_error}"
            logger.warning("[Headless] Failed streaming output for round_id=%s: %s", round_id, message)
            self.failed.emit(round_id, "stdout_read_error", message)
        elif not crashed and exit_code == 0:
            if not self._decoder.summary.emitted_any_chunk:
                if stderr_output:
                    message = f"qwen completed without stdout. stderr: {stderr_output}"
                else:
                    message = "qwen completed without output"
                logger.warning("[Headless] No output for round_id=%s: %s", round_id, message)
                self.failed.emit(round_id, "empty_output", message)
            else:
                logger.info("[Headless] Round completed: round_id=%s", round_id)
        else:
            status = "terminated by signal" if crashed else str(exit_code)
            message = f"qwen exited with non-zero status: {status}"
            if stderr_output:
                message = f"{message}, stderr: {stderr_output}"
            logger.warning("[Headless] Round failed: round_id=%s %s", round_id, message)
            self.failed.emit(round_id, "command_failed", message)

        self.completed.emit(round_id)

    def _handle_line(self, line: str) -> None:
        chunk = self._decoder.decode_line(line)
        if chunk:
            self.chunk_ready.emit(self._round_id, chunk)

    @Slot()
    def _on_stdout(self) -> None:
        self.consume_stdout(bytes(self._process.readAllStandardOutput()))

    @Slot()
    def _on_stderr(self) -> None:
        self.consume_stderr(bytes(self._process.readAllStandardError()))

    @Slot(QProcess.ProcessError)
    def _on_error(self, error: QProcess.ProcessError) -> None:
        if error == QProcess.ProcessError.ReadError:
            self._read_error = self._process.errorString()
        logger.debug("[Headless] Process error for round_id=%s: %s", self._round_id, error)

    @Slot(int, QProcess.ExitStatus)
    def _on_finished(self, exit_code: int, exit_status: QProcess.ExitStatus) -> None:
        self._on_stdout()
        self._on_stderr()
        self.complete(exit_code, crashed=exit_status == QProcess.ExitStatus.CrashExit)


class HeadlessBackend(QObject):
    """
    Round transport running ``qwen`` in headless stream-json mode.

    Signals:
    - fragment_received(int, str): text chunk tagged with its round id
    - stream_error(int, str, str): round id, error kind, message
    - session_interrupted(str): backend-initiated abort, not tied to a round
    - first_submission_failed(str, str): title and message for the first failed send
    """

    fragment_received = Signal(int, str)
    stream_error = Signal(int, str, str)
    session_interrupted = Signal(str)
    first_submission_failed = Signal(str, str)

    def __init__(
        self,
        *,
        program: str = "qwen",
        start_timeout_ms: int = 3_000,
        job_factory: Callable[[RoundPlan], HeadlessJob] | None = None,
        parent: QObject | None = None,
    ):
        super().__init__(parent)
        self._program = program or "qwen"
        self._start_timeout_ms = max(1, int(start_timeout_ms))
        self._job_factory = job_factory or (lambda plan: HeadlessJob(plan, self))
        self._session = HeadlessSession()
        self._jobs: dict[int, HeadlessJob] = {}

    def configure(self, *, program: str, start_timeout_ms: int) -> None:
        self._program = program or "qwen"
        self._start_timeout_ms = max(1, int(start_timeout_ms))

    def submit_round(
        self,
        text: str,
        openai_config: OpenAIConfig | None = None,
        headless_config: HeadlessConfig | None = None,
    ) -> SubmitAck:
        plan = self._session.plan_send(text, openai_config, headless_config)
        try:
            self._spawn(plan)
        except BackendError as exc:
            self._session.mark_failed(plan)
            logger.warning("[Headless] Send failed for round_id=%s: %s", plan.round_id, exc)
            if plan.is_first_attempt:
                self.first_submission_failed.emit(FIRST_SEND_FAILED_TITLE, FIRST_SEND_FAILED_MESSAGE)
            raise
        self._session.mark_started(plan)
        logger.info("[Headless] Send accepted: round_id=%s continue=%s", plan.round_id, plan.use_continue)
        return SubmitAck(ok=True, round_id=plan.round_id)

    def retry_last(self) -> RetryAck:
        plan = self._session.plan_retry()
        if plan is None:
            return RetryAck(ok=True, resent=False, round_id=None)
        try:
            self._spawn(plan)
        except BackendError as exc:
            self._session.mark_failed(plan)
            logger.warning("[Headless] Retry failed for round_id=%s: %s", plan.round_id, exc)
            return RetryAck(ok=False, resent=False, round_id=None)
        self._session.mark_started(plan)
        return RetryAck(ok=True, resent=True, round_id=plan.round_id)

    def is_running(self) -> bool:
        return bool(self._jobs)

    def interrupt(self, message: str = "会话已中断，请重试") -> None:
        """Kill every running round and tell listeners the session was aborted."""
        if not self._jobs:
            return
        logger.info("[Headless] Interrupting %d running round(s)", len(self._jobs))
        self.session_interrupted.emit(message)
        for job in list(self._jobs.values()):
            job.kill()

    def shutdown(self) -> None:
        for job in list(self._jobs.values()):
            job.kill()
        self._jobs.clear()

    def _spawn(self, plan: RoundPlan) -> None:
        program, arguments = build_headless_command(
            plan.input_text,
            use_continue=plan.use_continue,
            headless_config=plan.headless_config,
            program=self._program,
        )
        environment = build_process_environment(dict(os.environ), plan.openai_config)
        working_directory = plan.headless_config.working_directory if plan.headless_config else None

        logger.info(
            "[Headless] Spawning process for round_id=%s continue=%s",
            plan.round_id,
            plan.use_continue,
        )
        job = self._job_factory(plan)
        job.chunk_ready.connect(self.fragment_received)
        job.failed.connect(self.stream_error)
        job.completed.connect(self._on_job_completed)
        try:
            job.start(program, arguments, environment, working_directory, self._start_timeout_ms)
        except BackendError:
            job.deleteLater()
            raise
        self._jobs[plan.round_id] = job

    @Slot(int)
    def _on_job_completed(self, round_id: int) -> None:
        job = self._jobs.pop(round_id, None)
        if job is not None:
            job.deleteLater()
