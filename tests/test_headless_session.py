from __future__ import annotations

import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from ai.headless_session import (
    HeadlessSession,
    build_headless_command,
    build_process_environment,
    sanitize_headless_config,
    sanitize_openai_config,
)
from core.transport import HeadlessConfig, OpenAIConfig


class HeadlessCommandTest(unittest.TestCase):
    def test_posix_command(self) -> None:
        program, args = build_headless_command("hi", use_continue=False, platform="linux")
        self.assertEqual(program, "qwen")
        self.assertEqual(args, ["-p", "hi", "--output-format", "stream-json", "--include-partial-messages"])

    def test_windows_goes_through_cmd(self) -> None:
        program, args = build_headless_command("hi", use_continue=True, platform="win32")
        self.assertEqual(program, "cmd.exe")
        self.assertEqual(args[:2], ["/C", "qwen.cmd"])
        self.assertEqual(args[-1], "--continue")

    def test_headless_options(self) -> None:
        _, args = build_headless_command(
            "hi",
            use_continue=False,
            headless_config=HeadlessConfig(working_directory="/work", approval_mode="yolo"),
            program="qwen-dev",
            platform="darwin",
        )
        self.assertEqual(args[-4:], ["--include-directories", "/work", "--approval-mode", "yolo"])
        self.assertNotIn("--continue", args)


class ProcessEnvironmentTest(unittest.TestCase):
    def test_ci_markers_removed_and_term_defaulted(self) -> None:
        env = build_process_environment(
            {"CI": "1", "CONTINUOUS_INTEGRATION": "true", "CI_JOB_ID": "7", "PATH": "/bin", "CIRCLE": "x"}
        )
        self.assertEqual(env, {"PATH": "/bin", "CIRCLE": "x", "TERM": "xterm-256color"})

    def test_existing_term_kept(self) -> None:
        env = build_process_environment({"TERM": "dumb"})
        self.assertEqual(env["TERM"], "dumb")

    def test_openai_overrides_injected(self) -> None:
        env = build_process_environment(
            {"OPENAI_MODEL": "old"},
            OpenAIConfig(api_key="sk-1", base_url=None, model="qwen3-coder-plus"),
        )
        self.assertEqual(env["OPENAI_API_KEY"], "sk-1")
        self.assertEqual(env["OPENAI_MODEL"], "qwen3-coder-plus")
        self.assertNotIn("OPENAI_BASE_URL", env)


class SanitizeConfigTest(unittest.TestCase):
    def test_blank_values_collapse_to_none(self) -> None:
        self.assertIsNone(sanitize_openai_config(OpenAIConfig(api_key="  ", base_url="", model=None)))
        self.assertIsNone(sanitize_headless_config(HeadlessConfig(working_directory=" ", approval_mode="")))
        self.assertIsNone(sanitize_openai_config(None))

    def test_values_are_trimmed(self) -> None:
        config = sanitize_openai_config(OpenAIConfig(api_key=" k ", base_url=" u ", model=" m "))
        self.assertEqual(config, OpenAIConfig(api_key="k", base_url="u", model="m"))

    def test_unknown_approval_mode_dropped(self) -> None:
        with self.assertLogs("MewCompanion", level="WARNING"):
            config = sanitize_headless_config(HeadlessConfig(working_directory="/w", approval_mode="sudo"))
        self.assertEqual(config, HeadlessConfig(working_directory="/w", approval_mode=None))


class HeadlessSessionTest(unittest.TestCase):
    def test_round_ids_are_monotonic_and_first_attempt_flagged_once(self) -> None:
        session = HeadlessSession()
        first = session.plan_send("a")
        session.mark_failed(first)
        second = session.plan_send("b")
        self.assertEqual((first.round_id, second.round_id), (1, 2))
        self.assertTrue(first.is_first_attempt)
        self.assertFalse(second.is_first_attempt)
        self.assertEqual(session.generation_round, 2)

    def test_continue_only_after_started_session(self) -> None:
        session = HeadlessSession()
        first = session.plan_send("a")
        self.assertFalse(first.use_continue)
        session.mark_started(first)
        second = session.plan_send("b")
        self.assertTrue(second.use_continue)

    def test_failed_first_send_does_not_enable_continue(self) -> None:
        session = HeadlessSession()
        first = session.plan_send("a")
        session.mark_failed(first)
        second = session.plan_send("b")
        self.assertFalse(second.use_continue)

    def test_changed_headless_config_starts_fresh_session(self) -> None:
        session = HeadlessSession()
        first = session.plan_send("a", headless_config=HeadlessConfig(working_directory="/one"))
        session.mark_started(first)

        changed = session.plan_send("b", headless_config=HeadlessConfig(working_directory="/two"))
        self.assertFalse(changed.use_continue)
        session.mark_started(changed)

        same = session.plan_send("c", headless_config=HeadlessConfig(working_directory="/two"))
        self.assertTrue(same.use_continue)

    def test_openai_changes_do_not_break_continuation(self) -> None:
        session = HeadlessSession()
        session.mark_started(session.plan_send("a", OpenAIConfig(model="m1")))
        plan = session.plan_send("b", OpenAIConfig(model="m2"))
        self.assertTrue(plan.use_continue)

    def test_retry_reuses_failed_input_with_fresh_round(self) -> None:
        session = HeadlessSession()
        self.assertIsNone(session.plan_retry())

        config = HeadlessConfig(approval_mode="plan")
        failed = session.plan_send("again please", headless_config=config)
        session.mark_failed(failed)
        self.assertTrue(session.has_failed_input)

        retry = session.plan_retry()
        self.assertEqual(retry.input_text, "again please")
        self.assertEqual(retry.headless_config, config)
        self.assertEqual(retry.round_id, failed.round_id + 1)
        self.assertFalse(retry.is_first_attempt)

        session.mark_started(retry)
        self.assertFalse(session.has_failed_input)
        self.assertIsNone(session.plan_retry())


if __name__ == "__main__":
    unittest.main()
