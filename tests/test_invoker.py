"""Tests for the tool invoker using real subprocesses."""

import sys
import tempfile
import time
import unittest
from pathlib import Path

import psutil

from stack_deployer.errors import ExternalToolError, ToolErrorKind
from stack_deployer.tools.invoker import ToolInvoker

PYTHON = sys.executable


class ToolInvokerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.invoker = ToolInvoker()

    def test_captures_stdout_and_exit_status(self) -> None:
        result = self.invoker.invoke(PYTHON, ["-c", "print('hello')"])
        self.assertTrue(result.ok)
        self.assertEqual(result.stdout, "hello")
        self.assertEqual(result.args, ("-c", "print('hello')"))
        self.assertGreaterEqual(result.duration, 0.0)

    def test_non_zero_exit_carries_result(self) -> None:
        with self.assertRaises(ExternalToolError) as ctx:
            self.invoker.invoke(
                PYTHON, ["-c", "import sys; sys.stderr.write('bad things'); sys.exit(3)"]
            )
        error = ctx.exception
        self.assertIs(error.kind, ToolErrorKind.NON_ZERO_EXIT)
        self.assertEqual(error.exit_code, 3)
        self.assertIn("bad things", str(error))
        self.assertIsNotNone(error.result)
        self.assertEqual(error.result.exit_status, 3)

    def test_allowed_exit_codes(self) -> None:
        result = self.invoker.invoke(
            PYTHON, ["-c", "import sys; sys.exit(1)"], expected_exit_codes=(0, 1)
        )
        self.assertEqual(result.exit_status, 1)
        self.assertFalse(result.ok)

    def test_missing_executable(self) -> None:
        with self.assertRaises(ExternalToolError) as ctx:
            self.invoker.invoke("definitely-not-a-real-tool-xyz", ["--version"])
        self.assertIs(ctx.exception.kind, ToolErrorKind.PROCESS_NOT_FOUND)

    def test_timeout_kills_process(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            pid_file = Path(tmp) / "pid"
            script = (
                "import os, sys, time; "
                "open(sys.argv[1], 'w').write(str(os.getpid())); time.sleep(30)"
            )
            start = time.monotonic()
            with self.assertRaises(ExternalToolError) as ctx:
                self.invoker.invoke(PYTHON, ["-c", script, str(pid_file)], timeout=2.0)
            self.assertIs(ctx.exception.kind, ToolErrorKind.TIMEOUT)
            self.assertLess(time.monotonic() - start, 10)
            self.assertEqual(ctx.exception.timeout, 2.0)
            pid = int(pid_file.read_text())
            self.assertFalse(psutil.pid_exists(pid))

    def test_undecodable_output_is_replaced(self) -> None:
        result = self.invoker.invoke(
            PYTHON,
            ["-c", "import sys; sys.stdout.buffer.write(b'\\xff\\xfe ok'); "
                   "sys.stderr.buffer.write(b'warn \\xff')"],
        )
        self.assertTrue(result.ok)
        self.assertTrue(result.stdout.endswith(" ok"))
        self.assertIn("�", result.stdout)
        self.assertIn("warn", result.stderr)

    def test_input_text_is_piped(self) -> None:
        result = self.invoker.invoke(
            PYTHON, ["-c", "import sys; print(sys.stdin.read().upper())"], input_text="manifest"
        )
        self.assertEqual(result.stdout, "MANIFEST")

    def test_runs_in_working_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            result = self.invoker.invoke(PYTHON, ["-c", "import os; print(os.getcwd())"], cwd=tmp)
            self.assertEqual(Path(result.stdout).resolve(), Path(tmp).resolve())

    def test_extra_env(self) -> None:
        invoker = ToolInvoker(env={"STACK_DEPLOYER_TEST": "42"})
        result = invoker.invoke(PYTHON, ["-c", "import os; print(os.environ['STACK_DEPLOYER_TEST'])"])
        self.assertEqual(result.stdout, "42")


if __name__ == "__main__":
    unittest.main()
