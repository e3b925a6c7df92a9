"""Run external provisioning and orchestration tools."""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple, Union

import psutil

from ..errors import ExternalToolError, ToolErrorKind

logger = logging.getLogger(__name__)

# 超时后等待子进程退出的宽限时间
_KILL_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class InvocationResult:
    """Result of one external command. Immutable once produced."""

    command: str
    args: Tuple[str, ...]
    exit_status: int
    stdout: str
    stderr: str
    duration: float

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


def kill_process_tree(pid: int, grace: float = _KILL_GRACE_SECONDS) -> None:
    """Terminate a process and all of its children, killing stragglers."""
    try:
        parent = psutil.Process(pid)
        procs = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        return

    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass
    _, alive = psutil.wait_procs(procs, timeout=grace)
    for proc in alive:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    if alive:
        psutil.wait_procs(alive, timeout=grace)


class ToolInvoker:
    """Spawns one external process per call and captures its output.

    No retries happen here; the stage runner owns retry policy.
    """

    def __init__(
        self,
        env: Optional[Dict[str, str]] = None,
        default_timeout: Optional[float] = None,
    ) -> None:
        self.env = env
        self.default_timeout = default_timeout

    def resolve(self, command: str) -> Optional[str]:
        """Return the absolute path of `command`, or None if it is missing."""
        return shutil.which(command, path=self._get_env().get("PATH"))

    def invoke(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        expected_exit_codes: Iterable[int] = (0,),
        input_text: Optional[str] = None,
    ) -> InvocationResult:
        argv = [command, *[str(a) for a in args]]
        timeout = timeout if timeout is not None else self.default_timeout
        expected = tuple(expected_exit_codes)

        executable = self.resolve(command)
        if executable is None:
            raise ExternalToolError(ToolErrorKind.PROCESS_NOT_FOUND, argv)

        logger.debug("$ %s%s", " ".join(argv), f"  (cwd={cwd})" if cwd else "")
        start = time.monotonic()
        try:
            process = subprocess.Popen(
                [executable, *argv[1:]],
                stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                cwd=str(cwd) if cwd else None,
                env=self._get_env(),
            )
        except FileNotFoundError as exc:
            raise ExternalToolError(ToolErrorKind.PROCESS_NOT_FOUND, argv) from exc

        try:
            stdout, stderr = process.communicate(input=input_text, timeout=timeout)
        except subprocess.TimeoutExpired:
            # 超时：必须终止整个进程树，不能留下后台进程
            kill_process_tree(process.pid)
            process.communicate()
            logger.debug("Timed out after %.1fs: %s", time.monotonic() - start, " ".join(argv))
            raise ExternalToolError(ToolErrorKind.TIMEOUT, argv, timeout=timeout)
        except BaseException:
            kill_process_tree(process.pid)
            process.wait()
            raise

        result = InvocationResult(
            command=command,
            args=tuple(argv[1:]),
            exit_status=process.returncode,
            stdout=stdout.strip(),
            stderr=stderr.strip(),
            duration=time.monotonic() - start,
        )
        logger.debug("Exit %d in %.2fs", result.exit_status, result.duration)

        if result.exit_status not in expected:
            raise ExternalToolError(
                ToolErrorKind.NON_ZERO_EXIT,
                argv,
                exit_code=result.exit_status,
                stderr=result.stderr,
                result=result,
            )
        return result

    def _get_env(self) -> Dict[str, str]:
        env = os.environ.copy()
        if self.env:
            env.update(self.env)
        return env
