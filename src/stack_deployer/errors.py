"""Error taxonomy for the deployment pipeline."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .tools.invoker import InvocationResult


class DeployerError(RuntimeError):
    """Base class for every error raised by stack-deployer."""


class ToolErrorKind(Enum):
    """外部工具失败类型"""
    PROCESS_NOT_FOUND = "process_not_found"
    NON_ZERO_EXIT = "non_zero_exit"
    TIMEOUT = "timeout"


class ExternalToolError(DeployerError):
    """Raised when an external command cannot be run or does not succeed."""

    def __init__(
        self,
        kind: ToolErrorKind,
        command: Sequence[str],
        exit_code: Optional[int] = None,
        stderr: str = "",
        result: Optional["InvocationResult"] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.kind = kind
        self.command = list(command)
        self.exit_code = exit_code
        self.stderr = stderr
        self.result = result
        self.timeout = timeout
        super().__init__(self._format())

    def _format(self) -> str:
        rendered = " ".join(self.command)
        if self.kind is ToolErrorKind.PROCESS_NOT_FOUND:
            return f"Executable not found: {self.command[0] if self.command else '?'}"
        if self.kind is ToolErrorKind.TIMEOUT:
            return f"Command {rendered} timed out after {self.timeout} seconds"
        tail = self.stderr.strip().splitlines()[-5:]
        detail = f": {' | '.join(tail)}" if tail else ""
        return f"Command {rendered} failed with code {self.exit_code}{detail}"


class ReadinessTimeout(DeployerError):
    """Raised when a readiness condition is not satisfied before its deadline."""

    def __init__(
        self,
        check_name: str,
        deadline: float,
        attempts: int,
        last_error: Optional[str] = None,
    ) -> None:
        self.check_name = check_name
        self.deadline = deadline
        self.attempts = attempts
        self.last_error = last_error
        message = (
            f"'{check_name}' not ready after {deadline:g}s ({attempts} attempts)"
        )
        if last_error:
            message += f"; last error: {last_error}"
        super().__init__(message)


class StageCancelled(DeployerError):
    """Raised when a wait is interrupted by the pipeline's cancel event."""


class ConfigurationError(DeployerError):
    """Bad flags, missing files or a missing mandatory credential."""


class CleanupWarning(UserWarning):
    """A cleanup action failed. Logged and recorded, never propagated."""


class VerificationError(DeployerError):
    """A deployment smoke check found the release in a bad state."""
