"""Data models for the orchestrator module."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union, TYPE_CHECKING

from ..config import SkipFlags
from ..tools.invoker import InvocationResult

if TYPE_CHECKING:
    from ..readiness import ReadinessCheck
    from .context import StageContext


class StageStatus(Enum):
    """阶段执行状态"""
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class FailureReason(Enum):
    """阶段失败原因（用于报告分类）"""
    INVOCATION_FAILED = "invocation_failed"
    READINESS_TIMEOUT = "readiness_timeout"
    PRECONDITION = "precondition"
    CONFIGURATION = "configuration"
    VERIFICATION_FAILED = "verification_failed"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"


class RunStatus(Enum):
    """整体运行结果"""
    SUCCESS = "success"
    PARTIAL_SKIP = "partial_skip"
    FAILED = "failed"


@dataclass(frozen=True)
class Invocation:
    """One external command a stage issues."""

    command: str
    args: Tuple[str, ...] = ()
    cwd: Optional[Union[str, Path]] = None
    timeout: Optional[float] = None
    expected_exit_codes: Tuple[int, ...] = (0,)
    input_text: Optional[str] = field(default=None, repr=False)
    retries: int = 0
    description: str = ""

    @property
    def display(self) -> str:
        return self.description or " ".join([self.command, *self.args])


StageTask = Callable[["StageContext"], Any]
StageStep = Union[Invocation, StageTask]
PostCheck = Callable[["StageContext"], "ReadinessCheck"]


def never_skip(flags: SkipFlags) -> bool:
    return False


@dataclass
class Stage:
    """One named, orderable unit of the deployment pipeline.

    `invocations` run in order and are either plain `Invocation` records or
    callables taking the stage context (for steps whose arguments depend on
    earlier output). `post_checks` build readiness checks evaluated after
    every invocation succeeded.
    """

    name: str
    ordinal: int
    invocations: List[StageStep] = field(default_factory=list)
    skip_predicate: Callable[[SkipFlags], bool] = never_skip
    post_checks: List[PostCheck] = field(default_factory=list)
    requires: Tuple[str, ...] = ()
    description: str = ""


@dataclass
class StageOutcome:
    """Typed result of running one stage."""

    name: str
    ordinal: int
    status: StageStatus
    reason: Optional[FailureReason] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    invocations: List[InvocationResult] = field(default_factory=list)
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status is StageStatus.SUCCESS

    @classmethod
    def skipped(cls, stage: Stage) -> "StageOutcome":
        return cls(name=stage.name, ordinal=stage.ordinal, status=StageStatus.SKIPPED)

    def to_dict(self, max_output: int = 1000) -> Dict[str, Any]:
        return {
            "name": self.name,
            "ordinal": self.ordinal,
            "status": self.status.value,
            "reason": self.reason.value if self.reason else None,
            "error": self.error,
            "warnings": list(self.warnings),
            "started_at": self.started_at,
            "duration_seconds": round(self.duration, 3),
            "commands": [
                {
                    "command": " ".join(r.argv),
                    "exit_code": r.exit_status,
                    "duration_seconds": round(r.duration, 3),
                    "stdout": r.stdout[:max_output],
                    "stderr": r.stderr[:max_output // 2],
                }
                for r in self.invocations
            ],
        }


@dataclass
class PipelineRun:
    """Record of one pipeline execution; the source of the final summary."""

    outcomes: List[StageOutcome] = field(default_factory=list)
    status: Optional[RunStatus] = None
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    finished_at: Optional[str] = None
    cleanup_warnings: List[str] = field(default_factory=list)

    def outcome(self, name: str) -> Optional[StageOutcome]:
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        return None

    def executed(self) -> List[str]:
        return [o.name for o in self.outcomes if o.status is not StageStatus.SKIPPED]

    def finalize(self) -> RunStatus:
        if any(o.status is StageStatus.FAILED for o in self.outcomes):
            self.status = RunStatus.FAILED
        elif all(o.status is StageStatus.SKIPPED for o in self.outcomes):
            self.status = RunStatus.PARTIAL_SKIP
        else:
            self.status = RunStatus.SUCCESS
        self.finished_at = datetime.now().isoformat()
        return self.status

    @property
    def ok(self) -> bool:
        return self.status in (RunStatus.SUCCESS, RunStatus.PARTIAL_SKIP)

    def summary_lines(self) -> List[str]:
        icons = {
            StageStatus.SUCCESS: "✅",
            StageStatus.SKIPPED: "⏭️",
            StageStatus.FAILED: "❌",
        }
        lines = [f"Run status: {self.status.value if self.status else 'running'}"]
        for o in self.outcomes:
            line = f"  {icons[o.status]} {o.ordinal}. {o.name:<28} {o.status.value}"
            if o.reason:
                line += f" ({o.reason.value})"
            if o.status is not StageStatus.SKIPPED:
                line += f" [{o.duration:.1f}s]"
            lines.append(line)
            if o.error:
                lines.append(f"       {o.error}")
            for warning in o.warnings:
                lines.append(f"       ⚠️ {warning}")
        for warning in self.cleanup_warnings:
            lines.append(f"  ⚠️ cleanup: {warning}")
        return lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value if self.status else "running",
            "start_time": self.started_at,
            "end_time": self.finished_at,
            "stages": [o.to_dict() for o in self.outcomes],
            "cleanup_warnings": list(self.cleanup_warnings),
        }
