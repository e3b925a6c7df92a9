"""Staged deployment orchestration."""

from .context import PipelineServices, StageContext
from .models import (
    FailureReason,
    Invocation,
    PipelineRun,
    RunStatus,
    Stage,
    StageOutcome,
    StageStatus,
)
from .pipeline import PipelineController
from .run_log import RunLog
from .runner import StageRunner

__all__ = [
    "FailureReason",
    "Invocation",
    "PipelineController",
    "PipelineRun",
    "PipelineServices",
    "RunLog",
    "RunStatus",
    "Stage",
    "StageContext",
    "StageOutcome",
    "StageRunner",
    "StageStatus",
]
