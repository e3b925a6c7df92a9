"""Stage runner: executes a single pipeline stage as an atomic unit."""

from __future__ import annotations

import logging
import threading
import time
from typing import Mapping, Optional

from ..cleanup import CleanupRegistry
from ..config import SkipFlags
from ..errors import (
    ConfigurationError,
    ExternalToolError,
    ReadinessTimeout,
    StageCancelled,
    VerificationError,
)
from .context import PipelineServices, StageContext
from .models import FailureReason, Invocation, Stage, StageOutcome, StageStatus

logger = logging.getLogger(__name__)


class StageRunner:
    """
    阶段执行器

    Runs one stage: skip check, precondition check, invocations in order,
    post-checks, then the stage's cleanup. A stage never decides to abort
    its siblings; it only reports its own outcome.
    """

    def __init__(self, services: PipelineServices) -> None:
        self.services = services

    def run(
        self,
        stage: Stage,
        flags: SkipFlags,
        completed: Optional[Mapping[str, StageOutcome]] = None,
        global_cleanup: Optional[CleanupRegistry] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> StageOutcome:
        if stage.skip_predicate(flags):
            logger.info(f"   ⏭️ Skipped by flags")
            return StageOutcome.skipped(stage)

        outcome = StageOutcome(name=stage.name, ordinal=stage.ordinal, status=StageStatus.SUCCESS)
        completed = completed or {}
        missing = [
            name for name in stage.requires
            if name not in completed or not completed[name].succeeded
        ]
        if missing:
            return self._fail(
                outcome,
                FailureReason.PRECONDITION,
                f"requires successful stage(s): {', '.join(missing)}",
            )

        cleanup = CleanupRegistry(name=stage.name, parent=global_cleanup)
        ctx = StageContext(self.services, flags, outcome, cleanup, cancel_event)
        start = time.monotonic()
        try:
            for step in stage.invocations:
                if isinstance(step, Invocation):
                    ctx.invoke(step)
                else:
                    step(ctx)
            for build_check in stage.post_checks:
                ctx.wait(build_check(ctx))
        except ReadinessTimeout as exc:
            self._fail(outcome, FailureReason.READINESS_TIMEOUT, str(exc))
        except ExternalToolError as exc:
            self._fail(outcome, FailureReason.INVOCATION_FAILED, str(exc))
        except VerificationError as exc:
            self._fail(outcome, FailureReason.VERIFICATION_FAILED, str(exc))
        except ConfigurationError as exc:
            self._fail(outcome, FailureReason.CONFIGURATION, str(exc))
        except StageCancelled as exc:
            self._fail(outcome, FailureReason.CANCELLED, str(exc))
        except Exception as exc:
            logger.exception("   Unexpected error in stage %s", stage.name)
            self._fail(outcome, FailureReason.UNEXPECTED, f"{type(exc).__name__}: {exc}")
        finally:
            # 清理失败只记录为警告，不覆盖阶段结果
            for warning in cleanup.run():
                outcome.warnings.append(f"cleanup: {warning}")
            outcome.duration = time.monotonic() - start

        if outcome.succeeded:
            logger.info(f"   ✅ {stage.name} succeeded ({outcome.duration:.1f}s)")
        return outcome

    @staticmethod
    def _fail(outcome: StageOutcome, reason: FailureReason, error: str) -> StageOutcome:
        outcome.status = StageStatus.FAILED
        outcome.reason = reason
        outcome.error = error
        logger.error(f"   ❌ {outcome.name} failed [{reason.value}]: {error}")
        return outcome
