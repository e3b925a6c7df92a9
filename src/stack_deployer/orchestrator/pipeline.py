"""Pipeline controller: runs stages in order and owns stop/continue decisions."""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional, Sequence

from ..cleanup import CleanupRegistry
from ..config import SkipFlags
from .context import PipelineServices
from .models import FailureReason, PipelineRun, Stage, StageOutcome, StageStatus
from .run_log import RunLog
from .runner import StageRunner

logger = logging.getLogger(__name__)


class PipelineController:
    """
    部署流水线控制器

    Runs stages strictly by ordinal. The first failed stage stops the run;
    the global cleanup registry (tunnels, temp files) is always drained
    exactly once before `execute` returns or re-raises.
    """

    def __init__(
        self,
        services: PipelineServices,
        run_log: Optional[RunLog] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.services = services
        self.runner = StageRunner(services)
        self.run_log = run_log
        self.cancel_event = cancel_event or threading.Event()
        self.cleanup = CleanupRegistry(name="pipeline")

    def execute(self, stages: Sequence[Stage], flags: SkipFlags) -> PipelineRun:
        ordered: List[Stage] = sorted(stages, key=lambda s: s.ordinal)
        run = PipelineRun()
        completed: Dict[str, StageOutcome] = {}

        logger.info("")
        logger.info("=" * 60)
        logger.info("🚀 DEPLOYMENT PIPELINE")
        logger.info("=" * 60)
        for stage in ordered:
            marker = "skip" if stage.skip_predicate(flags) else "run"
            logger.info(f"  {stage.ordinal}. {stage.name} [{marker}]")
        logger.info("=" * 60)

        if self.run_log:
            self.run_log.start(run, flags, [s.name for s in ordered])

        current: Optional[Stage] = None
        try:
            for stage in ordered:
                if self.cancel_event.is_set():
                    logger.warning("⛔ Cancellation requested, not starting further stages")
                    run.outcomes.append(_cancelled(stage, "cancelled before start"))
                    break

                logger.info("")
                logger.info(f"📍 Stage {stage.ordinal}/{len(ordered)}: {stage.name}")
                current = stage
                outcome = self.runner.run(
                    stage,
                    flags,
                    completed=completed,
                    global_cleanup=self.cleanup,
                    cancel_event=self.cancel_event,
                )
                current = None
                run.outcomes.append(outcome)
                completed[stage.name] = outcome
                if self.run_log:
                    self.run_log.update(run)

                if outcome.status is StageStatus.FAILED:
                    logger.error(f"❌ Stopping pipeline after failed stage: {stage.name}")
                    break
        finally:
            if current is not None:
                # 阶段执行中被中断（例如 Ctrl-C）：整体结果必须为失败
                run.outcomes.append(_cancelled(current, "interrupted"))
            self._drain_cleanup(run)
            run.finalize()
            if self.run_log:
                self.run_log.finalize(run)

        logger.info("")
        logger.info("=" * 60)
        for line in run.summary_lines():
            logger.info(line)
        logger.info("=" * 60)
        return run

    def _drain_cleanup(self, run: PipelineRun) -> None:
        pending = len(self.cleanup.pending)
        if pending:
            logger.info(f"🧹 Running {pending} pending cleanup action(s)...")
        for warning in self.cleanup.run():
            run.cleanup_warnings.append(str(warning))
        leaked = self.services.tunnels.open_tunnels
        if leaked:
            # 未登记到清理列表的隧道也必须关闭
            logger.warning(f"⚠️ Closing {len(leaked)} unregistered tunnel(s)")
            self.services.tunnels.close_all()


def _cancelled(stage: Stage, error: str) -> StageOutcome:
    return StageOutcome(
        name=stage.name,
        ordinal=stage.ordinal,
        status=StageStatus.FAILED,
        reason=FailureReason.CANCELLED,
        error=error,
    )
