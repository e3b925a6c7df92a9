"""Persisted JSON record of pipeline runs."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from ..config import SkipFlags
from .models import PipelineRun

logger = logging.getLogger(__name__)


class RunLog:
    """Writes `deploy_<timestamp>.json` and rewrites it after every stage."""

    def __init__(self, log_dir: Optional[str] = None) -> None:
        self.log_dir = Path(log_dir) if log_dir else Path.cwd() / "deploy_logs"
        self.current_log_file: Optional[Path] = None
        self.data: Dict[str, Any] = {}

    def start(self, run: PipelineRun, flags: SkipFlags, stage_names: list[str]) -> Path:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        self.current_log_file = self.log_dir / f"deploy_{timestamp}.json"
        self.data = {
            "version": "1.0",
            "flags": asdict(flags),
            "plan": stage_names,
            **run.to_dict(),
        }
        self._save()
        logger.info(f"📝 Logging to: {self.current_log_file}")
        return self.current_log_file

    def update(self, run: PipelineRun) -> None:
        self.data.update(run.to_dict())
        self._save()

    def finalize(self, run: PipelineRun) -> None:
        self.data.update(run.to_dict())
        self.data["summary"] = {
            "total_stages": len(run.outcomes),
            "executed_stages": len(run.executed()),
            "total_commands": sum(len(o.invocations) for o in run.outcomes),
            "duration_seconds": self._calculate_duration(run),
        }
        self._save()
        logger.info(f"📄 Log saved to: {self.current_log_file}")

    @staticmethod
    def _calculate_duration(run: PipelineRun) -> float:
        if not run.finished_at:
            return 0.0
        start = datetime.fromisoformat(run.started_at)
        end = datetime.fromisoformat(run.finished_at)
        return (end - start).total_seconds()

    def _save(self) -> None:
        if self.current_log_file:
            with open(self.current_log_file, "w", encoding="utf-8") as f:
                json.dump(self.data, f, indent=2, ensure_ascii=False)
