"""Infrastructure provisioning with terraform."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

from ..config import AppConfig, SkipFlags
from ..errors import ConfigurationError
from ..orchestrator.context import StageContext
from ..orchestrator.models import Invocation, Stage
from .names import INFRASTRUCTURE

logger = logging.getLogger(__name__)

PLAN_FILE = "tfplan"


def skip_infrastructure(flags: SkipFlags) -> bool:
    return flags.skip_infrastructure


def parse_terraform_outputs(document: str) -> Dict[str, Any]:
    """Unwrap `terraform output -json` ({"name": {"value": ...}}) to name -> value."""
    try:
        raw = json.loads(document or "{}")
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"terraform output is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise ConfigurationError("terraform output must be a JSON object")
    return {
        key: entry.get("value") if isinstance(entry, dict) and "value" in entry else entry
        for key, entry in raw.items()
    }


def _plan(ctx: StageContext) -> None:
    tf_dir = Path(ctx.config.cluster.terraform_dir)
    ctx.register_temp_file(tf_dir / PLAN_FILE)
    ctx.run("terraform", "plan", f"-out={PLAN_FILE}", cwd=tf_dir)


def _collect_outputs(ctx: StageContext) -> None:
    cluster = ctx.config.cluster
    result = ctx.run("terraform", "output", "-json", cwd=cluster.terraform_dir)
    outputs = parse_terraform_outputs(result.stdout)
    ctx.outputs.update(outputs)

    # outputs.json 在整个流水线结束时删除
    outputs_path = Path(cluster.outputs_file)
    ctx.register_temp_file(outputs_path, global_only=True)
    outputs_path.write_text(json.dumps(outputs, indent=2), encoding="utf-8")
    logger.info(f"   📦 {len(outputs)} terraform output(s): {', '.join(sorted(outputs)) or '-'}")


def provision_stage(config: AppConfig, ordinal: int) -> Stage:
    tf_dir = config.cluster.terraform_dir
    return Stage(
        name=INFRASTRUCTURE,
        ordinal=ordinal,
        description="Deploy infrastructure with Terraform",
        skip_predicate=skip_infrastructure,
        invocations=[
            Invocation("terraform", ("init", "-input=false"), cwd=tf_dir),
            _plan,
            Invocation("terraform", ("apply", "-input=false", PLAN_FILE), cwd=tf_dir),
            _collect_outputs,
        ],
    )
