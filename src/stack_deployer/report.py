"""Timestamped plain-text report of the deployed resources."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from .config import AppConfig
from .errors import ExternalToolError
from .tools.invoker import ToolInvoker

logger = logging.getLogger(__name__)


def _section(invoker: ToolInvoker, title: str, args: List[str], tail: Optional[int] = None) -> List[str]:
    lines = [f"{title}:"]
    try:
        output = invoker.invoke("kubectl", args, timeout=60).stdout
    except ExternalToolError as exc:
        output = f"(unavailable: {exc})"
    body = output.splitlines()
    if tail is not None:
        body = body[-tail:]
    lines.extend(body)
    lines.append("")
    return lines


def write_state_report(
    invoker: ToolInvoker,
    config: AppConfig,
    directory: Union[str, Path] = ".",
    now: Optional[datetime] = None,
) -> Path:
    """Write `deploy-report-YYYYmmdd-HHMMSS.txt` and return its path.

    kubectl failures are written into the report instead of raised.
    """
    now = now or datetime.now()
    cluster = config.cluster
    release = config.release.release_name
    target = Path(directory) / f"deploy-report-{now.strftime('%Y%m%d-%H%M%S')}.txt"

    lines = [
        "Deployment State Report",
        f"Generated: {now.strftime('%Y-%m-%d %H:%M:%S')}",
        "=" * 34,
        "",
    ]
    lines += _section(invoker, "Kubernetes Resources",
                      ["get", "pods,svc,ingress,hpa", "-n", cluster.namespace])
    lines += _section(invoker, "Monitoring Stack",
                      ["get", "pods,svc", "-n", cluster.monitoring_namespace])
    lines += _section(invoker, "Application Logs (last 10 lines)",
                      ["logs", f"deployment/{release}", "-n", cluster.namespace, "--tail=10"])
    lines += _section(invoker, "Events",
                      ["get", "events", "-n", cluster.namespace, "--sort-by=.lastTimestamp"], tail=10)

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text("\n".join(lines), encoding="utf-8")
    logger.info(f"📄 State report generated: {target}")
    return target
