"""Pre-flight checks for the tools and credentials a deployment needs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from ..config import SkipFlags
from ..errors import ConfigurationError, ExternalToolError
from .invoker import ToolInvoker

logger = logging.getLogger(__name__)


@dataclass
class PrerequisiteReport:
    """Which tools were found and whether cloud credentials work."""

    tools: Dict[str, bool] = field(default_factory=dict)
    cloud_credentials: bool = True

    @property
    def missing_tools(self) -> List[str]:
        return [name for name, present in self.tools.items() if not present]

    @property
    def ok(self) -> bool:
        return not self.missing_tools and self.cloud_credentials


def required_tools(flags: SkipFlags) -> List[str]:
    """Tools the selected stages will invoke."""
    tools = ["kubectl", "helm"]
    if not flags.skip_infrastructure:
        tools = ["aws", "terraform"] + tools
    if not flags.skip_image_build:
        tools.append("docker")
    return tools


class PrerequisiteProbe:
    """Collects tool availability on the local machine."""

    def __init__(self, invoker: ToolInvoker) -> None:
        self.invoker = invoker

    def collect(self, flags: SkipFlags) -> PrerequisiteReport:
        report = PrerequisiteReport()
        for tool in required_tools(flags):
            report.tools[tool] = self.invoker.resolve(tool) is not None

        # 跳过基础设施时由运维保证集群连通性，不检查云凭证
        if not flags.skip_infrastructure and report.tools.get("aws"):
            try:
                self.invoker.invoke("aws", ["sts", "get-caller-identity"], timeout=60)
            except ExternalToolError as exc:
                logger.debug("Credential check failed: %s", exc)
                report.cloud_credentials = False
        return report

    def check(self, flags: SkipFlags) -> PrerequisiteReport:
        """Collect and raise ConfigurationError if anything is missing."""
        logger.info("Checking prerequisites...")
        report = self.collect(flags)
        if report.missing_tools:
            raise ConfigurationError(
                "Required tools are not installed: " + ", ".join(report.missing_tools)
            )
        if not report.cloud_credentials:
            raise ConfigurationError(
                "AWS credentials not configured. Run 'aws configure' first."
            )
        logger.info("✅ All prerequisites are met")
        return report
