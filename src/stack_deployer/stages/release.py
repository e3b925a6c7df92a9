"""Helm release of the application chart."""

from __future__ import annotations

from typing import List

from ..config import AppConfig
from ..orchestrator.models import Invocation, Stage
from .names import RELEASE


def helm_upgrade_args(config: AppConfig) -> List[str]:
    release = config.release
    return [
        "upgrade", "--install", release.release_name, ".",
        "--namespace", config.cluster.namespace,
        "--create-namespace",
        "--set", f"image.repository={config.image.repository}",
        "--set", f"image.tag={config.image.tag}",
        "--set", f"environment={release.environment}",
        "--set", "ingress.enabled=true",
        "--set", f"ingress.hosts[0].host={release.ingress_host}",
        "--wait",
        f"--timeout={release.wait_timeout}s",
    ]


def release_stage(config: AppConfig, ordinal: int) -> Stage:
    chart_dir = config.release.chart_dir
    return Stage(
        name=RELEASE,
        ordinal=ordinal,
        description="Deploy the application with Helm",
        invocations=[
            Invocation("helm", ("dependency", "update"), cwd=chart_dir),
            Invocation(
                "helm",
                tuple(helm_upgrade_args(config)),
                cwd=chart_dir,
                timeout=config.release.wait_timeout + 60,
            ),
        ],
    )
