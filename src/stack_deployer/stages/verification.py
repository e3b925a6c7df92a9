"""Deployment verification through a port-forward tunnel."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..config import AppConfig
from ..errors import ExternalToolError, ReadinessTimeout, VerificationError
from ..orchestrator.context import StageContext
from ..orchestrator.models import Invocation, PostCheck, Stage
from ..readiness import ReadinessCheck, http_probe
from .names import VERIFY

logger = logging.getLogger(__name__)

APP_URL_KEY = "verify.app_url"


def _open_app_tunnel(ctx: StageContext) -> None:
    cfg = ctx.config
    tunnel = ctx.open_tunnel(
        f"svc/{cfg.release.release_name}",
        cfg.verification.local_port,
        cfg.release.service_port,
        cfg.cluster.namespace,
    )
    ctx.outputs[APP_URL_KEY] = tunnel.url


def _probe_check(name: str, path: str, contains: Optional[str]) -> PostCheck:
    def build(ctx: StageContext) -> ReadinessCheck:
        verification = ctx.config.verification
        return ReadinessCheck(
            name=name,
            predicate=http_probe(
                ctx.outputs[APP_URL_KEY] + path,
                contains=contains,
                timeout=verification.probe_timeout,
            ),
            poll_interval=verification.poll_interval,
            deadline=verification.probe_deadline,
        )

    return build


def _check_monitoring(ctx: StageContext) -> None:
    """Probe prometheus, grafana and alertmanager. Problems are warnings only."""
    cfg = ctx.config
    for service, (remote_port, local_port, health_path) in cfg.verification.monitoring_services.items():
        try:
            tunnel = ctx.open_tunnel(
                f"svc/{service}", int(local_port), int(remote_port), cfg.cluster.monitoring_namespace
            )
        except ExternalToolError as exc:
            ctx.warn(f"{service}: port-forward failed: {exc}")
            continue
        try:
            ctx.wait(ReadinessCheck(
                name=f"{service} health",
                predicate=http_probe(tunnel.url + health_path, timeout=cfg.verification.probe_timeout),
                poll_interval=cfg.verification.poll_interval,
                deadline=cfg.verification.probe_deadline / 2,
            ))
        except ReadinessTimeout as exc:
            ctx.warn(f"{service} is not accessible: {exc}")
        finally:
            ctx.services.tunnels.close(tunnel)


def _check_security(ctx: StageContext) -> None:
    cfg = ctx.config
    namespace = cfg.cluster.namespace
    release = cfg.release.release_name

    def stdout_of(*args: str) -> str:
        try:
            return ctx.run("kubectl", *args).stdout
        except ExternalToolError as exc:
            logger.debug("security check command failed: %s", exc)
            return ""

    if release not in stdout_of("get", "networkpolicy", "-n", namespace):
        ctx.warn("Network policies are not configured")
    deployment = stdout_of("get", "deployment", release, "-n", namespace, "-o", "yaml")
    if "runAsNonRoot: true" not in deployment:
        ctx.warn("Pod security context is not properly configured")
    if "serviceAccountName" not in deployment:
        ctx.warn("Service account is not configured")


def _check_backup(ctx: StageContext) -> None:
    cfg = ctx.config
    namespace = cfg.cluster.namespace
    release = cfg.release.release_name

    listing = ctx.run("helm", "list", "-n", namespace)
    if release not in listing.stdout:
        raise VerificationError(f"Helm release {release} is not available in {namespace}")
    history = ctx.run("helm", "history", release, "-n", namespace)
    revisions = max(len(history.stdout.splitlines()) - 1, 0)
    logger.info(f"   ↩️ Rollback capability: {revisions} revision(s) in history")

    try:
        configmaps = ctx.run("kubectl", "get", "configmap", "-n", namespace).stdout
    except ExternalToolError as exc:
        configmaps = ""
        logger.debug("configmap listing failed: %s", exc)
    if release not in configmaps:
        ctx.warn("ConfigMaps are not available")


def verify_stage(config: AppConfig, ordinal: int) -> Stage:
    """Build the verification stage; extras follow `VerificationOptions` at run time."""
    namespace = config.cluster.namespace
    verification = config.verification

    def optional(enabled: Callable[[StageContext], bool], task: Callable[[StageContext], None]):
        def step(ctx: StageContext) -> None:
            if enabled(ctx):
                task(ctx)
        step.__name__ = task.__name__
        return step

    post_checks = [
        _probe_check("health endpoint", verification.health_path, verification.health_token),
        _probe_check("metrics endpoint", verification.metrics_path, verification.metrics_token),
    ]
    post_checks += [
        _probe_check(f"smoke {path}", path, None) for path in verification.smoke_paths
    ]

    return Stage(
        name=VERIFY,
        ordinal=ordinal,
        description="Verify the deployment",
        invocations=[
            Invocation("kubectl", ("get", "pods", "-n", namespace)),
            Invocation("kubectl", ("get", "svc", "-n", namespace)),
            Invocation("kubectl", ("get", "ingress", "-n", namespace)),
            optional(lambda ctx: ctx.options.backup_check, _check_backup),
            optional(lambda ctx: ctx.options.security_check, _check_security),
            optional(lambda ctx: ctx.options.monitoring_check, _check_monitoring),
            _open_app_tunnel,
        ],
        post_checks=post_checks,
    )
