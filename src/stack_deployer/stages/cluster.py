"""Cluster-side stages: kubeconfig, ingress controller, monitoring, ingress rule."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from ..config import AppConfig, SkipFlags
from ..orchestrator.context import StageContext
from ..orchestrator.models import Invocation, Stage
from ..readiness import ReadinessCheck, kubectl_wait_ready
from .infrastructure import skip_infrastructure
from .names import CLUSTER_CONFIGURE, INFRASTRUCTURE, INGRESS_CONTROLLER, INGRESS_RULE, MONITORING, RELEASE

logger = logging.getLogger(__name__)

INGRESS_NAMESPACE = "ingress-nginx"
INGRESS_SELECTOR = "app.kubernetes.io/component=controller"


def _pod_ready_check(namespace: str, selector: str):
    """Post-check factory: poll `kubectl wait` for pods matching `selector`."""

    def build(ctx: StageContext) -> ReadinessCheck:
        deadline = ctx.config.pipeline.readiness_timeout
        return ReadinessCheck(
            name=f"pods {selector} in {namespace}",
            # 单次 kubectl wait 不超过 60 秒，整体由 deadline 约束
            predicate=kubectl_wait_ready(ctx.invoker, namespace, selector, min(60, deadline)),
            poll_interval=5.0,
            deadline=deadline,
        )

    return build


def _update_kubeconfig(ctx: StageContext) -> None:
    cluster = ctx.config.cluster
    if not ctx.outputs:
        ctx.warn("No infrastructure outputs recorded; using configured cluster name and region")
    name = ctx.outputs.get("cluster_name") or cluster.cluster_name
    region = ctx.outputs.get("region") or cluster.aws_region
    ctx.run("aws", "eks", "update-kubeconfig", "--region", region, "--name", name)


def configure_stage(config: AppConfig, ordinal: int) -> Stage:
    return Stage(
        name=CLUSTER_CONFIGURE,
        ordinal=ordinal,
        description="Configure kubectl for the provisioned cluster",
        skip_predicate=skip_infrastructure,
        requires=(INFRASTRUCTURE,),
        invocations=[
            _update_kubeconfig,
            Invocation("kubectl", ("get", "nodes"), description="kubectl get nodes (verify cluster access)"),
        ],
    )


def ingress_controller_stage(config: AppConfig, ordinal: int) -> Stage:
    return Stage(
        name=INGRESS_CONTROLLER,
        ordinal=ordinal,
        description="Deploy the NGINX ingress controller",
        skip_predicate=skip_infrastructure,
        invocations=[
            Invocation("kubectl", ("apply", "-f", config.cluster.ingress_manifest_url)),
        ],
        post_checks=[_pod_ready_check(INGRESS_NAMESPACE, INGRESS_SELECTOR)],
    )


def ensure_namespace(ctx: StageContext, namespace: str) -> None:
    """Create `namespace` idempotently (dry-run manifest piped to apply)."""
    manifest = ctx.run(
        "kubectl", "create", "namespace", namespace, "--dry-run=client", "-o", "yaml"
    )
    ctx.run(
        "kubectl", "apply", "-f", "-",
        input_text=manifest.stdout,
        description=f"kubectl apply namespace/{namespace}",
    )


def skip_monitoring(flags: SkipFlags) -> bool:
    return flags.skip_monitoring


def monitoring_stage(config: AppConfig, ordinal: int) -> Stage:
    cluster = config.cluster
    namespace = cluster.monitoring_namespace
    return Stage(
        name=MONITORING,
        ordinal=ordinal,
        description="Deploy the monitoring stack",
        skip_predicate=skip_monitoring,
        invocations=[
            lambda ctx: ensure_namespace(ctx, namespace),
            *[Invocation("kubectl", ("apply", "-f", manifest)) for manifest in cluster.monitoring_manifests],
        ],
        post_checks=[_pod_ready_check(namespace, selector) for selector in cluster.monitoring_selectors],
    )


def ingress_manifest(config: AppConfig) -> Dict[str, Any]:
    release = config.release
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {
            "name": f"{release.release_name}-ingress",
            "namespace": config.cluster.namespace,
            "annotations": {
                "kubernetes.io/ingress.class": "nginx",
                "nginx.ingress.kubernetes.io/rewrite-target": "/",
            },
        },
        "spec": {
            "rules": [
                {
                    "host": release.ingress_host,
                    "http": {
                        "paths": [
                            {
                                "path": "/",
                                "pathType": "Prefix",
                                "backend": {
                                    "service": {
                                        "name": release.release_name,
                                        "port": {"number": release.service_port},
                                    }
                                },
                            }
                        ]
                    },
                }
            ]
        },
    }


def ingress_rule_stage(config: AppConfig, ordinal: int) -> Stage:
    # kubectl 接受 JSON 格式的清单
    manifest = json.dumps(ingress_manifest(config), indent=2)
    return Stage(
        name=INGRESS_RULE,
        ordinal=ordinal,
        description="Create the application Ingress resource",
        requires=(RELEASE,),
        invocations=[
            Invocation(
                "kubectl",
                ("apply", "-f", "-"),
                input_text=manifest,
                description=f"kubectl apply ingress/{config.release.release_name}-ingress",
            ),
        ],
    )
