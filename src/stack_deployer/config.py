"""Configuration loading utilities for stack-deployer."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

# Load .env file if it exists
load_dotenv()

_DEFAULT_CONFIG_PATH = Path("config/default_config.json")

INGRESS_NGINX_MANIFEST = (
    "https://raw.githubusercontent.com/kubernetes/ingress-nginx/"
    "controller-v1.8.1/deploy/static/provider/aws/deploy.yaml"
)


@dataclass
class ClusterConfig:
    """Where the cluster lives and how the stack is laid out in it."""

    aws_region: str = "us-west-2"
    cluster_name: str = "devops-demo-production"
    namespace: str = "production"
    monitoring_namespace: str = "monitoring"
    terraform_dir: str = "terraform"
    outputs_file: str = "outputs.json"
    ingress_manifest_url: str = INGRESS_NGINX_MANIFEST
    monitoring_manifests: list[str] = field(default_factory=lambda: [
        "monitoring/kube-prometheus-stack.yaml",
        "monitoring/prometheus-config.yaml",
        "monitoring/alertmanager-config.yaml",
        "monitoring/prometheus-rules.yaml",
    ])
    monitoring_selectors: list[str] = field(default_factory=lambda: [
        "app=prometheus",
        "app=grafana",
        "app=alertmanager",
    ])


@dataclass
class ImageConfig:
    """Container image build and registry settings."""

    repository: str = "ghcr.io/your-org/devops-end2end"
    tag: str = "latest"
    registry: str = "ghcr.io"
    build_context: str = "."
    registry_username: Optional[str] = None
    registry_token: Optional[str] = None  # 未设置时跳过推送（仅警告）

    @property
    def reference(self) -> str:
        return f"{self.repository}:{self.tag}"


@dataclass
class ReleaseConfig:
    """Helm release settings."""

    release_name: str = "devops-app"
    chart_dir: str = "helm/devops-app"
    environment: str = "production"
    ingress_host: str = "devops-app.example.com"
    service_port: int = 80
    wait_timeout: int = 300


@dataclass
class VerificationConfig:
    """Tunnel and probe settings for deployment verification."""

    local_port: int = 8080
    health_path: str = "/health"
    health_token: str = "healthy"
    metrics_path: str = "/metrics"
    metrics_token: str = "http_requests_total"
    smoke_paths: list[str] = field(default_factory=lambda: ["/api/users"])
    poll_interval: float = 2.0
    probe_deadline: float = 60.0
    probe_timeout: float = 5.0
    tunnel_settle_timeout: float = 5.0
    report_dir: str = "."
    # 监控组件端口转发: name -> [service port, local port, health path]
    monitoring_services: Dict[str, list] = field(default_factory=lambda: {
        "prometheus": [9090, 9090, "/-/ready"],
        "grafana": [3000, 3000, "/api/health"],
        "alertmanager": [9093, 9093, "/-/ready"],
    })


@dataclass
class PipelineConfig:
    """Pipeline-wide execution policy."""

    log_dir: str = "deploy_logs"
    readiness_timeout: int = 300
    command_timeout: Optional[float] = 1800.0
    invocation_retries: int = 0   # 默认不重试；>0 时对失败命令做有限次重试
    retry_delay: float = 5.0


@dataclass(frozen=True)
class SkipFlags:
    """Stage-group skip switches, resolved once from the command line."""

    skip_infrastructure: bool = False
    skip_monitoring: bool = False
    skip_image_build: bool = False


@dataclass(frozen=True)
class VerificationOptions:
    """Optional extra checks run by the verification stage."""

    monitoring_check: bool = False
    security_check: bool = False
    backup_check: bool = False
    generate_report: bool = False


@dataclass
class AppConfig:
    """Top-level configuration."""

    cluster: ClusterConfig = field(default_factory=ClusterConfig)
    image: ImageConfig = field(default_factory=ImageConfig)
    release: ReleaseConfig = field(default_factory=ReleaseConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        sections = {
            "cluster": ClusterConfig,
            "image": ImageConfig,
            "release": ReleaseConfig,
            "verification": VerificationConfig,
            "pipeline": PipelineConfig,
        }
        built: Dict[str, Any] = {}
        for name, section_cls in sections.items():
            section_payload = payload.get(name, {}) or {}
            # 过滤掉以下划线开头的注释字段
            section_payload = {
                k: v for k, v in section_payload.items() if not k.startswith("_")
            }
            try:
                built[name] = section_cls(**{**section_cls().__dict__, **section_payload})
            except TypeError as exc:
                raise ConfigurationError(f"Invalid '{name}' section: {exc}") from exc
        return cls(**built)


def apply_env_overrides(config: AppConfig) -> AppConfig:
    """Apply environment variables on top of file values.

    Environment variables (higher priority than config file):
    - STACK_DEPLOYER_AWS_REGION: cluster region
    - STACK_DEPLOYER_CLUSTER_NAME: EKS cluster name
    - STACK_DEPLOYER_NAMESPACE: application namespace
    - STACK_DEPLOYER_IMAGE_REPO: image repository
    - STACK_DEPLOYER_IMAGE_TAG: image tag
    - GITHUB_USERNAME / GITHUB_TOKEN: registry credentials
    """
    env_region = os.getenv("STACK_DEPLOYER_AWS_REGION")
    if env_region:
        config.cluster.aws_region = env_region

    env_cluster = os.getenv("STACK_DEPLOYER_CLUSTER_NAME")
    if env_cluster:
        config.cluster.cluster_name = env_cluster

    env_namespace = os.getenv("STACK_DEPLOYER_NAMESPACE")
    if env_namespace:
        config.cluster.namespace = env_namespace

    env_repo = os.getenv("STACK_DEPLOYER_IMAGE_REPO")
    if env_repo:
        config.image.repository = env_repo

    env_tag = os.getenv("STACK_DEPLOYER_IMAGE_TAG")
    if env_tag:
        config.image.tag = env_tag

    if not config.image.registry_username:
        config.image.registry_username = os.getenv("GITHUB_USERNAME")
    if not config.image.registry_token:
        config.image.registry_token = os.getenv("GITHUB_TOKEN")

    return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    An explicit path that does not exist is an error; a missing default
    file falls back to built-in defaults.
    """
    if path:
        candidate = Path(path)
        if not candidate.is_file():
            raise ConfigurationError(f"Could not find configuration file: {candidate}")
    else:
        candidate = _DEFAULT_CONFIG_PATH

    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            try:
                data = json.load(handle)
            except json.JSONDecodeError as exc:
                raise ConfigurationError(f"Invalid JSON in {candidate}: {exc}") from exc
        config = AppConfig.from_dict(data)
    else:
        config = AppConfig()

    return apply_env_overrides(config)
