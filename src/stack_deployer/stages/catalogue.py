"""Stage catalogues: the full deployment and verification-only pipelines."""

from __future__ import annotations

from typing import List

from ..config import AppConfig
from ..orchestrator.models import Stage
from .cluster import configure_stage, ingress_controller_stage, ingress_rule_stage, monitoring_stage
from .image import image_stage
from .infrastructure import provision_stage
from .release import release_stage
from .verification import verify_stage

_DEPLOYMENT_BUILDERS = [
    provision_stage,
    configure_stage,
    ingress_controller_stage,
    monitoring_stage,
    image_stage,
    release_stage,
    ingress_rule_stage,
    verify_stage,
]


def build_deployment_stages(config: AppConfig) -> List[Stage]:
    """All eight stages; ordinals are fixed here, starting at 1."""
    return [build(config, ordinal) for ordinal, build in enumerate(_DEPLOYMENT_BUILDERS, 1)]


def build_verification_stages(config: AppConfig) -> List[Stage]:
    return [verify_stage(config, 1)]
