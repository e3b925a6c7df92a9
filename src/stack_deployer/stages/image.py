"""Container image build and conditional publish."""

from __future__ import annotations

import logging

from ..config import AppConfig, SkipFlags
from ..orchestrator.context import StageContext
from ..orchestrator.models import Invocation, Stage
from .names import IMAGE

logger = logging.getLogger(__name__)


def skip_image_build(flags: SkipFlags) -> bool:
    return flags.skip_image_build


def _publish(ctx: StageContext) -> None:
    image = ctx.config.image
    latest = f"{image.repository}:latest"
    if not image.registry_token:
        # 缺少凭证不是失败：仅提示手动推送
        ctx.warn(
            f"GITHUB_TOKEN not set; skipping push of {image.reference}. "
            f"Push manually: docker login {image.registry} && docker push {image.reference}"
        )
        return

    ctx.run(
        "docker", "login", image.registry,
        "-u", image.registry_username or "",
        "--password-stdin",
        input_text=image.registry_token,
        description=f"docker login {image.registry}",
    )
    ctx.run("docker", "push", image.reference)
    if latest != image.reference:
        ctx.run("docker", "push", latest)
    logger.info(f"   📤 Pushed {image.reference}")


def image_stage(config: AppConfig, ordinal: int) -> Stage:
    image = config.image
    invocations = [
        Invocation("docker", ("build", "-t", image.reference, image.build_context)),
    ]
    if image.tag != "latest":
        invocations.append(Invocation("docker", ("tag", image.reference, f"{image.repository}:latest")))
    return Stage(
        name=IMAGE,
        ordinal=ordinal,
        description="Build and publish the application image",
        skip_predicate=skip_image_build,
        invocations=[*invocations, _publish],
    )
