"""Per-stage execution context handed to stage steps."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

from ..cleanup import CleanupRegistry
from ..config import AppConfig, SkipFlags, VerificationOptions
from ..errors import ExternalToolError, StageCancelled, ToolErrorKind
from ..readiness import ReadinessCheck, ReadinessWaiter
from ..tools.invoker import InvocationResult, ToolInvoker
from ..tunnel import Tunnel, TunnelManager
from .models import Invocation, StageOutcome

logger = logging.getLogger(__name__)


@dataclass
class PipelineServices:
    """Collaborators shared by every stage of one run."""

    config: AppConfig
    invoker: ToolInvoker
    waiter: ReadinessWaiter = field(default_factory=ReadinessWaiter)
    tunnels: TunnelManager = field(default_factory=TunnelManager)
    options: VerificationOptions = field(default_factory=VerificationOptions)
    # 阶段之间传递的数据（例如 terraform 输出）
    outputs: Dict[str, Any] = field(default_factory=dict)


class StageContext:
    """What a running stage can touch: tools, waits, tunnels and cleanup.

    Resources acquired through the context are registered with the stage's
    cleanup registry, which forwards them to the pipeline's global registry.
    """

    def __init__(
        self,
        services: PipelineServices,
        flags: SkipFlags,
        outcome: StageOutcome,
        cleanup: CleanupRegistry,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.services = services
        self.flags = flags
        self.outcome = outcome
        self.cleanup = cleanup
        self.cancel_event = cancel_event or threading.Event()

    @property
    def config(self) -> AppConfig:
        return self.services.config

    @property
    def options(self) -> VerificationOptions:
        return self.services.options

    @property
    def outputs(self) -> Dict[str, Any]:
        return self.services.outputs

    @property
    def invoker(self) -> ToolInvoker:
        return self.services.invoker

    def invoke(self, invocation: Invocation) -> InvocationResult:
        """Run one invocation, honoring its (opt-in) retry budget."""
        pipeline = self.config.pipeline
        retries = max(invocation.retries, pipeline.invocation_retries)
        timeout = invocation.timeout if invocation.timeout is not None else pipeline.command_timeout

        logger.info(f"   $ {invocation.display}")
        attempt = 0
        while True:
            try:
                result = self.invoker.invoke(
                    invocation.command,
                    invocation.args,
                    cwd=invocation.cwd,
                    timeout=timeout,
                    expected_exit_codes=invocation.expected_exit_codes,
                    input_text=invocation.input_text,
                )
                self.outcome.invocations.append(result)
                return result
            except ExternalToolError as exc:
                if exc.result is not None:
                    self.outcome.invocations.append(exc.result)
                if exc.kind is ToolErrorKind.PROCESS_NOT_FOUND or attempt >= retries:
                    raise
                attempt += 1
                logger.warning(
                    f"   🔄 Retry {attempt}/{retries} in {pipeline.retry_delay:g}s: {exc}"
                )
                if self.cancel_event.wait(pipeline.retry_delay):
                    raise StageCancelled(f"Retry of '{invocation.display}' cancelled") from exc

    def run(self, command: str, *args: str, **kwargs: Any) -> InvocationResult:
        """Shorthand for `invoke(Invocation(command, args, ...))`."""
        return self.invoke(Invocation(command, tuple(str(a) for a in args), **kwargs))

    def wait(self, check: ReadinessCheck) -> None:
        self.services.waiter.wait_until_ready(check, self.cancel_event)

    def open_tunnel(
        self,
        remote_target: str,
        local_port: int,
        remote_port: int,
        namespace: str,
    ) -> Tunnel:
        return self.services.tunnels.open(
            remote_target, local_port, remote_port, namespace, cleanup=self.cleanup
        )

    def register_temp_file(self, path: Union[str, Path], *, global_only: bool = False) -> None:
        """Remove `path` when the stage ends (or at pipeline exit if `global_only`)."""
        registry = self.cleanup.parent if global_only and self.cleanup.parent else self.cleanup
        registry.register_temp_file(path)

    def warn(self, message: str) -> None:
        """Record a non-fatal advisory on the stage outcome."""
        logger.warning(f"   ⚠️ {message}")
        self.outcome.warnings.append(message)
