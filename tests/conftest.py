"""Shared fakes for pipeline tests."""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

import pytest

from stack_deployer.config import AppConfig
from stack_deployer.errors import ExternalToolError, ToolErrorKind
from stack_deployer.orchestrator import PipelineServices
from stack_deployer.readiness import ReadinessWaiter
from stack_deployer.tools.invoker import InvocationResult
from stack_deployer.tunnel import Tunnel, TunnelManager, TunnelState


@dataclass
class Call:
    argv: List[str]
    cwd: Optional[str] = None
    input_text: Optional[str] = None

    @property
    def line(self) -> str:
        return " ".join(self.argv)


Response = Union[str, int, Exception]


class FakeInvoker:
    """Records every call; answers by longest matching command prefix.

    A response is stdout (str), an exit code (int) or an exception to raise.
    """

    def __init__(self, responses: Optional[Dict[str, Response]] = None) -> None:
        self.responses: Dict[str, Response] = dict(responses or {})
        self.calls: List[Call] = []
        self.missing: set = set()

    def resolve(self, command):
        return None if command in self.missing else f"/usr/bin/{command}"

    def invoke(self, command, args=(), *, cwd=None, timeout=None,
               expected_exit_codes=(0,), input_text=None):
        argv = [command, *[str(a) for a in args]]
        self.calls.append(Call(argv, str(cwd) if cwd else None, input_text))
        if command in self.missing:
            raise ExternalToolError(ToolErrorKind.PROCESS_NOT_FOUND, argv)

        response = self._match(" ".join(argv))
        if isinstance(response, Exception):
            raise response
        stdout, code = ("", response) if isinstance(response, int) else (response or "", 0)
        result = InvocationResult(command, tuple(argv[1:]), code, stdout, "", 0.01)
        if code not in tuple(expected_exit_codes):
            raise ExternalToolError(
                ToolErrorKind.NON_ZERO_EXIT, argv, exit_code=code, stderr="boom", result=result
            )
        return result

    def _match(self, line: str) -> Response:
        best = None
        for prefix in self.responses:
            if line.startswith(prefix) and (best is None or len(prefix) > len(best)):
                best = prefix
        return self.responses[best] if best is not None else ""

    def lines(self) -> List[str]:
        return [c.line for c in self.calls]

    def commands(self) -> List[str]:
        return [c.argv[0] for c in self.calls]


class FakeTunnelManager(TunnelManager):
    """Tunnel manager that tracks state transitions without spawning kubectl."""

    def open(self, remote_target, local_port, remote_port, namespace, cleanup=None):
        tunnel = Tunnel(remote_target, local_port, remote_port, namespace)
        if cleanup is not None:
            cleanup.register(f"close tunnel {remote_target}", lambda: self.close(tunnel))
        self.tunnels.append(tunnel)
        tunnel.state = TunnelState.ACTIVE
        return tunnel


def fast_config() -> AppConfig:
    config = AppConfig()
    config.verification.poll_interval = 0.01
    config.verification.probe_deadline = 0.2
    config.pipeline.readiness_timeout = 1
    config.pipeline.retry_delay = 0.01
    config.image.registry_token = None
    config.image.registry_username = None
    return config


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return fast_config()


@pytest.fixture
def invoker():
    return FakeInvoker({
        "terraform output -json": '{"cluster_name": {"value": "tf-cluster"}, "region": {"value": "eu-west-1"}}',
        "kubectl create namespace": "apiVersion: v1\nkind: Namespace\n",
        "helm list": "NAME\tNAMESPACE\ndevops-app\tproduction",
        "helm history": "REVISION\tSTATUS\n1\tsuperseded\n2\tdeployed",
    })


@pytest.fixture
def tunnels():
    return FakeTunnelManager()


@pytest.fixture
def services(config, invoker, tunnels):
    return PipelineServices(
        config=config,
        invoker=invoker,
        waiter=ReadinessWaiter(),
        tunnels=tunnels,
    )
