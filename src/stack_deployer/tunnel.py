"""Background port-forwarding tunnels with guaranteed termination."""

from __future__ import annotations

import logging
import socket
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import IO, Callable, List, Optional

from .cleanup import CleanupRegistry
from .errors import ExternalToolError, ToolErrorKind
from .tools.invoker import kill_process_tree

logger = logging.getLogger(__name__)


class TunnelState(Enum):
    """隧道生命周期"""
    STARTING = "starting"
    ACTIVE = "active"
    TERMINATED = "terminated"


@dataclass
class Tunnel:
    """A local-forwarding channel owned by the stage that opened it."""

    remote_target: str
    local_port: int
    remote_port: int
    namespace: str
    process: Optional[subprocess.Popen] = field(default=None, repr=False)
    stderr_log: Optional[IO[bytes]] = field(default=None, repr=False)
    state: TunnelState = TunnelState.STARTING

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.local_port}"

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def is_alive(self) -> bool:
        return self.process is not None and self.process.poll() is None


def port_accepts(port: int, host: str = "127.0.0.1", timeout: float = 0.5) -> bool:
    """True if a TCP connect to host:port succeeds."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError:
        return False


class TunnelManager:
    """Opens `kubectl port-forward` processes and closes them exactly once.

    `settle_timeout` is an upper bound: the manager polls the local port and
    marks the tunnel active as soon as it accepts connections.
    """

    def __init__(
        self,
        kubectl: str = "kubectl",
        settle_timeout: float = 5.0,
        poll_interval: float = 0.25,
        port_probe: Callable[[int], bool] = port_accepts,
    ) -> None:
        self.kubectl = kubectl
        self.settle_timeout = settle_timeout
        self.poll_interval = poll_interval
        self.port_probe = port_probe
        self.tunnels: List[Tunnel] = []

    def build_command(self, tunnel: Tunnel) -> List[str]:
        return [
            self.kubectl,
            "port-forward",
            tunnel.remote_target,
            f"{tunnel.local_port}:{tunnel.remote_port}",
            "-n",
            tunnel.namespace,
        ]

    def open(
        self,
        remote_target: str,
        local_port: int,
        remote_port: int,
        namespace: str,
        cleanup: Optional[CleanupRegistry] = None,
    ) -> Tunnel:
        """Start forwarding and wait for the local port to settle.

        The close action is registered with `cleanup` before the process is
        started, so any failure after this point still terminates it.
        """
        tunnel = Tunnel(
            remote_target=remote_target,
            local_port=local_port,
            remote_port=remote_port,
            namespace=namespace,
        )
        if cleanup is not None:
            cleanup.register(
                f"close tunnel {remote_target} -> :{local_port}",
                lambda: self.close(tunnel),
            )
        self.tunnels.append(tunnel)

        argv = self.build_command(tunnel)
        logger.info(f"   🔌 Port-forward {remote_target} {local_port}:{remote_port} (-n {namespace})")
        # stderr 写入临时文件，长时间运行的转发进程不会因管道写满而阻塞
        tunnel.stderr_log = tempfile.TemporaryFile()
        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=tunnel.stderr_log,
            )
        except FileNotFoundError as exc:
            self.close(tunnel)
            raise ExternalToolError(ToolErrorKind.PROCESS_NOT_FOUND, argv) from exc
        tunnel.process = process

        self._settle(tunnel, process, argv)
        return tunnel

    def _settle(self, tunnel: Tunnel, process: subprocess.Popen, argv: List[str]) -> None:
        deadline = time.monotonic() + self.settle_timeout
        while time.monotonic() < deadline:
            code = process.poll()
            if code is not None:
                stderr = self._read_stderr(tunnel)
                self.close(tunnel)
                raise ExternalToolError(
                    ToolErrorKind.NON_ZERO_EXIT, argv, exit_code=code, stderr=stderr
                )
            if self.port_probe(tunnel.local_port):
                tunnel.state = TunnelState.ACTIVE
                logger.debug("   Tunnel on :%d accepting connections", tunnel.local_port)
                return
            time.sleep(self.poll_interval)

        # 预热时间只是上限；之后的探测仍需在 ReadinessWaiter 中重试
        tunnel.state = TunnelState.ACTIVE
        logger.warning(
            f"   ⚠️ Port {tunnel.local_port} not accepting after {self.settle_timeout:g}s; "
            "continuing with probes"
        )

    @staticmethod
    def _read_stderr(tunnel: Tunnel) -> str:
        if tunnel.stderr_log is None:
            return ""
        tunnel.stderr_log.seek(0)
        return tunnel.stderr_log.read().decode("utf-8", errors="replace")

    def close(self, tunnel: Tunnel) -> None:
        """Terminate the forwarding process. Closing twice is a no-op."""
        if tunnel.state is TunnelState.TERMINATED:
            return
        if tunnel.process is not None:
            if tunnel.process.poll() is None:
                kill_process_tree(tunnel.process.pid)
            tunnel.process.wait()
        if tunnel.stderr_log is not None:
            tunnel.stderr_log.close()
        tunnel.state = TunnelState.TERMINATED
        logger.debug("   Tunnel %s -> :%d terminated", tunnel.remote_target, tunnel.local_port)

    def close_all(self) -> None:
        for tunnel in self.tunnels:
            self.close(tunnel)

    @property
    def open_tunnels(self) -> List[Tunnel]:
        return [t for t in self.tunnels if t.state is not TunnelState.TERMINATED]
