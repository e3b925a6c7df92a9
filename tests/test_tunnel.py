"""Tests for the tunnel manager using stand-in forwarding processes."""

import os
import sys
import time

import pytest

from stack_deployer.cleanup import CleanupRegistry
from stack_deployer.errors import ExternalToolError, ToolErrorKind
from stack_deployer.tunnel import Tunnel, TunnelManager, TunnelState, port_accepts


class ScriptTunnelManager(TunnelManager):
    """Runs a python one-liner instead of kubectl port-forward."""

    def __init__(self, script, **kwargs):
        super().__init__(**kwargs)
        self.script = script

    def build_command(self, tunnel):
        return [sys.executable, "-c", self.script]


SLEEPER = "import time; time.sleep(60)"
CRASHER = "import sys; sys.stderr.write('error: service not found'); sys.exit(1)"


class TestTunnelManager:
    def test_default_command_is_kubectl_port_forward(self):
        manager = TunnelManager()
        tunnel = Tunnel("svc/devops-app", 8080, 80, "production")
        assert manager.build_command(tunnel) == [
            "kubectl", "port-forward", "svc/devops-app", "8080:80", "-n", "production",
        ]

    def test_open_becomes_active_when_port_accepts(self):
        manager = ScriptTunnelManager(SLEEPER, port_probe=lambda port: True)
        tunnel = manager.open("svc/devops-app", 18080, 80, "production")
        try:
            assert tunnel.state is TunnelState.ACTIVE
            assert tunnel.is_alive()
            assert tunnel.url == "http://127.0.0.1:18080"
        finally:
            manager.close(tunnel)
        assert tunnel.state is TunnelState.TERMINATED
        assert tunnel.process.poll() is not None

    def test_close_twice_is_noop(self):
        manager = ScriptTunnelManager(SLEEPER, port_probe=lambda port: True)
        tunnel = manager.open("svc/devops-app", 18081, 80, "production")
        manager.close(tunnel)
        returncode = tunnel.process.returncode
        manager.close(tunnel)
        assert tunnel.state is TunnelState.TERMINATED
        assert tunnel.process.returncode == returncode

    def test_open_registers_close_before_use(self):
        registry = CleanupRegistry()
        manager = ScriptTunnelManager(SLEEPER, port_probe=lambda port: True)
        tunnel = manager.open("svc/grafana", 13000, 3000, "monitoring", cleanup=registry)

        assert len(registry.pending) == 1
        registry.run()
        assert tunnel.state is TunnelState.TERMINATED
        assert manager.open_tunnels == []

    def test_process_exit_during_warmup_raises(self):
        registry = CleanupRegistry()
        manager = ScriptTunnelManager(CRASHER, settle_timeout=10, port_probe=lambda port: False)
        with pytest.raises(ExternalToolError) as exc_info:
            manager.open("svc/missing", 18082, 80, "production", cleanup=registry)

        assert exc_info.value.kind is ToolErrorKind.NON_ZERO_EXIT
        assert "service not found" in str(exc_info.value)
        assert manager.tunnels[0].state is TunnelState.TERMINATED
        assert registry.run() == []

    def test_undecodable_stderr_in_early_exit(self):
        script = "import sys; sys.stderr.buffer.write(b'bad \\xff port'); sys.exit(1)"
        manager = ScriptTunnelManager(script, settle_timeout=10, port_probe=lambda port: False)
        with pytest.raises(ExternalToolError) as exc_info:
            manager.open("svc/missing", 18084, 80, "production")

        assert "bad � port" in str(exc_info.value)
        assert manager.tunnels[0].stderr_log.closed

    def test_chatty_forwarder_does_not_stall(self):
        # writes far more than a pipe buffer holds, then keeps running
        script = (
            "import sys, time; sys.stderr.write('E0101 error forwarding\\n' * 20000); "
            "sys.stderr.flush(); time.sleep(60)"
        )
        manager = ScriptTunnelManager(
            script, settle_timeout=1.0, poll_interval=0.05, port_probe=lambda port: False
        )
        tunnel = manager.open("svc/devops-app", 18085, 80, "production")
        expected = len("E0101 error forwarding\n") * 20000
        try:
            deadline = time.monotonic() + 10
            while os.fstat(tunnel.stderr_log.fileno()).st_size < expected and time.monotonic() < deadline:
                time.sleep(0.05)
            assert os.fstat(tunnel.stderr_log.fileno()).st_size == expected
            assert tunnel.is_alive()
        finally:
            manager.close(tunnel)
        assert tunnel.state is TunnelState.TERMINATED

    def test_missing_executable_terminates_tunnel(self):
        class MissingTunnelManager(TunnelManager):
            def build_command(self, tunnel):
                return ["definitely-not-kubectl-xyz", "port-forward"]

        manager = MissingTunnelManager()
        with pytest.raises(ExternalToolError) as exc_info:
            manager.open("svc/devops-app", 18086, 80, "production")
        assert exc_info.value.kind is ToolErrorKind.PROCESS_NOT_FOUND
        assert manager.tunnels[0].state is TunnelState.TERMINATED
        assert manager.open_tunnels == []

    def test_settle_timeout_is_only_an_upper_bound(self):
        manager = ScriptTunnelManager(
            SLEEPER, settle_timeout=0.2, poll_interval=0.05, port_probe=lambda port: False
        )
        tunnel = manager.open("svc/devops-app", 18083, 80, "production")
        try:
            assert tunnel.state is TunnelState.ACTIVE
        finally:
            manager.close_all()
        assert tunnel.state is TunnelState.TERMINATED

    def test_port_accepts_on_closed_port(self):
        assert port_accepts(1, timeout=0.1) is False
