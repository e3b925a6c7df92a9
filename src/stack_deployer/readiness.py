"""Bounded, cancellable polling for asynchronously converging resources."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from .errors import ExternalToolError, ReadinessTimeout, StageCancelled
from .tools.invoker import ToolInvoker

logger = logging.getLogger(__name__)

Predicate = Callable[[], bool]

# 这些异常视为“尚未就绪”，继续轮询
_RETRYABLE = (ExternalToolError, requests.RequestException, OSError)


@dataclass(frozen=True)
class ReadinessCheck:
    """A predicate polled until satisfied or the deadline passes."""

    name: str
    predicate: Predicate
    poll_interval: float = 2.0
    deadline: float = 60.0


class ReadinessWaiter:
    """Evaluates readiness checks at a fixed interval until a deadline."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock

    def wait_until_ready(
        self,
        check: ReadinessCheck,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Block until `check` passes.

        Raises:
            ReadinessTimeout: the deadline elapsed first.
            StageCancelled: `cancel_event` was set while waiting.
        """
        cancel_event = cancel_event or threading.Event()
        deadline_at = self.clock() + check.deadline
        attempts = 0
        last_error: Optional[str] = None

        logger.info(f"   ⏳ Waiting for {check.name} (up to {check.deadline:g}s)")
        while True:
            if cancel_event.is_set():
                raise StageCancelled(f"Wait for '{check.name}' cancelled")

            attempts += 1
            try:
                if check.predicate():
                    logger.info(f"   ✓ {check.name} ready after {attempts} attempt(s)")
                    return
                last_error = None
            except _RETRYABLE as exc:
                last_error = str(exc)
                logger.debug("   %s not ready: %s", check.name, exc)

            remaining = deadline_at - self.clock()
            if remaining <= 0:
                raise ReadinessTimeout(check.name, check.deadline, attempts, last_error)

            # Event.wait 可被取消事件立即唤醒
            if cancel_event.wait(min(check.poll_interval, remaining)):
                raise StageCancelled(f"Wait for '{check.name}' cancelled")


def http_probe(
    url: str,
    expect_status: int = 200,
    contains: Optional[str] = None,
    session: Optional[requests.Session] = None,
    timeout: float = 5.0,
) -> Predicate:
    """Predicate that GETs `url` and checks status and (optionally) body text.

    Without a caller-owned `session`, each attempt uses its own session and
    closes it, so no pooled connection to the tunnel port outlives the probe.
    """

    def probe() -> bool:
        if session is not None:
            return check(session)
        with requests.Session() as http:
            return check(http)

    def check(http: requests.Session) -> bool:
        response = http.get(url, timeout=timeout)
        if response.status_code != expect_status:
            logger.debug("   GET %s -> %s", url, response.status_code)
            return False
        if contains is not None and contains not in response.text:
            logger.debug("   GET %s: %r not in body", url, contains)
            return False
        return True

    return probe


def kubectl_wait_ready(
    invoker: ToolInvoker,
    namespace: str,
    selector: str,
    timeout: int = 300,
) -> Predicate:
    """Predicate wrapping `kubectl wait --for=condition=ready pod`."""

    def ready() -> bool:
        invoker.invoke(
            "kubectl",
            [
                "wait",
                "--namespace", namespace,
                "--for=condition=ready", "pod",
                f"--selector={selector}",
                f"--timeout={timeout}s",
            ],
            timeout=timeout + 30,
        )
        return True

    return ready
