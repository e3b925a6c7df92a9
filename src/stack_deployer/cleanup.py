"""Scoped resource release with guaranteed reverse-order, run-once semantics."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Union

from .errors import CleanupWarning

logger = logging.getLogger(__name__)


@dataclass
class CleanupAction:
    """One registered release action. Runs at most once, whoever runs it."""

    description: str
    action: Callable[[], None]
    done: bool = False

    def run(self) -> None:
        if self.done:
            return
        self.done = True
        self.action()


@dataclass
class CleanupRegistry:
    """Ordered list of cleanup actions.

    A stage registry forwards each action to its parent (the pipeline's
    global registry) on registration, so whichever runs first releases the
    resource and the other skips it.
    """

    name: str = "cleanup"
    parent: Optional["CleanupRegistry"] = None
    actions: List[CleanupAction] = field(default_factory=list)

    def register(self, description: str, action: Callable[[], None]) -> CleanupAction:
        entry = CleanupAction(description=description, action=action)
        self._add(entry)
        return entry

    def _add(self, entry: CleanupAction) -> None:
        self.actions.append(entry)
        if self.parent is not None:
            self.parent._add(entry)

    def register_temp_file(self, path: Union[str, Path]) -> CleanupAction:
        target = Path(path)
        return self.register(f"remove {target}", lambda: _remove_file(target))

    @property
    def pending(self) -> List[CleanupAction]:
        return [a for a in self.actions if not a.done]

    def run(self) -> List[CleanupWarning]:
        """Run pending actions newest-first. Errors become warnings."""
        warnings: List[CleanupWarning] = []
        for entry in reversed(self.actions):
            if entry.done:
                continue
            try:
                entry.run()
                logger.debug("   🧹 %s", entry.description)
            except Exception as exc:
                warning = CleanupWarning(f"{entry.description}: {exc}")
                logger.warning(f"   ⚠️ Cleanup failed ({self.name}): {warning}")
                warnings.append(warning)
        return warnings


def _remove_file(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
