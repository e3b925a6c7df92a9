"""External tool execution."""

from .invoker import InvocationResult, ToolInvoker, kill_process_tree
from .prerequisites import PrerequisiteProbe, PrerequisiteReport, required_tools

__all__ = [
    "InvocationResult",
    "ToolInvoker",
    "kill_process_tree",
    "PrerequisiteProbe",
    "PrerequisiteReport",
    "required_tools",
]
