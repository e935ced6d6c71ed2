"""mcp-cmdex - sandboxed file access and allowlisted command execution over MCP."""

__version__ = "0.3.0"

from .config import Policy, PolicyStore
from .filesystem import FileSystem, PathSandbox
from .security import CommandGate, ParsedInvocation, STATIC_ALLOWED_COMMANDS
from .shell import CommandRunner, ExecutionResult

__all__ = [
    "CommandGate",
    "CommandRunner",
    "ExecutionResult",
    "FileSystem",
    "ParsedInvocation",
    "PathSandbox",
    "Policy",
    "PolicyStore",
    "STATIC_ALLOWED_COMMANDS",
]
