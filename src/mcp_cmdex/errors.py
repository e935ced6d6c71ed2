"""Exceptions raised by the path sandbox, command gate and command runner."""

from enum import Enum
from typing import Optional, Sequence


class DenialReason(str, Enum):
    """Why a path was rejected by the sandbox."""
    OUTSIDE_ALLOWED_ROOT = "outside_allowed_root"
    SYMLINK_ESCAPES_SANDBOX = "symlink_escapes_sandbox"
    PARENT_OUTSIDE_ALLOWED_ROOT = "parent_outside_allowed_root"


class CmdexError(Exception):
    """Base exception for access-control and execution errors."""
    pass


class PolicyUnavailableError(CmdexError):
    """The policy file exists but could not be read or parsed."""

    def __init__(self, config_path: str, reason: str) -> None:
        self.config_path = config_path
        self.reason = reason
        super().__init__(f"Failed to load policy from {config_path}: {reason}")


def _format_roots(allowed_directories: Sequence[str]) -> str:
    return ", ".join(allowed_directories) if allowed_directories else "(none)"


class PathOutsideSandboxError(CmdexError, PermissionError):
    """A requested path (or what it resolves to) lies outside every allowed directory."""

    _MESSAGES = {
        DenialReason.OUTSIDE_ALLOWED_ROOT: "path outside allowed directories",
        DenialReason.SYMLINK_ESCAPES_SANDBOX: "symlink target outside allowed directories",
        DenialReason.PARENT_OUTSIDE_ALLOWED_ROOT: "parent directory outside allowed directories",
    }

    def __init__(
        self,
        path: str,
        reason: DenialReason,
        allowed_directories: Sequence[str],
        resolved_path: Optional[str] = None,
    ) -> None:
        self.path = path
        self.reason = reason
        self.allowed_directories = tuple(allowed_directories)
        self.resolved_path = resolved_path
        target = f"{path} -> {resolved_path}" if resolved_path else path
        super().__init__(
            f"Access denied - {self._MESSAGES[reason]}: {target}\n"
            f"Allowed directories: {_format_roots(self.allowed_directories)}"
        )


class ParentDirectoryMissingError(CmdexError, FileNotFoundError):
    """Neither the requested path nor its parent directory exists."""

    def __init__(self, path: str, parent: str, allowed_directories: Sequence[str]) -> None:
        self.path = path
        self.parent = parent
        self.allowed_directories = tuple(allowed_directories)
        super().__init__(f"Parent directory does not exist: {parent} (requested: {path})")


class CommandNotAllowedError(CmdexError):
    """The parsed command is not in the effective allowlist."""

    def __init__(self, command_name: str, command: str) -> None:
        self.command_name = command_name
        self.command = command
        if command and command != command_name:
            detail = f"'{command_name}' (parsed as '{command}')"
        else:
            detail = f"'{command_name}'"
        super().__init__(f"Command {detail} is not allowed")


class ProcessLaunchError(CmdexError):
    """The child process could not be started."""

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to launch '{command}': {reason}")


class ProcessExecutionError(CmdexError):
    """Waiting on the child failed, or it exited non-zero under a checking runner."""

    def __init__(
        self,
        command: str,
        reason: str,
        exit_code: Optional[int] = None,
        stderr: str = "",
    ) -> None:
        self.command = command
        self.reason = reason
        self.exit_code = exit_code
        self.stderr = stderr
        message = f"Command '{command}' failed: {reason}"
        if stderr:
            message += f"\n{stderr.rstrip()}"
        super().__init__(message)
