"""Process invocation for approved commands."""

import asyncio
import logging
import os
import sys
from typing import List, Optional, Tuple

from pydantic import BaseModel

from .errors import ProcessExecutionError, ProcessLaunchError
from .security import ParsedInvocation

logger = logging.getLogger(__name__)


class ExecutionResult(BaseModel):
    """Captured output of a finished command. The exit status is not part of it."""
    stdout: str
    stderr: str


class CommandRunner:
    """Runs a :class:`ParsedInvocation` as a child process.

    On Windows the command goes through ``cmd.exe /c`` because many
    allowlisted names are shell built-ins there. Everywhere else the command
    is executed directly with its arguments verbatim, without a shell.
    """

    def __init__(self, is_windows: Optional[bool] = None, check: bool = False) -> None:
        self.is_windows = sys.platform == "win32" if is_windows is None else is_windows
        self.check = check

    def build_argv(self, invocation: ParsedInvocation) -> Tuple[str, List[str]]:
        """Return the program to launch and its argument list."""
        if self.is_windows:
            shell = os.environ.get("COMSPEC", "cmd.exe")
            return shell, ["/c", invocation.command, *invocation.args]
        return invocation.command, list(invocation.args)

    async def run(self, invocation: ParsedInvocation) -> ExecutionResult:
        program, argv = self.build_argv(invocation)
        logger.info("Executing: %s %s", program, " ".join(argv))

        try:
            process = await asyncio.create_subprocess_exec(
                program,
                *argv,
                # Never let the child read the server's stdin (the MCP stream).
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            raise ProcessLaunchError(invocation.command, str(e)) from e

        try:
            stdout_bytes, stderr_bytes = await process.communicate()
        except OSError as e:
            raise ProcessExecutionError(invocation.command, str(e)) from e

        result = ExecutionResult(
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )

        if self.check and process.returncode != 0:
            raise ProcessExecutionError(
                invocation.command,
                f"exit code {process.returncode}",
                exit_code=process.returncode,
                stderr=result.stderr,
            )
        return result
