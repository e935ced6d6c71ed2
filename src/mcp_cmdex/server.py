"""MCP server implementation."""

import asyncio
import logging
import os
import subprocess
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from pydantic import BaseModel, Field

from . import __version__
from .config import ENV_LOG_LEVEL, PolicyStore
from .errors import ProcessLaunchError
from .filesystem import FileSystem, PathSandbox
from .security import CommandGate, PolicySource
from .shell import CommandRunner

logger = logging.getLogger(__name__)

# --- Pydantic Models for Tool Inputs ---

class NoInput(BaseModel):
    pass

class EchoInput(BaseModel):
    text: str = Field(..., description="Text to echo back")

class ReadFileInput(BaseModel):
    path: str = Field(..., description="Path to the file to read")
    range: Optional[str] = Field(None, description="Lines to read: 'n:m', ':m' or 'n:' (m inclusive, 0 or empty = to end)")

class WriteFileInput(BaseModel):
    path: str = Field(..., description="Path to the file to write")
    content: str = Field(..., description="Content to write")

class AppendFileInput(BaseModel):
    path: str = Field(..., description="Path to the file to append to")
    content: str = Field(..., description="Content to append")

class PathInput(BaseModel):
    path: str = Field(..., description="Path to the file or directory")

class DirectoryInput(BaseModel):
    path: str = Field(..., description="Path to the directory")
    recursive: bool = Field(False, description="Create: succeed if the directory already exists. Remove: also delete non-empty directories")

class SourceDestinationInput(BaseModel):
    sourcePath: str = Field(..., description="Source path")
    destinationPath: str = Field(..., description="Destination path")

class ExecuteCommandInput(BaseModel):
    commandName: str = Field(..., description="Command to run, e.g. 'ls' or 'git status'")
    args: List[str] = Field(default_factory=list, description="Command arguments")

# --- End Pydantic Models ---


ToolHandler = Callable[[Any], Awaitable[list[TextContent]]]


@dataclass(frozen=True)
class ToolDefinition:
    description: str
    input_model: type[BaseModel]
    handler: ToolHandler


def _text(text: str) -> list[TextContent]:
    return [TextContent(type="text", text=text)]


class CommandServer:
    """Exposes sandboxed file operations and allowlisted command execution over MCP."""

    def __init__(
        self,
        policy_store: Optional[PolicySource] = None,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.server: Server = Server(
            name="mcp-cmdex",
            version=__version__,
            instructions="File system access within allowed directories and execution of allowlisted commands.",
        )

        self.policy_store = policy_store if policy_store is not None else PolicyStore()
        self.sandbox = PathSandbox(self.policy_store)
        self.filesystem = FileSystem(self.sandbox)
        self.gate = CommandGate(self.policy_store)
        self.runner = runner if runner is not None else CommandRunner()

        self.tools: Dict[str, ToolDefinition] = self._build_tool_table()
        self._register_handlers()

    def _build_tool_table(self) -> Dict[str, ToolDefinition]:
        scope = " Only works within allowed directories (see list_allowed_directories)."
        return {
            "get_path": ToolDefinition(
                "Show the PATH environment variable of the server process.",
                NoInput, self.get_path),
            "echo": ToolDefinition(
                "Return the input text unchanged.",
                EchoInput, self.echo),
            "read_file": ToolDefinition(
                "Read a UTF-8 text file, optionally limited to a line range." + scope,
                ReadFileInput, self.read_file),
            "write_file": ToolDefinition(
                "Create a file or overwrite an existing one." + scope,
                WriteFileInput, self.write_file),
            "append_file": ToolDefinition(
                "Append content to a file, creating it if needed." + scope,
                AppendFileInput, self.append_file),
            "list_directory": ToolDefinition(
                "List directory contents with [FILE] or [DIR] prefixes." + scope,
                PathInput, self.list_directory),
            "create_directory": ToolDefinition(
                "Create a directory. Its parent must already exist; with recursive=true an existing directory is not an error." + scope,
                DirectoryInput, self.create_directory),
            "remove_directory": ToolDefinition(
                "Remove a directory; with recursive=true non-empty directories are deleted." + scope,
                DirectoryInput, self.remove_directory),
            "rename_directory": ToolDefinition(
                "Rename or move a directory." + scope,
                SourceDestinationInput, self.rename_directory),
            "copy_file": ToolDefinition(
                "Copy a file." + scope,
                SourceDestinationInput, self.copy_file),
            "move_file": ToolDefinition(
                "Move or rename a file." + scope,
                SourceDestinationInput, self.move_file),
            "delete_file": ToolDefinition(
                "Delete a file." + scope,
                PathInput, self.delete_file),
            "file_exists": ToolDefinition(
                "Check whether a file exists." + scope,
                PathInput, self.file_exists),
            "list_allowed_directories": ToolDefinition(
                "List the directories this server may access.",
                NoInput, self.list_allowed_directories),
            "open_config_file": ToolDefinition(
                "Open the policy file in the platform's default editor.",
                NoInput, self.open_config_file),
            "execute_command": ToolDefinition(
                "Run an allowlisted command. 'commandName' may hold a whole command line; "
                "it is split on whitespace (quotes are not interpreted) and no shell operators are applied. "
                "Use list_allowed_commands to see what is permitted.",
                ExecuteCommandInput, self.execute_command),
            "list_allowed_commands": ToolDefinition(
                "List the commands execute_command accepts, grouped by category.",
                NoInput, self.list_allowed_commands),
        }

    # --- Handler Registration (Called from __init__) ---
    def _register_handlers(self) -> None:
        @self.server.call_tool()  # type: ignore[misc]
        async def _dispatch_tool_call(tool_name: str, arguments: dict[str, Any]) -> list[TextContent]:
            return await self.dispatch(tool_name, arguments)

        @self.server.list_tools()  # type: ignore[misc]
        async def list_tools_handler() -> list[Tool]:
            return await self.list_tools_impl()

    async def dispatch(self, tool_name: str, arguments: Optional[dict[str, Any]]) -> list[TextContent]:
        """Validate ``arguments`` against the tool's input model and run its handler."""
        definition = self.tools.get(tool_name)
        if definition is None:
            raise ValueError(f"Unknown tool: {tool_name}")
        params = definition.input_model.model_validate(arguments or {})
        return await definition.handler(params)

    async def list_tools_impl(self) -> list[Tool]:
        return [
            Tool(
                name=name,
                description=definition.description,
                inputSchema=definition.input_model.model_json_schema(),
            )
            for name, definition in self.tools.items()
        ]

    # --- Tool Implementations ---

    async def get_path(self, params: NoInput) -> list[TextContent]:
        return _text(os.environ.get("PATH") or "PATH environment variable is not set")

    async def echo(self, params: EchoInput) -> list[TextContent]:
        return _text(params.text)

    async def read_file(self, params: ReadFileInput) -> list[TextContent]:
        return _text(await self.filesystem.read_file(params.path, params.range))

    async def write_file(self, params: WriteFileInput) -> list[TextContent]:
        return _text(await self.filesystem.write_file(params.path, params.content))

    async def append_file(self, params: AppendFileInput) -> list[TextContent]:
        return _text(await self.filesystem.append_file(params.path, params.content))

    async def list_directory(self, params: PathInput) -> list[TextContent]:
        listing = await self.filesystem.list_directory(params.path)
        return _text(listing if listing else f"Directory is empty: {params.path}")

    async def create_directory(self, params: DirectoryInput) -> list[TextContent]:
        return _text(await self.filesystem.create_directory(params.path, params.recursive))

    async def remove_directory(self, params: DirectoryInput) -> list[TextContent]:
        return _text(await self.filesystem.remove_directory(params.path, params.recursive))

    async def rename_directory(self, params: SourceDestinationInput) -> list[TextContent]:
        return _text(await self.filesystem.rename_directory(params.sourcePath, params.destinationPath))

    async def copy_file(self, params: SourceDestinationInput) -> list[TextContent]:
        return _text(await self.filesystem.copy_file(params.sourcePath, params.destinationPath))

    async def move_file(self, params: SourceDestinationInput) -> list[TextContent]:
        return _text(await self.filesystem.move_file(params.sourcePath, params.destinationPath))

    async def delete_file(self, params: PathInput) -> list[TextContent]:
        return _text(await self.filesystem.delete_file(params.path))

    async def file_exists(self, params: PathInput) -> list[TextContent]:
        return _text(await self.filesystem.file_exists(params.path))

    async def list_allowed_directories(self, params: NoInput) -> list[TextContent]:
        allowed_dirs = await self.filesystem.list_allowed_directories()
        if not allowed_dirs:
            return _text("No directories are allowed. Add allowedDirectories to the policy file.")
        return _text("Allowed directories:\n" + "\n".join(allowed_dirs))

    async def open_config_file(self, params: NoInput) -> list[TextContent]:
        config_path = getattr(self.policy_store, "config_path", None)
        if config_path is None:
            raise RuntimeError("This server has no policy file to open")
        config_path = str(config_path)

        if sys.platform == "win32":
            opener = "notepad"
        elif sys.platform == "darwin":
            opener = "open"
        else:
            opener = "xdg-open"
        try:
            # Fire and forget: the editor outlives the request.
            subprocess.Popen(
                [opener, config_path],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            raise ProcessLaunchError(opener, str(e)) from e
        return _text(f"Opening policy file: {config_path}")

    async def execute_command(self, params: ExecuteCommandInput) -> list[TextContent]:
        invocation = self.gate.authorize(params.commandName, params.args)
        result = await self.runner.run(invocation)
        return _text(f"Output:\n{result.stdout}\nErrors:\n{result.stderr}")

    async def list_allowed_commands(self, params: NoInput) -> list[TextContent]:
        return _text(self.gate.format_allowed_commands())

    # --- Server Run ---

    async def run(self) -> None:
        """Run the server using stdio."""
        async with stdio_server() as (read_stream, write_stream):
            logger.info("mcp-cmdex %s running on stdio", __version__)
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )


def configure_logging() -> None:
    # stdout carries the protocol, so logs go to stderr.
    logging.basicConfig(
        level=os.getenv(ENV_LOG_LEVEL, "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


async def main() -> None:
    configure_logging()
    server = CommandServer()
    await server.run()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
