"""Command allowlisting and command-line parsing."""

import logging
from typing import Dict, FrozenSet, List, Mapping, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, Field

from .config import Policy
from .errors import CommandNotAllowedError, PolicyUnavailableError

logger = logging.getLogger(__name__)


# Compiled-in baseline, granted regardless of the policy file.
# Category names only matter for list_allowed_commands.
ALLOWED_COMMAND_CATEGORIES: Mapping[str, Tuple[str, ...]] = {
    "Windows/DOS": (
        "dir", "copy", "xcopy", "robocopy", "move", "del", "rd", "md", "type", "more",
        "find", "findstr", "sort", "fc", "comp", "tree", "where", "whoami", "tasklist",
        "taskkill", "systeminfo", "hostname", "ipconfig", "netstat", "net", "ping",
        "tracert", "nslookup", "pathping", "route", "arp", "attrib", "chcp", "cipher",
        "clip", "compact", "expand", "forfiles", "fsutil", "ftype", "reg", "sc",
        "schtasks", "shutdown", "timeout", "title", "ver", "vol", "wmic", "powershell",
        "pwsh", "cmd",
    ),
    "Shells": (
        "bash", "sh", "zsh", "fish", "ksh", "csh", "tcsh", "dash", "ash",
    ),
    "Core utilities": (
        "ls", "cp", "mv", "rm", "mkdir", "rmdir", "cat", "head", "tail", "grep", "find",
        "sort", "uniq", "wc", "tr", "cut", "paste", "join", "split", "basename",
        "dirname", "pwd", "date", "touch", "chmod", "chown", "df", "du", "ln", "tar",
        "gzip", "gunzip", "bzip2", "bunzip2", "xz", "unxz", "zip", "unzip", "echo",
    ),
    "Text processing": (
        "awk", "gawk", "mawk", "nawk",
        "sed", "gsed", "ssed",
        "jq", "yq", "fx",
        "csvkit", "xsv", "tsv-utils",
        "pandoc", "asciidoctor",
    ),
    "Database clients": (
        "sqlite3", "sqlite",
        "mysql", "mysqldump", "mysqlimport",
        "psql", "pg_dump", "pg_restore",
        "mongosh", "mongoexport", "mongoimport",
        "redis-cli",
        "duckdb",
        "influx",
    ),
    "Compilers and interpreters": (
        "gcc", "g++", "clang", "clang++", "rustc", "python", "python3", "node", "deno",
        "java", "javac", "kotlin", "kotlinc", "go", "gofmt", "ruby", "perl", "php",
        "ghc", "stack", "cabal",
        "scala", "scalac",
        "dotnet",
        "tsc", "esbuild", "swc",
    ),
    "Package managers": (
        "npm", "yarn", "pnpm", "pip", "pip3", "cargo", "gem", "composer", "maven",
        "gradle", "sbt", "nuget", "vcpkg", "conan",
    ),
    "Build tools": (
        "make", "cmake", "ninja", "rake", "grunt", "gulp", "webpack", "rollup", "vite",
        "bazel", "buck",
    ),
    "Test runners": (
        "jest", "pytest", "rspec", "mocha", "karma", "cypress", "playwright",
    ),
    "Developer tools": (
        "git", "gh",
        "curl", "wget", "httpie",
        "docker", "podman",
        "terraform", "ansible",
        "protoc", "grpcurl",
        "shellcheck", "shfmt",
        "prettier", "eslint", "stylelint",
        "graphql", "hasura",
    ),
}

STATIC_ALLOWED_COMMANDS: FrozenSet[str] = frozenset(
    command for commands in ALLOWED_COMMAND_CATEGORIES.values() for command in commands
)


class PolicySource(Protocol):
    def load(self) -> Policy: ...


class ParsedInvocation(BaseModel):
    """A command and its arguments, ready to launch."""
    command: str
    args: List[str] = Field(default_factory=list)


def parse_command_line(command_name: str, args: Optional[Sequence[str]] = None) -> ParsedInvocation:
    """Split a pre-assembled command line into command and arguments.

    If ``command_name`` contains whitespace it is split on runs of whitespace
    and the trailing tokens are prepended to ``args``. Quotes are not
    interpreted: ``grep 'a b'`` yields the tokens ``'a`` and ``b'``.
    """
    explicit_args = list(args or [])
    if not any(ch.isspace() for ch in command_name):
        return ParsedInvocation(command=command_name, args=explicit_args)

    parts = command_name.split()
    if not parts:
        return ParsedInvocation(command="", args=explicit_args)

    invocation = ParsedInvocation(command=parts[0], args=parts[1:] + explicit_args)
    logger.debug(
        "Parsed command line %r => %s %s",
        command_name,
        invocation.command,
        " ".join(invocation.args),
    )
    return invocation


class CommandGate:
    """Decides whether a caller-supplied command may run.

    The effective allowlist is the static baseline plus every command the
    current policy lists. If the policy cannot be loaded only the baseline
    applies.
    """

    def __init__(
        self,
        policy_store: PolicySource,
        static_commands: FrozenSet[str] = STATIC_ALLOWED_COMMANDS,
        static_categories: Mapping[str, Sequence[str]] = ALLOWED_COMMAND_CATEGORIES,
    ) -> None:
        self.policy_store = policy_store
        self.static_commands = frozenset(static_commands)
        self.static_categories = static_categories

    def is_allowed(self, command: str) -> bool:
        if not command:
            return False
        if command in self.static_commands:
            return True
        try:
            policy = self.policy_store.load()
        except PolicyUnavailableError as e:
            logger.warning("Could not check policy commands, using static allowlist only: %s", e)
            return False
        return command in policy.policy_commands()

    def authorize(self, command_name: str, args: Optional[Sequence[str]] = None) -> ParsedInvocation:
        """Parse ``command_name`` and ``args`` and confirm the command is allowed."""
        invocation = parse_command_line(command_name, args)
        if not self.is_allowed(invocation.command):
            logger.warning("Denied command %r", command_name)
            raise CommandNotAllowedError(command_name, invocation.command)
        return invocation

    def allowed_commands_by_category(self) -> Dict[str, List[str]]:
        """Static and policy categories merged, each de-duplicated and sorted."""
        merged: Dict[str, set[str]] = {
            category: set(commands) for category, commands in self.static_categories.items()
        }
        try:
            policy = self.policy_store.load()
        except PolicyUnavailableError as e:
            logger.warning("Could not load policy commands for listing: %s", e)
        else:
            for category, commands in policy.allowed_commands.items():
                merged.setdefault(category, set()).update(commands)
        return {category: sorted(commands) for category, commands in merged.items()}

    def format_allowed_commands(self) -> str:
        return "\n\n".join(
            f"{category}:\n  {', '.join(commands)}"
            for category, commands in self.allowed_commands_by_category().items()
        )
