"""Operator policy loading.

The policy lives in a TOML file in the user's home directory (or wherever
``MCP_CMDEX_CONFIG`` points). It is read again on every call to
:meth:`PolicyStore.load`, so edits take effect on the next request.
"""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import PolicyUnavailableError

logger = logging.getLogger(__name__)

# Define environment variable names
ENV_CONFIG_PATH = "MCP_CMDEX_CONFIG"
ENV_LOG_LEVEL = "MCP_CMDEX_LOG_LEVEL"

CONFIG_FILE_NAME = ".mcp-cmdex.toml"


class Policy(BaseModel):
    """Allowed directories and operator-added commands, as read from the policy file."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    allowed_directories: Tuple[str, ...] = Field((), alias="allowedDirectories")
    # Category names are cosmetic; membership in any set grants the command.
    allowed_commands: Dict[str, FrozenSet[str]] = Field(default_factory=dict, alias="allowedCommands")
    # LLM post-processing options, carried through untouched.
    llm: Optional[Dict[str, Any]] = None

    def policy_commands(self) -> FrozenSet[str]:
        """All command names listed under any category."""
        commands: set[str] = set()
        for names in self.allowed_commands.values():
            commands.update(names)
        return frozenset(commands)


def get_config_file_path() -> Path:
    """Return the policy file location, honouring ``MCP_CMDEX_CONFIG``."""
    override = os.getenv(ENV_CONFIG_PATH)
    if override:
        return Path(override).expanduser()
    return Path.home() / CONFIG_FILE_NAME


class PolicyStore:
    """Reads the policy file on demand. No caching."""

    def __init__(self, config_path: Optional[Path] = None) -> None:
        self._config_path = Path(config_path) if config_path is not None else None

    @property
    def config_path(self) -> Path:
        if self._config_path is not None:
            return self._config_path
        return get_config_file_path()

    def load(self) -> Policy:
        """Load the current policy.

        A missing file yields an empty policy. Any other read, parse or
        validation problem raises :class:`PolicyUnavailableError`.
        """
        path = self.config_path
        logger.debug("Loading policy from %s", path)
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except FileNotFoundError:
            logger.debug("Policy file %s not found, using empty policy", path)
            return Policy()
        except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
            raise PolicyUnavailableError(str(path), f"invalid TOML: {e}") from e
        except OSError as e:
            raise PolicyUnavailableError(str(path), str(e)) from e

        try:
            policy = Policy.model_validate(data)
        except ValidationError as e:
            raise PolicyUnavailableError(str(path), f"invalid policy: {e}") from e

        logger.debug("Allowed directories loaded: %s", list(policy.allowed_directories))
        return policy
