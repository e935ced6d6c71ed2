"""Shared test fixtures for mcp-cmdex."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable

import pytest

from mcp_cmdex.config import Policy
from mcp_cmdex.errors import PolicyUnavailableError


class StaticPolicyStore:
    """In-memory policy source. Swap ``policy`` between calls to simulate edits."""

    def __init__(self, policy: Policy) -> None:
        self.policy = policy
        self.loads = 0

    def load(self) -> Policy:
        self.loads += 1
        return self.policy


class UnavailablePolicyStore:
    """Policy source whose backing file is always corrupt."""

    def load(self) -> Policy:
        raise PolicyUnavailableError("/nonexistent/.mcp-cmdex.toml", "simulated failure")


def symlinks_supported(tmp_path: Path) -> bool:
    probe = tmp_path / "probe-link"
    try:
        os.symlink(tmp_path / "probe-target", probe)
    except (OSError, NotImplementedError):
        return False
    probe.unlink()
    return True


@pytest.fixture()
def sandbox_root(tmp_path: Path) -> Path:
    """An allowed directory with one file in it."""
    root = tmp_path / "data"
    root.mkdir()
    (root / "x.txt").write_text("hello\n", encoding="utf-8")
    return root


@pytest.fixture()
def outside_dir(tmp_path: Path) -> Path:
    """A directory that is never allowed."""
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "secret.txt").write_text("secret\n", encoding="utf-8")
    return outside


@pytest.fixture()
def policy_store(sandbox_root: Path) -> StaticPolicyStore:
    return StaticPolicyStore(
        Policy(allowed_directories=(str(sandbox_root),), allowed_commands={"custom": frozenset({"grep"})})
    )


@pytest.fixture()
def write_policy(tmp_path: Path) -> Callable[[str], Path]:
    """Write TOML text to a policy file and return its path."""
    config_path = tmp_path / "config" / ".mcp-cmdex.toml"

    def _write(text: str) -> Path:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(text, encoding="utf-8")
        return config_path

    return _write


@pytest.fixture()
def require_symlinks(tmp_path: Path) -> None:
    if not symlinks_supported(tmp_path):
        pytest.skip("symlinks are not available on this platform")
