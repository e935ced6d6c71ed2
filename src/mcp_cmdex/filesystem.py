"""Path sandboxing and the file system operations built on it."""

import logging
import os
import shutil
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .errors import DenialReason, ParentDirectoryMissingError, PathOutsideSandboxError
from .security import PolicySource

logger = logging.getLogger(__name__)


def normalize_path(path: str) -> str:
    """Absolute, lexically normalized form of ``path`` (no symlink resolution)."""
    return os.path.normpath(os.path.abspath(os.path.expanduser(path)))


def is_within(path: str, root: str) -> bool:
    """True if ``path`` is ``root`` or lies below it, on a component boundary."""
    if os.path.normcase(path) == os.path.normcase(root):
        return True
    prefix = root if root.endswith(os.sep) else root + os.sep
    return os.path.normcase(path).startswith(os.path.normcase(prefix))


class PathSandbox:
    """Confines file access to the policy's allowed directories.

    A path is checked twice: first in its lexical form, then in its real
    (symlink-resolved) form. Paths that do not exist yet are approved when
    their parent directory resolves inside an allowed directory.
    """

    def __init__(self, policy_store: PolicySource) -> None:
        self.policy_store = policy_store

    def allowed_directories(self) -> List[str]:
        return list(self.policy_store.load().allowed_directories)

    def validate(self, requested_path: str) -> str:
        """Return the canonical path for ``requested_path`` or raise a denial.

        Raises:
            PolicyUnavailableError: the policy could not be loaded.
            PathOutsideSandboxError: the path, its real path or its parent
                lies outside every allowed directory.
            ParentDirectoryMissingError: neither the path nor its parent exists.
        """
        # Policy load failures propagate: no policy, no access.
        allowed = list(self.policy_store.load().allowed_directories)
        lexical_roots = [normalize_path(d) for d in allowed]
        real_roots = _with_real_forms(lexical_roots)

        lexical_path = normalize_path(requested_path)

        if not any(is_within(lexical_path, root) for root in lexical_roots):
            logger.warning("Denied path outside allowed directories: %s", lexical_path)
            raise PathOutsideSandboxError(lexical_path, DenialReason.OUTSIDE_ALLOWED_ROOT, allowed)

        try:
            real_path = str(Path(lexical_path).resolve(strict=True))
        except (OSError, RuntimeError):
            real_path = None

        if real_path is not None:
            if not any(is_within(real_path, root) for root in real_roots):
                logger.warning("Denied symlink escape: %s -> %s", lexical_path, real_path)
                raise PathOutsideSandboxError(
                    lexical_path, DenialReason.SYMLINK_ESCAPES_SANDBOX, allowed, real_path
                )
            return real_path

        if os.path.lexists(lexical_path):
            # Dangling or looping symlink: writing through it would land on its target.
            target = os.path.realpath(lexical_path)
            if not any(is_within(target, root) for root in real_roots):
                logger.warning("Denied dangling symlink escape: %s -> %s", lexical_path, target)
                raise PathOutsideSandboxError(
                    lexical_path, DenialReason.SYMLINK_ESCAPES_SANDBOX, allowed, target
                )

        parent = os.path.dirname(lexical_path)
        try:
            real_parent = str(Path(parent).resolve(strict=True))
        except (OSError, RuntimeError) as e:
            raise ParentDirectoryMissingError(lexical_path, parent, allowed) from e

        if not any(is_within(real_parent, root) for root in real_roots):
            logger.warning("Denied path with parent outside allowed directories: %s -> %s", parent, real_parent)
            raise PathOutsideSandboxError(
                lexical_path, DenialReason.PARENT_OUTSIDE_ALLOWED_ROOT, allowed, real_parent
            )

        # The leaf does not exist yet, so there is nothing further to resolve.
        return lexical_path


def _with_real_forms(roots: Sequence[str]) -> List[str]:
    """Each root plus its canonical form, so roots that are symlinks still match."""
    result: List[str] = []
    for root in roots:
        for candidate in (root, os.path.realpath(root)):
            if candidate not in result:
                result.append(candidate)
    return result


def _parse_line_range(line_range: str) -> Tuple[int, Optional[int]]:
    """Parse ``n:m``, ``:m`` or ``n:`` into a start index and an inclusive end."""
    start_str, sep, end_str = line_range.partition(":")
    try:
        start = int(start_str) if start_str.strip() else 0
        end = int(end_str) if sep and end_str.strip() else 0
    except ValueError as e:
        raise ValueError(f"Invalid range '{line_range}': expected n:m, :m or n:") from e
    if start < 0 or end < 0:
        raise ValueError(f"Invalid range '{line_range}': line numbers must not be negative")
    # An end of 0 means "to the end of the file".
    return start, (end or None)


class FileSystem:
    """File and directory operations, each gated by a :class:`PathSandbox`."""

    def __init__(self, sandbox: PathSandbox) -> None:
        self.sandbox = sandbox

    async def read_file(self, path: str, line_range: Optional[str] = None) -> str:
        """Read a text file, optionally limited to a range of lines."""
        full_path = Path(self.sandbox.validate(path))
        if not full_path.is_file():
            raise FileNotFoundError(f"Path is not a file: {path}")
        try:
            content = full_path.read_text(encoding="utf-8")
        except OSError as e:
            raise OSError(f"Failed to read file {path}: {e}") from e

        if not line_range:
            return content
        start, end = _parse_line_range(line_range)
        lines = content.split("\n")
        selected = lines[start:] if end is None else lines[start:end + 1]
        return "\n".join(selected)

    async def write_file(self, path: str, content: str) -> str:
        """Create a file or overwrite an existing one."""
        full_path = Path(self.sandbox.validate(path))
        try:
            full_path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise OSError(f"Failed to write file {path}: {e}") from e
        return f"Successfully wrote to {path}"

    async def append_file(self, path: str, content: str) -> str:
        full_path = Path(self.sandbox.validate(path))
        try:
            with open(full_path, "a", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            raise OSError(f"Failed to append to file {path}: {e}") from e
        return f"Successfully appended to {path}"

    async def list_directory(self, path: str) -> str:
        """List directory contents with [FILE] or [DIR] prefixes."""
        full_path = Path(self.sandbox.validate(path))
        if not full_path.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {path}")
        try:
            items = sorted(full_path.iterdir(), key=lambda p: p.name)
        except OSError as e:
            raise OSError(f"Failed to list directory {path}: {e}") from e
        return "\n".join(f"{'[DIR]' if item.is_dir() else '[FILE]'} {item.name}" for item in items)

    async def create_directory(self, path: str, recursive: bool = False) -> str:
        full_path = Path(self.sandbox.validate(path))
        try:
            full_path.mkdir(parents=recursive, exist_ok=recursive)
        except OSError as e:
            raise OSError(f"Failed to create directory {path}: {e}") from e
        return f"Successfully created directory {path}"

    async def remove_directory(self, path: str, recursive: bool = False) -> str:
        full_path = Path(self.sandbox.validate(path))
        if not full_path.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {path}")
        try:
            if recursive:
                shutil.rmtree(full_path)
            else:
                full_path.rmdir()
        except OSError as e:
            raise OSError(f"Failed to remove directory {path}: {e}") from e
        return f"Successfully removed directory {path}"

    async def rename_directory(self, source: str, destination: str) -> str:
        """Rename or move a directory. Both ends are validated."""
        src_path = Path(self.sandbox.validate(source))
        dst_path = Path(self.sandbox.validate(destination))
        if not src_path.is_dir():
            raise NotADirectoryError(f"Source path is not a directory: {source}")
        try:
            src_path.rename(dst_path)
        except OSError as e:
            raise OSError(f"Failed to rename directory {source} to {destination}: {e}") from e
        return f"Successfully moved directory {source} to {destination}"

    async def copy_file(self, source: str, destination: str) -> str:
        src_path = Path(self.sandbox.validate(source))
        dst_path = Path(self.sandbox.validate(destination))
        if not src_path.is_file():
            raise FileNotFoundError(f"Source path is not a file: {source}")
        try:
            shutil.copyfile(src_path, dst_path)
        except OSError as e:
            raise OSError(f"Failed to copy {source} to {destination}: {e}") from e
        return f"Successfully copied {source} to {destination}"

    async def move_file(self, source: str, destination: str) -> str:
        src_path = Path(self.sandbox.validate(source))
        dst_path = Path(self.sandbox.validate(destination))
        if not src_path.exists():
            raise FileNotFoundError(f"Source path does not exist: {source}")
        try:
            src_path.rename(dst_path)
        except OSError as e:
            raise OSError(f"Failed to move {source} to {destination}: {e}") from e
        return f"Successfully moved {source} to {destination}"

    async def delete_file(self, path: str) -> str:
        full_path = Path(self.sandbox.validate(path))
        if not full_path.is_file():
            raise FileNotFoundError(f"Path is not a file: {path}")
        try:
            full_path.unlink()
        except OSError as e:
            raise OSError(f"Failed to delete file {path}: {e}") from e
        return f"Successfully deleted {path}"

    async def file_exists(self, path: str) -> str:
        full_path = Path(self.sandbox.validate(path))
        if not full_path.exists():
            return f"File '{path}' does not exist"
        if full_path.is_file():
            return f"File '{path}' exists"
        return f"Path '{path}' exists but is not a file"

    async def list_allowed_directories(self) -> List[str]:
        return self.sandbox.allowed_directories()
