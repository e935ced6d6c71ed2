"""Tests for sandboxed file system operations."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import StaticPolicyStore
from mcp_cmdex.errors import ParentDirectoryMissingError, PathOutsideSandboxError
from mcp_cmdex.filesystem import FileSystem, PathSandbox


@pytest.fixture()
def fs(policy_store: StaticPolicyStore) -> FileSystem:
    return FileSystem(PathSandbox(policy_store))


@pytest.fixture()
def lines_file(sandbox_root: Path) -> Path:
    path = sandbox_root / "lines.txt"
    path.write_text("l0\nl1\nl2\nl3\nl4", encoding="utf-8")
    return path


@pytest.mark.asyncio()
async def test_read_whole_file(fs: FileSystem, sandbox_root: Path) -> None:
    assert await fs.read_file(str(sandbox_root / "x.txt")) == "hello\n"


@pytest.mark.asyncio()
@pytest.mark.parametrize(
    ("line_range", "expected"),
    [
        ("1:2", "l1\nl2"),
        (":1", "l0\nl1"),
        ("3:", "l3\nl4"),
        ("2:0", "l2\nl3\nl4"),
        ("0:0", "l0\nl1\nl2\nl3\nl4"),
    ],
)
async def test_read_line_range(fs: FileSystem, lines_file: Path, line_range: str, expected: str) -> None:
    assert await fs.read_file(str(lines_file), line_range) == expected


@pytest.mark.asyncio()
async def test_read_rejects_bad_range(fs: FileSystem, lines_file: Path) -> None:
    with pytest.raises(ValueError, match="Invalid range"):
        await fs.read_file(str(lines_file), "a:b")


@pytest.mark.asyncio()
async def test_read_outside_sandbox_is_denied(fs: FileSystem, outside_dir: Path) -> None:
    with pytest.raises(PathOutsideSandboxError):
        await fs.read_file(str(outside_dir / "secret.txt"))


@pytest.mark.asyncio()
async def test_read_directory_is_not_a_file(fs: FileSystem, sandbox_root: Path) -> None:
    with pytest.raises(FileNotFoundError, match="not a file"):
        await fs.read_file(str(sandbox_root))


@pytest.mark.asyncio()
async def test_write_then_append(fs: FileSystem, sandbox_root: Path) -> None:
    target = sandbox_root / "notes.txt"

    await fs.write_file(str(target), "first\n")
    await fs.append_file(str(target), "second\n")

    assert target.read_text(encoding="utf-8") == "first\nsecond\n"


@pytest.mark.asyncio()
async def test_write_outside_sandbox_leaves_no_file(fs: FileSystem, outside_dir: Path) -> None:
    target = outside_dir / "dropped.txt"

    with pytest.raises(PathOutsideSandboxError):
        await fs.write_file(str(target), "x")

    assert not target.exists()


@pytest.mark.asyncio()
async def test_list_directory_is_sorted_and_prefixed(fs: FileSystem, sandbox_root: Path) -> None:
    (sandbox_root / "sub").mkdir()
    (sandbox_root / "a.txt").write_text("a", encoding="utf-8")

    listing = await fs.list_directory(str(sandbox_root))

    assert listing.splitlines() == ["[FILE] a.txt", "[DIR] sub", "[FILE] x.txt"]


@pytest.mark.asyncio()
async def test_create_directory_requires_existing_parent(fs: FileSystem, sandbox_root: Path) -> None:
    await fs.create_directory(str(sandbox_root / "one"))
    assert (sandbox_root / "one").is_dir()

    with pytest.raises(ParentDirectoryMissingError):
        await fs.create_directory(str(sandbox_root / "two" / "three"), recursive=True)


@pytest.mark.asyncio()
async def test_create_existing_directory_fails_unless_recursive(fs: FileSystem, sandbox_root: Path) -> None:
    (sandbox_root / "exists").mkdir()

    with pytest.raises(OSError, match="Failed to create directory"):
        await fs.create_directory(str(sandbox_root / "exists"))
    await fs.create_directory(str(sandbox_root / "exists"), recursive=True)


@pytest.mark.asyncio()
async def test_remove_directory(fs: FileSystem, sandbox_root: Path) -> None:
    full = sandbox_root / "full"
    full.mkdir()
    (full / "f.txt").write_text("f", encoding="utf-8")

    with pytest.raises(OSError, match="Failed to remove directory"):
        await fs.remove_directory(str(full))
    await fs.remove_directory(str(full), recursive=True)

    assert not full.exists()


@pytest.mark.asyncio()
async def test_rename_directory(fs: FileSystem, sandbox_root: Path) -> None:
    (sandbox_root / "old").mkdir()

    await fs.rename_directory(str(sandbox_root / "old"), str(sandbox_root / "new"))

    assert (sandbox_root / "new").is_dir()
    assert not (sandbox_root / "old").exists()


@pytest.mark.asyncio()
async def test_rename_directory_out_of_sandbox_is_denied(
    fs: FileSystem, sandbox_root: Path, outside_dir: Path
) -> None:
    (sandbox_root / "old").mkdir()

    with pytest.raises(PathOutsideSandboxError):
        await fs.rename_directory(str(sandbox_root / "old"), str(outside_dir / "stolen"))

    assert (sandbox_root / "old").is_dir()


@pytest.mark.asyncio()
async def test_copy_move_and_delete_file(fs: FileSystem, sandbox_root: Path) -> None:
    source = sandbox_root / "x.txt"
    copy = sandbox_root / "copy.txt"
    moved = sandbox_root / "moved.txt"

    await fs.copy_file(str(source), str(copy))
    assert copy.read_text(encoding="utf-8") == "hello\n"

    await fs.move_file(str(copy), str(moved))
    assert moved.exists() and not copy.exists()

    await fs.delete_file(str(moved))
    assert not moved.exists()


@pytest.mark.asyncio()
async def test_copy_from_outside_is_denied(fs: FileSystem, sandbox_root: Path, outside_dir: Path) -> None:
    with pytest.raises(PathOutsideSandboxError):
        await fs.copy_file(str(outside_dir / "secret.txt"), str(sandbox_root / "loot.txt"))

    assert not (sandbox_root / "loot.txt").exists()


@pytest.mark.asyncio()
async def test_file_exists(fs: FileSystem, sandbox_root: Path) -> None:
    assert await fs.file_exists(str(sandbox_root / "x.txt")) == f"File '{sandbox_root / 'x.txt'}' exists"
    assert "does not exist" in await fs.file_exists(str(sandbox_root / "nope.txt"))
    assert "is not a file" in await fs.file_exists(str(sandbox_root))


@pytest.mark.asyncio()
async def test_list_allowed_directories(fs: FileSystem, sandbox_root: Path) -> None:
    assert await fs.list_allowed_directories() == [str(sandbox_root)]
