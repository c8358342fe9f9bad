"""
Tools for local filesystem operations.

Read, list, write and edit, all confined to the workspace. Reading tools
have ``kind="read"``; mutating tools have ``kind="write"`` so that the
checklist middleware can hide them while the plan is being drafted.
"""

import asyncio
import difflib
import fnmatch
from pathlib import Path
from typing import Any

from pydantic import ValidationError as ArgsValidationError

from ..execution.validators import (
    PathTraversalError,
    ValidationError,
    ensure_parent_directory,
    validate_directory_exists,
    validate_file_exists,
    validate_path,
)
from .base import BaseTool, ToolResult
from .schemas import EditFileArgs, ListFilesArgs, ReadFileArgs, WriteFileArgs

_EXPECTED_ERRORS = (PathTraversalError, ValidationError, ArgsValidationError, OSError)


def _failure(e: Exception, action: str, path: str) -> ToolResult:
    if isinstance(e, PathTraversalError):
        return ToolResult(success=False, output="", error=f"Security error: {e}")
    if isinstance(e, (ValidationError, ArgsValidationError)):
        return ToolResult(success=False, output="", error=str(e))
    return ToolResult(success=False, output="", error=f"Error {action} {path}: {e}")


class ReadFileTool(BaseTool):
    """Reads a file inside the workspace."""

    def __init__(self, workspace_root: Path):
        self.name = "read_file"
        self.description = (
            "Read the full content of a text file. Use it to inspect code, "
            "configuration or any other text file."
        )
        self.kind = "read"
        self.args_model = ReadFileArgs
        self.workspace_root = workspace_root

    async def execute(self, **kwargs: Any) -> ToolResult:
        try:
            args = self.validate_args(kwargs)
            file_path = validate_path(args.path, self.workspace_root)
            validate_file_exists(file_path)
            content = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
            return ToolResult(success=True, output=f"Content of {args.path}:\n\n{content}")
        except UnicodeDecodeError:
            return ToolResult(
                success=False,
                output="",
                error=f"{kwargs.get('path')} is not a valid UTF-8 text file",
            )
        except _EXPECTED_ERRORS as e:
            return _failure(e, "reading", str(kwargs.get("path", "?")))


class ListFilesTool(BaseTool):
    """Lists files and directories inside the workspace."""

    def __init__(self, workspace_root: Path):
        self.name = "list_files"
        self.description = (
            "List files and directories under a path. Supports glob patterns "
            "(*.py) and recursive listing."
        )
        self.kind = "read"
        self.args_model = ListFilesArgs
        self.workspace_root = workspace_root

    async def execute(self, **kwargs: Any) -> ToolResult:
        try:
            args = self.validate_args(kwargs)
            dir_path = validate_path(args.path, self.workspace_root)
            validate_directory_exists(dir_path)

            if args.recursive:
                files = list(dir_path.rglob(args.pattern or "*"))
            else:
                files = list(dir_path.iterdir())
                if args.pattern:
                    files = [f for f in files if fnmatch.fnmatch(f.name, args.pattern)]
            files.sort()

            root = self.workspace_root.resolve()
            lines = [f"Content of {args.path}:", ""]
            if not files:
                lines.append("(empty directory)")
            for entry in files:
                type_str = "DIR" if entry.is_dir() else "FILE"
                lines.append(f"{type_str:4s} {entry.relative_to(root)}")
            lines.append("")
            lines.append(f"Total: {len(files)} items")

            return ToolResult(success=True, output="\n".join(lines))
        except _EXPECTED_ERRORS as e:
            return _failure(e, "listing", str(kwargs.get("path", ".")))


class WriteFileTool(BaseTool):
    """Writes a file inside the workspace."""

    def __init__(self, workspace_root: Path):
        self.name = "write_file"
        self.description = (
            "Write or fully replace a file. Use it for NEW files or full rewrites; "
            "prefer edit_file for partial changes. Creates parent directories."
        )
        self.kind = "write"
        self.args_model = WriteFileArgs
        self.workspace_root = workspace_root

    async def execute(self, **kwargs: Any) -> ToolResult:
        try:
            args = self.validate_args(kwargs)
            file_path = validate_path(args.path, self.workspace_root)
            ensure_parent_directory(file_path)
            await asyncio.to_thread(file_path.write_text, args.content, encoding="utf-8")
            return ToolResult(
                success=True,
                output=f"File {args.path} written ({len(args.content)} characters)",
            )
        except _EXPECTED_ERRORS as e:
            return _failure(e, "writing", str(kwargs.get("path", "?")))


class EditFileTool(BaseTool):
    """Edits a file by replacing one exact block of text (str_replace)."""

    def __init__(self, workspace_root: Path):
        self.name = "edit_file"
        self.description = (
            "Replace one exact block of text in a file (str_replace). "
            "old_str must be unique in the file; add neighboring lines if ambiguous."
        )
        self.kind = "write"
        self.args_model = EditFileArgs
        self.workspace_root = workspace_root

    async def execute(self, **kwargs: Any) -> ToolResult:
        try:
            args = self.validate_args(kwargs)
            if not args.old_str:
                return ToolResult(success=False, output="", error="old_str cannot be empty")

            file_path = validate_path(args.path, self.workspace_root)
            validate_file_exists(file_path)
            original = file_path.read_text(encoding="utf-8")

            count = original.count(args.old_str)
            if count == 0:
                return ToolResult(
                    success=False,
                    output="",
                    error=(
                        f"old_str not found in {args.path}. "
                        "Check whitespace, indentation and line breaks."
                    ),
                )
            if count > 1:
                return ToolResult(
                    success=False,
                    output="",
                    error=(
                        f"old_str appears {count} times in {args.path}. "
                        "Add more context lines to make it unique."
                    ),
                )

            modified = original.replace(args.old_str, args.new_str, 1)
            file_path.write_text(modified, encoding="utf-8")

            diff = "\n".join(
                difflib.unified_diff(
                    original.splitlines(keepends=True),
                    modified.splitlines(keepends=True),
                    fromfile=f"a/{args.path}",
                    tofile=f"b/{args.path}",
                    lineterm="",
                )
            )
            return ToolResult(
                success=True,
                output=f"File {args.path} edited.\n\nDiff:\n{diff or '(no visible changes)'}",
            )
        except UnicodeDecodeError:
            return ToolResult(
                success=False,
                output="",
                error=f"{kwargs.get('path')} is not a valid UTF-8 text file",
            )
        except _EXPECTED_ERRORS as e:
            return _failure(e, "editing", str(kwargs.get("path", "?")))


def filesystem_tools(access: str | list[str], workspace_root: Path) -> list[BaseTool]:
    """Select filesystem tools for an access setting.

    Args:
        access: ``"all"``, ``"read"``, ``"none"`` or an explicit list of tool names
        workspace_root: Workspace the tools are confined to
    """
    tools: list[BaseTool] = [
        ReadFileTool(workspace_root),
        ListFilesTool(workspace_root),
        WriteFileTool(workspace_root),
        EditFileTool(workspace_root),
    ]
    if access == "all":
        return tools
    if access == "none":
        return []
    if access == "read":
        return [t for t in tools if t.kind == "read"]
    return [t for t in tools if t.name in access]
