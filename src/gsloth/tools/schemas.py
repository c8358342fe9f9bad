"""
Pydantic models for filesystem tool arguments.

Each tool defines its argument schema as a Pydantic model, which provides
validation and the JSON Schema sent to the model.
"""

from pydantic import BaseModel, Field


class ReadFileArgs(BaseModel):
    """Arguments for the read_file tool."""

    path: str = Field(
        description="Path relative to the workspace of the file to read",
        examples=["README.md", "src/main.py"],
    )

    model_config = {"extra": "forbid"}


class WriteFileArgs(BaseModel):
    """Arguments for the write_file tool."""

    path: str = Field(
        description="Path relative to the workspace of the file to write",
        examples=["output.txt", "src/generated.py"],
    )
    content: str = Field(description="Content to write to the file")

    model_config = {"extra": "forbid"}


class EditFileArgs(BaseModel):
    """Arguments for the edit_file tool (str_replace)."""

    path: str = Field(description="Path relative to the workspace of the file to edit")
    old_str: str = Field(
        description=(
            "Exact text to replace. Must appear exactly once in the file. "
            "Include neighboring lines to make it unambiguous if necessary."
        ),
    )
    new_str: str = Field(description="Replacement text, may be empty to delete the block")

    model_config = {"extra": "forbid"}


class ListFilesArgs(BaseModel):
    """Arguments for the list_files tool."""

    path: str = Field(
        default=".",
        description="Path relative to the workspace of the directory to list",
    )
    pattern: str | None = Field(
        default=None,
        description="Optional glob pattern to filter entries (e.g. '*.py')",
    )
    recursive: bool = Field(default=False, description="List subdirectories recursively")

    model_config = {"extra": "forbid"}
