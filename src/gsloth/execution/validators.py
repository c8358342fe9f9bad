"""
Validators for tool arguments.

Filesystem tools resolve every path through ``validate_path`` so that
the model cannot read or write outside the workspace.
"""

from pathlib import Path


class PathTraversalError(Exception):
    """Raised when a path tries to escape the workspace."""

    pass


class ValidationError(Exception):
    """Generic validation error."""

    pass


def validate_path(path: str, workspace_root: Path) -> Path:
    """Resolve a path and make sure it stays inside the workspace.

    Args:
        path: Path relative to the workspace, as given by the model
        workspace_root: Workspace root directory

    Returns:
        Absolute resolved path, guaranteed inside the workspace

    Raises:
        PathTraversalError: If the resolved path escapes the workspace
        ValidationError: If the path cannot be resolved

    Example:
        >>> validate_path("src/main.py", Path("/workspace"))
        Path("/workspace/src/main.py")
    """
    workspace_resolved = workspace_root.resolve()

    try:
        full_path = (workspace_root / path).resolve()
    except (ValueError, OSError) as e:
        raise ValidationError(f"Invalid path '{path}': {e}")

    if not full_path.is_relative_to(workspace_resolved):
        raise PathTraversalError(
            f"Path '{path}' escapes the workspace. "
            f"Resolved: {full_path}, Workspace: {workspace_resolved}"
        )

    return full_path


def validate_file_exists(path: Path) -> None:
    """Raise ValidationError unless ``path`` is an existing regular file."""
    if not path.exists():
        raise ValidationError(f"File does not exist: {path}")

    if not path.is_file():
        raise ValidationError(f"Path is not a regular file: {path}")


def validate_directory_exists(path: Path) -> None:
    """Raise ValidationError unless ``path`` is an existing directory."""
    if not path.exists():
        raise ValidationError(f"Directory does not exist: {path}")

    if not path.is_dir():
        raise ValidationError(f"Path is not a directory: {path}")


def ensure_parent_directory(path: Path) -> None:
    """Create the parent directory of ``path`` if needed."""
    parent = path.parent
    if not parent.exists():
        try:
            parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ValidationError(f"Could not create directory {parent}: {e}")


