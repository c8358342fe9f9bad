"""
Execution module - argument validators and the operator override policy.
"""

from .policies import NoTTYError, OverridePolicy, is_interactive
from .validators import (
    PathTraversalError,
    ValidationError,
    ensure_parent_directory,
    validate_directory_exists,
    validate_file_exists,
    validate_path,
)

__all__ = [
    # Policies
    "OverridePolicy",
    "NoTTYError",
    "is_interactive",
    # Validators
    "validate_path",
    "validate_file_exists",
    "validate_directory_exists",
    "ensure_parent_directory",
    "PathTraversalError",
    "ValidationError",
]
