"""
Utils module - Utility functions and helpers.
"""

from secureviewer.utils.paths import (
    create_private_directory,
    is_path_within_directory,
    random_suffix,
)
from secureviewer.utils.validators import (
    ValidationError,
    validate_new_password,
    validate_path_safe,
)

__all__ = [
    "create_private_directory",
    "is_path_within_directory",
    "random_suffix",
    "ValidationError",
    "validate_new_password",
    "validate_path_safe",
]
