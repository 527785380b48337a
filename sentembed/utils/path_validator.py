# =============================================================================
# File: path_validator.py
# Date: 2026-10-02
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

"""Containment checks for paths built from model identifiers and metadata files."""

import os
import re
from pathlib import Path
from typing import Union

from sentembed.exceptions import ResourceException

# Traversal and expansion syntax never valid inside a model directory name
DANGEROUS_PATTERNS = [
    r"\.\.",  # parent directory
    r"~",  # home expansion
    r"\$",  # POSIX variables
    r"%",  # Windows variables
    r"\\\\",  # UNC prefix
]

COMPILED_PATTERNS = [re.compile(pattern) for pattern in DANGEROUS_PATTERNS]

MAX_PATH_LENGTH = 4096


def has_dangerous_pattern(value: str) -> bool:
    """Return True when ``value`` contains a traversal or expansion pattern."""
    return any(pattern.search(value) for pattern in COMPILED_PATTERNS)


def validate_safe_path(file_path: Union[str, Path], base_dir: Union[str, Path]) -> str:
    """
    Resolve ``file_path`` and require it to stay under ``base_dir``.

    Args:
        file_path: Candidate artifact path
        base_dir: Models root or model directory that must contain it

    Returns:
        str: The resolved absolute path

    Raises:
        ResourceException: The base is missing or the path escapes it
    """
    try:
        resolved = Path(file_path).resolve()
        base = Path(base_dir).resolve()
    except OSError as e:
        raise ResourceException(f"Cannot resolve artifact path: {e}")

    if not base.is_dir():
        raise ResourceException(f"Base directory does not exist: {base}")
    if resolved != base and base not in resolved.parents:
        raise ResourceException(f"{resolved} is outside {base}")
    if len(str(resolved)) > MAX_PATH_LENGTH:
        raise ResourceException("Artifact path too long")
    return str(resolved)


def safe_join(base_dir: Union[str, Path], *paths: str) -> str:
    """
    Join untrusted components (identifier parts, file names read from model
    metadata) onto a trusted base directory.

    Raises:
        ResourceException: A component is empty, padded, dangerous, or the
            joined path leaves ``base_dir``
    """
    for part in paths:
        if not part or part.strip() != part:
            raise ResourceException(f"Invalid path component: '{part}'")
        if has_dangerous_pattern(part):
            raise ResourceException(f"Dangerous pattern in path component: {part}")

    return validate_safe_path(os.path.join(base_dir, *paths), base_dir)
