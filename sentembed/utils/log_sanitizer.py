# =============================================================================
# File: log_sanitizer.py
# Date: 2026-10-02
# Copyright (c) 2024 Goutam Malakar. All rights reserved.
# =============================================================================

import re
from typing import Any

_CONTROL_CHARS = re.compile(r"[\r\n\t\x00-\x1f\x7f-\x9f]")


def sanitize_for_log(value: Any, max_length: int = 200) -> str:
    """
    Sanitize input for safe logging by removing/encoding dangerous characters.

    Args:
        value: Input value to sanitize (identifier, path, exception text)
        max_length: Longest string written to the log

    Returns:
        str: Sanitized string safe for logging
    """
    if value is None:
        return "None"

    # Remove newlines, carriage returns, and other control characters
    sanitized = _CONTROL_CHARS.sub("_", str(value))

    # Limit length to prevent log flooding
    if len(sanitized) > max_length:
        sanitized = sanitized[: max_length - 3] + "..."

    return sanitized
