"""
Highly Visible Error Logging Utilities
=======================================

Ensures failed writes to the sleep store cannot be missed in logs.
"""

import traceback
from typing import Optional

from colorama import Fore, Style

from nightsleep.utils.logging_config import get_logger

logger = get_logger(__name__)


def log_critical_error(
    context: str,
    message: str,
    exception: Optional[Exception] = None,
    include_traceback: bool = True
):
    """
    Log an error with a highly visible format that cannot be missed.

    Args:
        context: Where it happened (e.g., "sleep_db.update_sleep_entry")
        message: The error message
        exception: Optional exception object
        include_traceback: Whether to include full traceback
    """
    banner = "=" * 80
    stars = "*" * 80

    error_lines = [
        "",
        stars,
        f"{'ERROR':^80}",
        stars,
        f"CONTEXT: {context}",
        banner,
        f"MESSAGE: {message}",
    ]

    if exception:
        error_lines.append(f"EXCEPTION TYPE: {type(exception).__name__}")
        error_lines.append(f"EXCEPTION: {str(exception)}")

    if include_traceback and exception:
        error_lines.append(banner)
        error_lines.append("TRACEBACK:")
        error_lines.append(traceback.format_exc())

    error_lines.extend([stars, ""])

    # Log each line separately to ensure it all gets captured
    for line in error_lines:
        logger.error(line)

    # Also print to console for immediate visibility
    print(f"{Fore.RED}" + "\n".join(error_lines) + f"{Style.RESET_ALL}")


def log_warning_banner(message: str, context: Optional[str] = None):
    """
    Log a warning with a visible banner.
    """
    banner = "=" * 80
    warning_lines = [
        "",
        "!" * 80,
        f"{'WARNING':^80}",
        "!" * 80,
    ]

    if context:
        warning_lines.append(f"CONTEXT: {context}")
        warning_lines.append(banner)

    warning_lines.append(f"MESSAGE: {message}")
    warning_lines.extend(["!" * 80, ""])

    for line in warning_lines:
        logger.warning(line)

    print(f"{Fore.YELLOW}" + "\n".join(warning_lines) + f"{Style.RESET_ALL}")
