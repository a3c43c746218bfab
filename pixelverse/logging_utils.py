"""Logging utilities for PixelVerse worlds.

Provides color-coded output to distinguish deterministic vs generation-backed operations.
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    # Colors for operation types
    BLUE = "\033[94m"      # Deterministic operations (gate, moves, memory)
    YELLOW = "\033[93m"    # Generation calls (scheduler dispatch)
    RED = "\033[91m"       # Errors and rejected actions
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if PIXELVERSE_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("PIXELVERSE_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def _emit(message: str) -> None:
    if os.getenv("PIXELVERSE_QUIET"):
        return
    print(message)


def log_deterministic(message: str) -> None:
    """Log a deterministic operation (blue)."""
    _emit(colored(f"  {LOG_TAG_DETERMINISTIC} {message}", Color.BLUE))


def log_llm(message: str) -> None:
    """Log a generation operation (yellow)."""
    _emit(colored(f"  {LOG_TAG_LLM} {message}", Color.YELLOW))


def log_error(message: str) -> None:
    """Log an error or rejection (red)."""
    _emit(colored(f"  {LOG_TAG_ERROR} {message}", Color.RED))


def log_success(message: str) -> None:
    """Log a success (green)."""
    _emit(colored(f"  {LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    _emit(colored(f"  {LOG_TAG_INFO} {message}", Color.CYAN))


def debug_enabled(flag: str) -> bool:
    """Return True when a DEBUG_* environment flag is switched on."""
    return os.getenv(flag, "").lower() in ("1", "true", "yes")


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"  # Deterministic operation
LOG_TAG_LLM = "[LLM]"          # Generation call
LOG_TAG_ERROR = "[!]"          # Error/rejection
LOG_TAG_SUCCESS = "[✓]"        # Success
LOG_TAG_INFO = "[i]"           # Information
