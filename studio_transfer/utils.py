"""
Studio Transfer Utility Functions
=================================
Formatting helpers and the progress log sink shared by the migration flows.
"""

import logging
from typing import Callable, Optional


SIZE_UNITS = ('B', 'KB', 'MB', 'GB', 'TB')


def format_file_size(size_bytes: int) -> str:
    """
    Byte count with the largest unit that keeps the value under 1024.

    Examples:
        >>> format_file_size(512)
        '512 B'
        >>> format_file_size(1536)
        '1.5 KB'
    """
    size = float(size_bytes)
    for unit in SIZE_UNITS[:-1]:
        if abs(size) < 1024:
            break
        size /= 1024
    else:
        unit = SIZE_UNITS[-1]
    return f"{int(size)} B" if unit == 'B' else f"{size:.1f} {unit}"


def format_duration(seconds: float) -> str:
    """
    Convert seconds to human-readable duration.

    Returns:
        Human-readable string like "2.5s", "1m 30s", "2h 15m"
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


class LogSink:
    """
    Progress log: every line goes to a module logger and, optionally, to a
    caller-supplied callback (CLI printer, UI panel, test list.append).
    """

    def __init__(self, callback: Optional[Callable[[str], None]] = None,
                 logger: Optional[logging.Logger] = None):
        if isinstance(callback, LogSink):
            callback = callback.callback
        self.callback = callback
        self.logger = logger or logging.getLogger(__name__)

    def __call__(self, message: str, level: int = logging.INFO) -> None:
        self.logger.log(level, message)
        if self.callback:
            self.callback(message)

    def warning(self, message: str) -> None:
        self(message, logging.WARNING)

    def error(self, message: str) -> None:
        self(message, logging.ERROR)
