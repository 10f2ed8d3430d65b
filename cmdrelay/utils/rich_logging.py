"""Rich logging integration for cmdrelay."""

from __future__ import annotations

import logging
import sys
from typing import Any

from rich.console import Console
from rich.logging import RichHandler


class CorrelationRichHandler(RichHandler):
    """RichHandler that stamps records with the current correlation ID."""

    def __init__(
        self,
        *args: Any,
        console: Console | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize handler writing to stderr unless a console is given."""
        if console is None:
            console = Console(file=sys.stderr)
        kwargs.setdefault("show_path", False)
        kwargs.setdefault("rich_tracebacks", True)
        super().__init__(*args, console=console, **kwargs)

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a log record with correlation ID attached."""
        if not hasattr(record, "correlation_id"):
            from cmdrelay.utils.logging_config import correlation_id

            record.correlation_id = correlation_id.get() or "no-correlation-id"
        super().emit(record)


class FileFormatter(logging.Formatter):
    """Plain formatter for log files (strips Rich markup)."""

    def format(self, record: logging.LogRecord) -> str:
        """Format record, removing Rich markup tags from the message."""
        formatted = super().format(record)
        if "[" in formatted and "[/" in formatted:
            from rich.errors import MarkupError
            from rich.text import Text

            try:
                formatted = Text.from_markup(formatted).plain
            except MarkupError:
                pass
        return formatted


def create_rich_handler(
    level: int | str = logging.INFO,
    console: Console | None = None,
) -> CorrelationRichHandler:
    """Create a console handler for the given level."""
    handler = CorrelationRichHandler(console=console)
    handler.setLevel(level)
    return handler
