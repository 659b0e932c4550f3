"""Structured logging configuration for rss2email.

Every component logs through an ExecutionLogger so that each JSON line carries
the id of the poll cycle it belongs to, plus whichever feed, item or recipient
it concerns.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

# Record attributes copied into the JSON entry when present
CONTEXT_FIELDS = (
    "execution_id",
    "component",
    "feed_url",
    "item_title",
    "recipient",
    "recipient_count",
    "path",
    "attempt",
    "items_found",
    "items_new",
    "success",
    "duration_seconds",
    "error",
    "metrics",
)

# Chatty libraries kept at WARNING unless the cycle runs at DEBUG
QUIET_LOGGERS = ("boto3", "botocore", "urllib3")


class StructuredFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ExecutionLogger:
    """Logger bound to one poll cycle and one component."""

    def __init__(self, execution_id: str, component: str = "main"):
        """Initialize execution logger.

        Args:
            execution_id: Id of the poll cycle
            component: Component name (e.g., 'fetcher', 'emailer')
        """
        self.execution_id = execution_id
        self.component = component
        self.logger = logging.getLogger(f"rss2email.{component}")
        self.started_at: datetime | None = None

    def _log(self, level: int, message: str, **context) -> None:
        extra = {"execution_id": self.execution_id, "component": self.component, **context}
        self.logger.log(level, message, extra=extra)

    def debug(self, message: str, **context) -> None:
        self._log(logging.DEBUG, message, **context)

    def info(self, message: str, **context) -> None:
        self._log(logging.INFO, message, **context)

    def warning(self, message: str, **context) -> None:
        self._log(logging.WARNING, message, **context)

    def error(self, message: str, **context) -> None:
        self._log(logging.ERROR, message, **context)

    def log_cycle_start(self, **context) -> None:
        """Log the start of a poll cycle and start its clock."""
        self.started_at = datetime.now(UTC)
        self.info(f"Poll cycle started ({self.component})", **context)

    def log_cycle_end(self, metrics: dict[str, Any], success: bool, **context) -> None:
        """Log the end of a poll cycle with its metrics and duration.

        A failed cycle is logged at ERROR.
        """
        duration = None
        if self.started_at:
            duration = (datetime.now(UTC) - self.started_at).total_seconds()

        self._log(
            logging.INFO if success else logging.ERROR,
            f"Poll cycle finished ({self.component}): "
            f"{metrics.get('messages_sent', 0)} messages sent, "
            f"{len(metrics.get('errors', []))} errors",
            success=success,
            duration_seconds=duration,
            metrics=metrics,
            **context,
        )

    def log_feed_result(self, feed_url: str, items_found: int, items_new: int) -> None:
        """Log how many of a feed's items were new this cycle."""
        self.info(
            f"Feed checked: {items_new} new of {items_found} items",
            feed_url=feed_url,
            items_found=items_found,
            items_new=items_new,
        )

    def log_delivery(
        self, item_title: str, recipient_count: int, error: Exception | None = None
    ) -> None:
        """Log the outcome of mailing one item to every recipient."""
        if error is None:
            self.info(
                f"Item mailed: {item_title}",
                item_title=item_title,
                recipient_count=recipient_count,
                success=True,
            )
        else:
            self.error(
                f"Item not mailed: {item_title}",
                item_title=item_title,
                recipient_count=recipient_count,
                success=False,
                error=str(error),
            )


def setup_structured_logging(log_level: str = "INFO") -> None:
    """Send all logging to stdout as JSON, replacing existing handlers.

    Args:
        log_level: Logging level name; unknown names fall back to INFO
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(console_handler)

    package_logger = logging.getLogger("rss2email")
    package_logger.setLevel(level)
    package_logger.propagate = True

    quiet_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def create_execution_logger(
    component: str, execution_id: str | None = None
) -> ExecutionLogger:
    """Create an execution logger for a component.

    Args:
        component: Component name
        execution_id: Poll cycle id, generated when omitted

    Returns:
        ExecutionLogger instance
    """
    if not execution_id:
        execution_id = f"exec_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"

    return ExecutionLogger(execution_id, component)
