"""The logging configuration module."""

import json
import logging
import sys
from datetime import datetime
from typing import Optional

_PACKAGE = "m365crawler"

# Attributes every LogRecord carries; anything else arrived through `extra`.
_RECORD_ATTRIBUTES = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "custom_dimensions",
        "exc_info",
        "exc_text",
        "stack_info",
    }
)


class JSONFormatter(logging.Formatter):
    """JSON line formatter for crawl logs.

    Every record becomes one JSON object carrying the crawl dimensions
    (family, resource id, crawl id) so log lines can be joined with the
    failure log and the stats summary.
    """

    def __init__(self):
        """Initialize the formatter with a module path cache."""
        super().__init__()
        self._module_cache: dict[str, str] = {}

    def _get_module_path(self, record: logging.LogRecord) -> str:
        """Resolve the dotted module path of the record's source file.

        Args:
        ----
            record (logging.LogRecord): The log record

        Returns:
        -------
            str: Dotted module path (e.g., 'm365crawler.platform.sources.teams')

        """
        pathname = record.pathname
        cached = self._module_cache.get(pathname)
        if cached is not None:
            return cached

        parts = pathname.replace("\\", "/").split("/")
        indices = [i for i, part in enumerate(parts) if part == _PACKAGE]
        if indices:
            module_parts = parts[indices[-1] :]
            if module_parts[-1].endswith(".py"):
                module_parts[-1] = module_parts[-1][:-3]
            module_path = ".".join(module_parts)
        else:
            module_path = record.module

        self._module_cache[pathname] = module_path
        return module_path

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON.

        Args:
        ----
            record (logging.LogRecord): The log record to format

        Returns:
        -------
            str: JSON-formatted log message

        """
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": self._get_module_path(record),
            "function": record.funcName,
            "line": record.lineno,
        }

        dimensions = getattr(record, "custom_dimensions", None)
        if dimensions:
            log_entry["custom_dimensions"] = dimensions

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES:
                continue
            try:
                json.dumps(value)
                log_entry[key] = value
            except (TypeError, ValueError):
                log_entry[key] = str(value)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class _ContextualLogger(logging.LoggerAdapter):
    """A LoggerAdapter that carries crawl dimensions and a message prefix."""

    def __init__(
        self,
        logger: logging.Logger,
        prefix: str = "",
        dimensions: Optional[dict] = None,
    ) -> None:
        """Initialize the contextual logger.

        Args:
        ----
            logger (logging.Logger): Base logger instance
            prefix (str): Optional prefix for log messages
            dimensions (Optional[dict]): Custom dimensions for structured logging

        """
        super().__init__(logger, {})
        self.prefix = prefix
        self.dimensions = dimensions or {}

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        """Apply the prefix and merge the dimensions into the record extras."""
        if self.prefix:
            msg = f"{self.prefix}{msg}"

        extra = kwargs.setdefault("extra", {})
        if self.dimensions:
            extra["custom_dimensions"] = {
                **extra.get("custom_dimensions", {}),
                **self.dimensions,
            }

        return msg, kwargs

    def with_prefix(self, prefix: str) -> "_ContextualLogger":
        """Return a logger with a different prefix and the same dimensions."""
        return _ContextualLogger(self.logger, prefix, self.dimensions)

    def with_context(self, **dimensions: str | int | float | bool) -> "_ContextualLogger":
        """Return a logger with additional context dimensions.

        Args:
        ----
            dimensions: Keyword arguments to add to dimensions

        Returns:
        -------
            _ContextualLogger: New logger instance with updated dimensions

        """
        return _ContextualLogger(self.logger, self.prefix, {**self.dimensions, **dimensions})


ContextualLogger = _ContextualLogger


class LoggerConfigurator:
    """Configures loggers with support for dimensions and prefixes.

    A crawl run binds its identifying dimensions once (crawl_id, family) and
    walkers narrow them further (site_id, drive_id, team_id) as they descend.

    Configuration:
    -------------
    Uses settings from m365crawler.core.config:
    - Plain text output when LOCAL_DEVELOPMENT=True, JSON lines otherwise
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)

    Examples:
    --------
    ```python
    logger = LoggerConfigurator.configure_logger(__name__, dimensions={"crawl_id": "c-1"})
    logger.with_context(family="teams", team_id="t-1").info("Walking channels")
    ```

    """

    @staticmethod
    def configure_logger(
        name: str,
        prefix: str = "",
        dimensions: Optional[dict] = None,
    ) -> _ContextualLogger:
        """Configure and return a logger with the given name and initial context.

        Args:
        ----
            name (str): Logger name (typically __name__)
            prefix (str): Initial prefix for log messages
            dimensions (Optional[dict]): Initial custom dimensions

        Returns:
        -------
            _ContextualLogger: Configured logger with context support

        """
        logger = logging.getLogger(name)

        # Imported lazily: config must not depend on logging
        from m365crawler.core.config import settings

        logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
        logger.propagate = False

        if getattr(logger, "_m365crawler_configured", False):
            return _ContextualLogger(logger, prefix, dimensions)

        logger.handlers.clear()
        stream_handler = logging.StreamHandler(sys.stdout)
        if settings.LOCAL_DEVELOPMENT:
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        else:
            formatter = JSONFormatter()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

        logger._m365crawler_configured = True

        return _ContextualLogger(logger, prefix, dimensions)


# Default logger instance
logger = LoggerConfigurator.configure_logger(__name__)
