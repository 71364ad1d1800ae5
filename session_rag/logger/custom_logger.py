import logging
import os

import structlog
from rich.console import Console
from rich.logging import RichHandler

# -------------------------------------------------
# Console with proper color handling
# -------------------------------------------------
console = Console(force_terminal=True, color_system="truecolor")

# -------------------------------------------------
# Silence noisy libraries
# -------------------------------------------------
_NOISY_LOGGERS = {
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "urllib3": logging.WARNING,
    "faiss": logging.WARNING,
    "faiss.loader": logging.WARNING,
    "google": logging.WARNING,
}


class CustomLogger:
    """
    structlog logger rendered through a Rich console handler.

    Call sites may use either %-style positional args
    (``log.info("Chunks embedded | count=%d", n)``) or key/value fields
    (``log.info("Chunks embedded", count=n)``).
    """

    _configured = False

    def __init__(self, level: str | None = None):
        self.level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
        if not CustomLogger._configured:
            self._configure()
            CustomLogger._configured = True

    def _configure(self):
        handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            show_time=True,
            show_level=True,
            show_path=False,
            log_time_format="%H:%M:%S.%f",
        )
        handler.setFormatter(logging.Formatter("%(message)s"))

        root = logging.getLogger()
        root.handlers = [handler]
        root.setLevel(self.level)

        for name, lvl in _NOISY_LOGGERS.items():
            logging.getLogger(name).setLevel(lvl)

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.dev.ConsoleRenderer(colors=False, pad_event_to=0),
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    def get_logger(self, name: str = "session_rag"):
        return structlog.get_logger(name)
