import logging
import sys

# VU tasks are named "<scenario>-vu-<n>", so each line shows which VU wrote it
LOG_FORMAT = "%(asctime)s %(levelname)s [%(taskName)s] %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# per-request chatter from the HTTP client stack
QUIET_LOGGERS = ("httpx", "httpcore")


class TaskNameFilter(logging.Filter):
    """Labels records logged outside any asyncio task as ``main``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "taskName", None):
            record.taskName = "main"
        return True


def configure_logging(log_level: str) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(TaskNameFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logging.basicConfig(level=log_level.upper(), handlers=[handler])
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
