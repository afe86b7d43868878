"""
Logging configuration.

WHY: Every module logs through ``logging.getLogger(__name__)``; this module
wires those loggers to a single stream handler once, at application startup,
so log lines carry the same format and the request id of the HTTP request
that produced them.
"""

import logging
import sys

from crm.core.config import settings
from crm.middleware.request_context import get_request_context


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [%(request_id)s] %(message)s"


class RequestIdFilter(logging.Filter):
    """
    Inject the current request id into every log record.

    WHY: Correlating log lines for a single request (payment insert, status
    update, totals recompute) is impossible without a shared identifier.
    Background jobs run outside a request and get "-".
    """

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_request_context()
        record.request_id = ctx.request_id if ctx else "-"
        return True


def configure_logging(level: str = None) -> None:
    """
    Configure the root logger.

    Safe to call more than once: the handler is only installed the first time.

    Args:
        level: Log level name; defaults to settings.LOG_LEVEL
    """
    root = logging.getLogger()
    root.setLevel((level or settings.LOG_LEVEL).upper())

    if any(getattr(h, "_crm_handler", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())
    handler._crm_handler = True
    root.addHandler(handler)

    # WHY: SQL echo is controlled by settings.DEBUG on the engine itself
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.INFO)
