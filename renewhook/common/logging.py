"""Structured JSON logging with request/delivery context fields."""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from renewhook.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
tenant_id_ctx: ContextVar[str] = ContextVar("tenant_id", default="")
subject_id_ctx: ContextVar[str] = ContextVar("subject_id", default="")
event_id_ctx: ContextVar[str] = ContextVar("event_id", default="")


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.tenant_id = tenant_id_ctx.get()
        record.subject_id = subject_id_ctx.get()
        record.event_id = event_id_ctx.get()
        return True


def bind_delivery_context(tenant_id: str, subject_id: str, event_id: str = "") -> None:
    """Set correlation fields for the current task's log records."""

    tenant_id_ctx.set(tenant_id)
    subject_id_ctx.set(subject_id)
    event_id_ctx.set(event_id)


def configure_logging() -> None:
    """Configure root logger once per service process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    formatter = JsonFormatter(
        "%(asctime)s %(levelname)s %(service_name)s %(trace_id)s "
        "%(tenant_id)s %(subject_id)s %(event_id)s %(message)s"
    )
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)


logger = logging.getLogger("renewhook")
