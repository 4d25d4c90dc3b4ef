import sys
import logging
import structlog
import uuid
import contextvars
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

# Context variable for the per-request correlation id
request_id_ctx = contextvars.ContextVar("request_id", default="startup")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def add_otel_trace_info(logger, method_name, event_dict):
    """
    A structlog processor to add OpenTelemetry trace and span IDs to logs.
    """
    span = trace.get_current_span()
    if span != trace.INVALID_SPAN:
        event_dict['trace_id'] = f"0x{span.get_span_context().trace_id:032x}"
        event_dict['span_id'] = f"0x{span.get_span_context().span_id:016x}"
    return event_dict


def add_request_id(logger, method_name, event_dict):
    event_dict.setdefault("request_id", request_id_ctx.get())
    return event_dict


def configure_logging(level="info"):
    """
    Configures structured logging with OpenTelemetry integration.

    Logs always go to stderr; the console renderer is used on a TTY and JSON
    otherwise.
    """
    otel_endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")
    if otel_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.trace.export import BatchSpanProcessor

        resource = Resource(attributes={"service.name": "mcp-server-notebook"})
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otel_endpoint)))
        trace.set_tracer_provider(provider)
        print(f"[OTEL] Tracing enabled. Exporting to {otel_endpoint}", file=sys.stderr)

    numeric_level = _LEVELS.get(str(level).lower(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        add_otel_trace_info,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if sys.stderr.isatty():
        processors = shared_processors + [structlog.dev.ConsoleRenderer()]
    else:
        processors = shared_processors + [structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Route stdlib logging (uvicorn, jupyter_client) to stderr as well
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)

    return structlog.get_logger()


def get_logger(name=None):
    return structlog.get_logger(name)


def get_tracer(name=None):
    """Returns an OpenTelemetry tracer instance."""
    return trace.get_tracer(name if name else __name__)


def generate_request_id():
    req_id = str(uuid.uuid4())
    request_id_ctx.set(req_id)
    return req_id

