"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .config import settings

SERVICE_NAME = "booking-engine"

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Business metrics
RESERVATIONS = Counter(
    'reservations_total',
    'Reservation attempts by resource kind and outcome',
    ['kind', 'outcome'],
    registry=REGISTRY
)

RELEASES = Counter(
    'reservation_releases_total',
    'Units returned to inventory by reason',
    ['kind', 'reason'],
    registry=REGISTRY
)

TRANSFERS = Counter(
    'booking_transfers_total',
    'Bookings moved between resources',
    ['from_kind', 'to_kind'],
    registry=REGISTRY
)

BOOKING_TRANSITIONS = Counter(
    'booking_status_transitions_total',
    'Booking status transitions',
    ['target'],
    registry=REGISTRY
)

RESOURCE_TRANSITIONS = Counter(
    'resource_status_transitions_total',
    'Resource status transitions by kind, target and trigger',
    ['kind', 'target', 'trigger'],
    registry=REGISTRY
)

TRANSACTION_RETRIES = Counter(
    'ledger_transaction_retries_total',
    'Ledger transactions retried after lock contention',
    ['operation'],
    registry=REGISTRY
)

SCHEDULER_RUNS = Counter(
    'scheduler_runs_total',
    'Completed scheduler ticks',
    ['scheduler'],
    registry=REGISTRY
)

SCHEDULER_ITEM_FAILURES = Counter(
    'scheduler_item_failures_total',
    'Items a scheduler gave up on for the current tick',
    ['scheduler'],
    registry=REGISTRY
)

SCHEDULER_LAST_RUN_ITEMS = Gauge(
    'scheduler_last_run_items',
    'Items changed by the most recent scheduler tick',
    ['scheduler'],
    registry=REGISTRY
)

BULK_DELETE_ROWS = Counter(
    'bulk_delete_rows_total',
    'Rows handled by bulk deletion by kind and outcome',
    ['kind', 'outcome'],
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    structlog.configure(
        processors=[
            # request_id is bound by the request middleware
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": "1.0.0",
        "environment": settings.environment,
    })


def setup_tracing():
    """Setup OpenTelemetry tracing."""
    trace.set_tracer_provider(TracerProvider(resource=_resource()))

    if settings.otlp_endpoint:
        otlp_exporter = OTLPSpanExporter(endpoint=settings.otlp_endpoint)
        trace.get_tracer_provider().add_span_processor(BatchSpanProcessor(otlp_exporter))

    return trace.get_tracer(__name__)


def setup_metrics():
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        otlp_exporter = OTLPMetricExporter(endpoint=settings.otlp_endpoint)
        reader = PeriodicExportingMetricReader(exporter=otlp_exporter, export_interval_millis=60000)
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine):
    """Instrument an SQLAlchemy engine with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_reservation(kind: str, outcome: str):
        RESERVATIONS.labels(kind=kind, outcome=outcome).inc()

    @staticmethod
    def record_release(kind: str, reason: str):
        RELEASES.labels(kind=kind, reason=reason).inc()

    @staticmethod
    def record_transfer(from_kind: str, to_kind: str):
        TRANSFERS.labels(from_kind=from_kind, to_kind=to_kind).inc()

    @staticmethod
    def record_booking_transition(target: str):
        BOOKING_TRANSITIONS.labels(target=target).inc()

    @staticmethod
    def record_resource_transition(kind: str, target: str, trigger: str):
        RESOURCE_TRANSITIONS.labels(kind=kind, target=target, trigger=trigger).inc()

    @staticmethod
    def record_transaction_retry(operation: str):
        TRANSACTION_RETRIES.labels(operation=operation).inc()

    @staticmethod
    def record_scheduler_run(scheduler: str, changed: int, failed: int):
        SCHEDULER_RUNS.labels(scheduler=scheduler).inc()
        SCHEDULER_LAST_RUN_ITEMS.labels(scheduler=scheduler).set(changed)
        if failed:
            SCHEDULER_ITEM_FAILURES.labels(scheduler=scheduler).inc(failed)

    @staticmethod
    def record_bulk_delete(kind: str, deleted: int, skipped: int):
        BULK_DELETE_ROWS.labels(kind=kind, outcome="deleted").inc(deleted)
        BULK_DELETE_ROWS.labels(kind=kind, outcome="skipped").inc(skipped)

    @staticmethod
    def record_request(method: str, endpoint: str, status_code: int, duration: float):
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()


class StructuredLogger:
    """Structured logger with business context."""

    def __init__(self, name_or_logger):
        if isinstance(name_or_logger, str):
            self.logger = structlog.get_logger(name_or_logger)
        else:
            self.logger = name_or_logger

    def info(self, message: str, **kwargs):
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        self.logger.error(message, **kwargs)

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, **kwargs)

    def with_context(self, **kwargs):
        """Add context to logger."""
        return StructuredLogger(self.logger.bind(**kwargs))


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name)
