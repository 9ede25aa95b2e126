"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from prometheus_client import Counter, Histogram, generate_latest, CollectorRegistry
import structlog

from .config import settings

SERVICE_NAME = "waitlist-engine"

# Prometheus metrics
REGISTRY = CollectorRegistry()

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

# Waitlist lifecycle metrics
ENTRIES_ENROLLED = Counter(
    'waitlist_entries_enrolled_total',
    'Total waitlist enrollments',
    registry=REGISTRY
)

ENTRIES_PROMOTED = Counter(
    'waitlist_entries_promoted_total',
    'Total waiting entries promoted to notified',
    ['trigger'],
    registry=REGISTRY
)

ENTRIES_CONFIRMED = Counter(
    'waitlist_entries_confirmed_total',
    'Total notified entries confirmed',
    registry=REGISTRY
)

ENTRIES_EXPIRED = Counter(
    'waitlist_entries_expired_total',
    'Total entries expired',
    ['window'],
    registry=REGISTRY
)

ENTRIES_CANCELLED = Counter(
    'waitlist_entries_cancelled_total',
    'Total entries cancelled',
    ['from_status'],
    registry=REGISTRY
)

DISPATCH_FAILURES = Counter(
    'waitlist_dispatch_failures_total',
    'Notifications that could not be delivered',
    ['kind'],
    registry=REGISTRY
)

SWEEP_RUNS = Counter(
    'waitlist_sweep_runs_total',
    'Expiry sweeps executed',
    registry=REGISTRY
)

SWEEP_DURATION = Histogram(
    'waitlist_sweep_duration_seconds',
    'Expiry sweep duration in seconds',
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


def setup_tracing(otlp_endpoint: str | None = None):
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_resource())
    if otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def setup_metrics(otlp_endpoint: str | None = None):
    """Setup OpenTelemetry metrics."""
    if otlp_endpoint:
        reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=otlp_endpoint),
            export_interval_millis=60000,
        )
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))
    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine):
    """Instrument the SQLAlchemy engine with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


class MetricsCollector:
    """Collector for waitlist lifecycle metrics."""

    @staticmethod
    def record_enrolled():
        ENTRIES_ENROLLED.inc()

    @staticmethod
    def record_promoted(trigger: str):
        """Record a waiting -> notified promotion ("slot_freed" or "cascade")."""
        ENTRIES_PROMOTED.labels(trigger=trigger).inc()

    @staticmethod
    def record_confirmed():
        ENTRIES_CONFIRMED.inc()

    @staticmethod
    def record_expired(window: str):
        """Record an expiry; window is "patience" or "confirmation"."""
        ENTRIES_EXPIRED.labels(window=window).inc()

    @staticmethod
    def record_cancelled(from_status: str):
        ENTRIES_CANCELLED.labels(from_status=from_status).inc()

    @staticmethod
    def record_dispatch_failure(kind: str):
        DISPATCH_FAILURES.labels(kind=kind).inc()

    @staticmethod
    def record_sweep(duration_seconds: float):
        SWEEP_RUNS.inc()
        SWEEP_DURATION.observe(duration_seconds)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
