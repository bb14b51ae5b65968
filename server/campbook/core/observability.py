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

SERVICE_NAME = "campbook-api"
SERVICE_VERSION = "1.0.0"

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

# Booking lifecycle metrics
HOLDS_CREATED = Counter(
    'booking_holds_created_total',
    'Total booking holds created',
    registry=REGISTRY
)

HOLD_CONFLICTS = Counter(
    'booking_hold_conflicts_total',
    'Hold requests rejected because the date range was occupied',
    registry=REGISTRY
)

HOLDS_REAPED = Counter(
    'booking_holds_reaped_total',
    'Expired holds transitioned to cancelled by the reaper',
    registry=REGISTRY
)

BOOKING_TRANSITIONS = Counter(
    'booking_transitions_total',
    'Booking state transitions applied',
    ['from_status', 'to_status', 'event'],
    registry=REGISTRY
)

# Payment metrics
RECONCILIATIONS = Counter(
    'payment_reconciliations_total',
    'Payment reconciliation outcomes',
    ['source', 'result'],
    registry=REGISTRY
)

PROVIDER_CALLS = Counter(
    'payment_provider_calls_total',
    'Payment provider calls by operation and outcome',
    ['operation', 'outcome'],
    registry=REGISTRY
)

CIRCUIT_STATE = Gauge(
    'payment_provider_circuit_state',
    'Circuit breaker state (0=closed, 1=open, 2=half_open)',
    ['name'],
    registry=REGISTRY
)

REFUNDS_PENDING = Gauge(
    'booking_refunds_pending',
    'Cancelled bookings waiting for a provider refund',
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
            # request_id is bound per request by RequestIDMiddleware
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
        "service.version": SERVICE_VERSION,
        "environment": settings.environment,
    })


def setup_tracing():
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_resource())

    if settings.otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint))
        )

    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def setup_metrics():
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=settings.otlp_endpoint),
            export_interval_millis=60000,
        )
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine):
    """Instrument the async engine's underlying sync engine."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_hold_created():
        HOLDS_CREATED.inc()

    @staticmethod
    def record_hold_conflict():
        HOLD_CONFLICTS.inc()

    @staticmethod
    def record_holds_reaped(count: int):
        HOLDS_REAPED.inc(count)

    @staticmethod
    def record_transition(from_status: str, to_status: str, event: str):
        """Record one applied booking state transition."""
        BOOKING_TRANSITIONS.labels(
            from_status=from_status, to_status=to_status, event=event
        ).inc()

    @staticmethod
    def record_reconciliation(source: str, result: str):
        RECONCILIATIONS.labels(source=source, result=result).inc()

    @staticmethod
    def record_provider_call(operation: str, outcome: str):
        PROVIDER_CALLS.labels(operation=operation, outcome=outcome).inc()

    @staticmethod
    def set_circuit_state(name: str, value: int):
        CIRCUIT_STATE.labels(name=name).set(value)

    @staticmethod
    def set_refunds_pending(count: int):
        REFUNDS_PENDING.set(count)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
