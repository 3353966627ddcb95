"""OpenTelemetry tracing and metrics setup."""

from __future__ import annotations

import logging

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.semconv.resource import ResourceAttributes
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from app.core.config import settings

logger = logging.getLogger(__name__)


def _parse_headers(value: str) -> dict[str, str]:
    headers: dict[str, str] = {}
    if not value:
        return headers
    for item in value.split(","):
        item = item.strip()
        if not item or "=" not in item:
            continue
        key, val = item.split("=", 1)
        headers[key.strip()] = val.strip()
    return headers


def _signal_endpoint(base: str, signal: str) -> str:
    """OTLP/HTTP collectors take one path per signal (``/v1/traces``, ``/v1/metrics``)."""
    base = base.rstrip("/")
    for suffix in ("/v1/traces", "/v1/metrics"):
        if base.endswith(suffix):
            base = base[: -len(suffix)]
    return f"{base}/v1/{signal}"


def configure_telemetry(app, engine) -> bool:
    """
    Initialize OpenTelemetry tracing and metrics when enabled.

    Sync and enrichment counters are created against the global meter
    provider, so they become live here and stay no-ops otherwise.
    """
    if not settings.OTEL_ENABLED or not settings.OTEL_EXPORTER_OTLP_ENDPOINT:
        return False

    try:
        resource = Resource.create(
            {
                ResourceAttributes.SERVICE_NAME: settings.OTEL_SERVICE_NAME or "license-dashboard-api",
                ResourceAttributes.DEPLOYMENT_ENVIRONMENT: settings.ENV,
            }
        )
        headers = _parse_headers(settings.OTEL_EXPORTER_OTLP_HEADERS)

        sampler = ParentBased(TraceIdRatioBased(settings.OTEL_SAMPLE_RATE))
        tracer_provider = TracerProvider(resource=resource, sampler=sampler)
        span_exporter = OTLPSpanExporter(
            endpoint=_signal_endpoint(settings.OTEL_EXPORTER_OTLP_ENDPOINT, "traces"),
            headers=headers,
        )
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
        trace.set_tracer_provider(tracer_provider)

        metric_reader = PeriodicExportingMetricReader(
            OTLPMetricExporter(
                endpoint=_signal_endpoint(settings.OTEL_EXPORTER_OTLP_ENDPOINT, "metrics"),
                headers=headers,
            )
        )
        metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[metric_reader]))

        FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider)
        SQLAlchemyInstrumentor().instrument(engine=engine)
        HTTPXClientInstrumentor().instrument()
        logger.info("OpenTelemetry tracing and metrics enabled")
        return True
    except Exception:
        logger.exception("Failed to initialize OpenTelemetry")
        return False
