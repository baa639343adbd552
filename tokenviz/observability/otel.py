"""OpenTelemetry + Prometheus fallback wiring for the tokenviz backend."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from tokenviz import config

logger = logging.getLogger("tokenviz.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_ingestion_counter: Any | None = None
_ingestion_latency_hist: Any | None = None
_ingested_records_counter: Any | None = None
_parse_failure_counter: Any | None = None
_tokens_counter: Any | None = None

_prom_enabled = False
_prom_ingestion_counter: Any | None = None
_prom_ingestion_latency_hist: Any | None = None
_prom_ingested_records_counter: Any | None = None
_prom_parse_failure_counter: Any | None = None
_prom_tokens_counter: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    endpoint = endpoint.rstrip("/")
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _label(value: str | None) -> str:
    return (value or "").strip() or "unknown"


def _start_prometheus() -> None:
    global _prom_enabled
    global _prom_ingestion_counter, _prom_ingestion_latency_hist, _prom_ingested_records_counter
    global _prom_parse_failure_counter, _prom_tokens_counter

    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(config.PROM_PORT)
        _prom_ingestion_counter = Counter(
            "tokenviz_ingestion_events_total",
            "Count of usage log rescans",
            ["result"],
        )
        _prom_ingestion_latency_hist = Histogram(
            "tokenviz_ingestion_latency_ms",
            "Latency of usage log rescans",
            ["result"],
        )
        _prom_ingested_records_counter = Counter(
            "tokenviz_ingested_records_total",
            "Usage records written by successful rescans",
        )
        _prom_parse_failure_counter = Counter(
            "tokenviz_parse_failures_total",
            "Malformed transcript lines seen while scanning",
        )
        _prom_tokens_counter = Counter(
            "tokenviz_tokens_total",
            "Token totals by model and direction",
            ["model", "direction"],
        )
        _prom_enabled = True
        logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
    except (ImportError, OSError, ValueError) as exc:
        logger.warning("Prometheus fallback not started: %s", exc)
        _prom_enabled = False


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _ingestion_counter, _ingestion_latency_hist, _ingested_records_counter
    global _parse_failure_counter, _tokens_counter

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (TOKENVIZ_OTEL_ENABLED=false)")
        return

    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return

    traces_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    service_name = config.OTEL_SERVICE_NAME or "tokenviz-backend"

    resource = Resource.create({"service.name": service_name, "service.namespace": "tokenviz"})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metric_reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("tokenviz.backend")

    _ingestion_counter = meter.create_counter(
        "tokenviz_ingestion_events_total",
        unit="1",
        description="Count of usage log rescans",
    )
    _ingestion_latency_hist = meter.create_histogram(
        "tokenviz_ingestion_latency_ms",
        unit="ms",
        description="Latency of usage log rescans",
    )
    _ingested_records_counter = meter.create_counter(
        "tokenviz_ingested_records_total",
        unit="1",
        description="Usage records written by successful rescans",
    )
    _parse_failure_counter = meter.create_counter(
        "tokenviz_parse_failures_total",
        unit="1",
        description="Malformed transcript lines seen while scanning",
    )
    _tokens_counter = meter.create_counter(
        "tokenviz_tokens_total",
        unit="1",
        description="Token totals by model and direction",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = trace.get_tracer("tokenviz.backend")
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        _start_prometheus()

    logger.info("OpenTelemetry initialized (service=%s endpoint=%s)", service_name, config.OTEL_ENDPOINT)


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    if app and _fastapi_instrumentor:
        try:
            _fastapi_instrumentor.uninstrument_app(app)
        except Exception as exc:  # noqa: BLE001
            logger.debug("FastAPI uninstrument failed: %s", exc)
    for provider in (_meter_provider, _trace_provider):
        if provider is None:
            continue
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(key, value)
        yield span


def record_ingestion(result: str, duration_ms: float, records: int = 0) -> None:
    labels = {"result": _label(result)}
    duration = max(0.0, float(duration_ms))
    count = max(0, int(records))
    if _enabled and _ingestion_counter is not None:
        _ingestion_counter.add(1, labels)
    if _enabled and _ingestion_latency_hist is not None:
        _ingestion_latency_hist.record(duration, labels)
    if _enabled and _ingested_records_counter is not None and count > 0:
        _ingested_records_counter.add(count)
    if _prom_enabled and _prom_ingestion_counter is not None:
        _prom_ingestion_counter.labels(**labels).inc()
    if _prom_enabled and _prom_ingestion_latency_hist is not None:
        _prom_ingestion_latency_hist.labels(**labels).observe(duration)
    if _prom_enabled and _prom_ingested_records_counter is not None and count > 0:
        _prom_ingested_records_counter.inc(count)


def record_parse_failures(count: int) -> None:
    safe_count = max(0, int(count))
    if safe_count == 0:
        return
    if _enabled and _parse_failure_counter is not None:
        _parse_failure_counter.add(safe_count)
    if _prom_enabled and _prom_parse_failure_counter is not None:
        _prom_parse_failure_counter.inc(safe_count)


def record_token_totals(model: str, token_input: int, token_output: int) -> None:
    model_label = _label(model)
    in_tokens = max(0, int(token_input))
    out_tokens = max(0, int(token_output))
    if _enabled and _tokens_counter is not None:
        if in_tokens > 0:
            _tokens_counter.add(in_tokens, {"model": model_label, "direction": "input"})
        if out_tokens > 0:
            _tokens_counter.add(out_tokens, {"model": model_label, "direction": "output"})
    if _prom_enabled and _prom_tokens_counter is not None:
        if in_tokens > 0:
            _prom_tokens_counter.labels(model=model_label, direction="input").inc(in_tokens)
        if out_tokens > 0:
            _prom_tokens_counter.labels(model=model_label, direction="output").inc(out_tokens)
