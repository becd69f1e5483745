"""OpenTelemetry + Prometheus fallback wiring for the observatory service."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from observatory import config

logger = logging.getLogger("observatory.observability")


_initialized = False
_enabled = False
_tracer: Any | None = None
_trace_provider: Any | None = None
_meter_provider: Any | None = None
_fastapi_instrumentor: Any | None = None

_collection_counter: Any | None = None
_collection_latency_hist: Any | None = None
_sessions_hist: Any | None = None
_parser_failure_counter: Any | None = None
_tokens_gauge: Any | None = None
_cost_gauge: Any | None = None

_prom_enabled = False
_prom_collection_counter: Any | None = None
_prom_collection_latency_hist: Any | None = None
_prom_sessions_hist: Any | None = None
_prom_parser_failure_counter: Any | None = None
_prom_tokens_gauge: Any | None = None
_prom_cost_gauge: Any | None = None


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip()
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/"):
        endpoint = endpoint[:-1]
    if endpoint.endswith("/v1"):
        return f"{endpoint}{signal_path[3:]}"
    return f"{endpoint}{signal_path}"


def _prom_labels(**values: str) -> dict[str, str]:
    return {key: (value or "").strip() or "unknown" for key, value in values.items()}


def initialize(app: FastAPI | None = None) -> None:
    global _initialized, _enabled, _tracer, _trace_provider, _meter_provider, _fastapi_instrumentor
    global _collection_counter, _collection_latency_hist, _sessions_hist, _parser_failure_counter
    global _tokens_gauge, _cost_gauge
    global _prom_enabled
    global _prom_collection_counter, _prom_collection_latency_hist, _prom_sessions_hist
    global _prom_parser_failure_counter, _prom_tokens_gauge, _prom_cost_gauge

    if _initialized:
        if _enabled and app and _fastapi_instrumentor:
            _fastapi_instrumentor.instrument_app(app)
        return

    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (OBSERVATORY_OTEL_ENABLED=false)")
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
    service_name = config.OTEL_SERVICE_NAME or "agent-observatory"

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "observatory",
        }
    )

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=traces_endpoint or None)))
    trace.set_tracer_provider(trace_provider)
    tracer = trace.get_tracer("observatory.collector")

    metric_reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=metrics_endpoint or None)
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[metric_reader])
    metrics.set_meter_provider(meter_provider)
    meter = metrics.get_meter("observatory.collector")

    _collection_counter = meter.create_counter(
        "observatory_collections_total",
        unit="1",
        description="Count of metrics collection runs",
    )
    _collection_latency_hist = meter.create_histogram(
        "observatory_collection_latency_ms",
        unit="ms",
        description="Wall-clock latency of a full collection run",
    )
    _sessions_hist = meter.create_histogram(
        "observatory_collection_sessions",
        unit="1",
        description="Transcript sessions scanned per collection run",
    )
    _parser_failure_counter = meter.create_counter(
        "observatory_parser_failures_total",
        unit="1",
        description="Transcript files skipped after a parse failure",
    )
    _tokens_gauge = meter.create_gauge(
        "observatory_snapshot_tokens",
        unit="1",
        description="Token totals by agent and model in the latest collection snapshot",
    )
    _cost_gauge = meter.create_gauge(
        "observatory_snapshot_cost_usd",
        unit="usd",
        description="Cost totals by agent and model in the latest collection snapshot",
    )

    _trace_provider = trace_provider
    _meter_provider = meter_provider
    _tracer = tracer
    _fastapi_instrumentor = FastAPIInstrumentor()
    _enabled = True

    if app:
        _fastapi_instrumentor.instrument_app(app)

    if config.PROM_PORT > 0:
        try:
            from prometheus_client import Counter, Gauge, Histogram, start_http_server

            start_http_server(config.PROM_PORT)
            _prom_enabled = True
            _prom_collection_counter = Counter(
                "observatory_collections_total",
                "Count of metrics collection runs",
                ["result"],
            )
            _prom_collection_latency_hist = Histogram(
                "observatory_collection_latency_ms",
                "Wall-clock latency of a full collection run",
                ["result"],
            )
            _prom_sessions_hist = Histogram(
                "observatory_collection_sessions",
                "Transcript sessions scanned per collection run",
                ["result"],
            )
            _prom_parser_failure_counter = Counter(
                "observatory_parser_failures_total",
                "Transcript files skipped after a parse failure",
                ["parser", "agent"],
            )
            _prom_tokens_gauge = Gauge(
                "observatory_snapshot_tokens",
                "Token totals by agent and model in the latest collection snapshot",
                ["agent", "model", "direction"],
            )
            _prom_cost_gauge = Gauge(
                "observatory_snapshot_cost_usd",
                "Cost totals by agent and model in the latest collection snapshot",
                ["agent", "model"],
            )
            logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Prometheus fallback not started: %s", exc)
            _prom_enabled = False

    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        service_name,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    try:
        if app and _fastapi_instrumentor:
            _fastapi_instrumentor.uninstrument_app(app)
    except Exception as exc:  # noqa: BLE001
        logger.debug("FastAPI uninstrument failed: %s", exc)
    try:
        if _meter_provider is not None:
            _meter_provider.shutdown()
    except Exception as exc:  # noqa: BLE001
        logger.debug("Meter provider shutdown failed: %s", exc)
    try:
        if _trace_provider is not None:
            _trace_provider.shutdown()
    except Exception as exc:  # noqa: BLE001
        logger.debug("Trace provider shutdown failed: %s", exc)
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


def record_collection(result: str, duration_ms: float, *, sessions: int = 0) -> None:
    labels = {"result": result or "unknown"}
    safe_duration = max(0.0, float(duration_ms))
    safe_sessions = max(0, int(sessions))
    if _enabled and _collection_counter is not None:
        _collection_counter.add(1, labels)
    if _enabled and _collection_latency_hist is not None:
        _collection_latency_hist.record(safe_duration, labels)
    if _enabled and _sessions_hist is not None:
        _sessions_hist.record(safe_sessions, labels)
    if _prom_enabled and _prom_collection_counter is not None:
        _prom_collection_counter.labels(**_prom_labels(result=result)).inc()
    if _prom_enabled and _prom_collection_latency_hist is not None:
        _prom_collection_latency_hist.labels(**_prom_labels(result=result)).observe(safe_duration)
    if _prom_enabled and _prom_sessions_hist is not None:
        _prom_sessions_hist.labels(**_prom_labels(result=result)).observe(safe_sessions)


def record_parser_failure(parser: str, *, agent_id: str) -> None:
    labels = {
        "parser": parser or "unknown",
        "agent_id": agent_id or "unknown",
    }
    if _enabled and _parser_failure_counter is not None:
        _parser_failure_counter.add(1, labels)
    if _prom_enabled and _prom_parser_failure_counter is not None:
        _prom_parser_failure_counter.labels(**_prom_labels(parser=parser, agent=agent_id)).inc()


def record_usage_snapshot(
    *,
    agent_id: str,
    model: str,
    token_input: int,
    token_output: int,
    cost_usd: float,
) -> None:
    """Set the snapshot gauges for one agent/model pair to the latest collected totals."""
    labels_base = {
        "model": (model or "unknown").strip() or "unknown",
        "agent_id": (agent_id or "unknown").strip() or "unknown",
    }
    in_tokens = max(0, int(token_input))
    out_tokens = max(0, int(token_output))
    safe_cost = max(0.0, float(cost_usd))
    if _enabled and _tokens_gauge is not None:
        _tokens_gauge.set(in_tokens, {**labels_base, "direction": "input"})
        _tokens_gauge.set(out_tokens, {**labels_base, "direction": "output"})
    if _enabled and _cost_gauge is not None:
        _cost_gauge.set(safe_cost, labels_base)

    if _prom_enabled and _prom_tokens_gauge is not None:
        prom_base = _prom_labels(agent=agent_id, model=model)
        _prom_tokens_gauge.labels(**{**prom_base, "direction": "input"}).set(in_tokens)
        _prom_tokens_gauge.labels(**{**prom_base, "direction": "output"}).set(out_tokens)
    if _prom_enabled and _prom_cost_gauge is not None:
        _prom_cost_gauge.labels(**_prom_labels(agent=agent_id, model=model)).set(safe_cost)
