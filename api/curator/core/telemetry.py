from __future__ import annotations

from dataclasses import dataclass
import logging
import os

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from curator.core.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"
UNTRACED_IDS = ("0" * 32, "0" * 16)

logger = logging.getLogger(__name__)
_httpx_instrumentor = HTTPXClientInstrumentor()
_inner_record_factory: object | None = None


@dataclass(slots=True)
class TelemetryRuntime:
    enabled: bool
    provider: TracerProvider | None


def current_trace_ids() -> tuple[str, str]:
    """Hex trace and span ids of the active span, zeroes outside a trace."""
    context = trace.get_current_span().get_span_context()
    if not context.is_valid:
        return UNTRACED_IDS
    return format(context.trace_id, "032x"), format(context.span_id, "016x")


def configure_api_logging() -> None:
    _install_log_correlation()
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def setup_api_telemetry(app: FastAPI, settings: Settings) -> TelemetryRuntime:
    if not settings.otel_enabled:
        return TelemetryRuntime(enabled=False, provider=None)
    if settings.otel_log_correlation:
        _install_log_correlation()

    resource = Resource.create({SERVICE_NAME: settings.otel_service_name, DEPLOYMENT_ENVIRONMENT: settings.environment})
    provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(settings.otel_trace_sample_ratio))
    if _export_configured(settings):
        # The exporter reads OTEL_EXPORTER_OTLP_* itself; settings only override the endpoint and headers.
        exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            headers=settings.otel_exporter_otlp_headers,
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        logger.info("otel export disabled service=%s reason=no_endpoint", settings.otel_service_name)

    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider, excluded_urls="healthz")
    _httpx_instrumentor.instrument(tracer_provider=provider)
    return TelemetryRuntime(enabled=True, provider=provider)


def shutdown_api_telemetry(app: FastAPI, runtime: TelemetryRuntime) -> None:
    if not runtime.enabled:
        return
    FastAPIInstrumentor.uninstrument_app(app)
    _httpx_instrumentor.uninstrument()
    if runtime.provider is not None:
        runtime.provider.force_flush()
        runtime.provider.shutdown()


def _export_configured(settings: Settings) -> bool:
    if settings.otel_exporter_otlp_endpoint:
        return True
    return bool(os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT") or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"))


def _install_log_correlation() -> None:
    global _inner_record_factory
    if _inner_record_factory is not None:
        return
    inner = logging.getLogRecordFactory()

    def correlated_record(*args: object, **kwargs: object) -> logging.LogRecord:
        record = inner(*args, **kwargs)
        record.trace_id, record.span_id = current_trace_ids()
        return record

    logging.setLogRecordFactory(correlated_record)
    _inner_record_factory = inner
