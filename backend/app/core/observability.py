"""
OpenTelemetry Observability Module.
Provides distributed tracing for SafeCircle services.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

logger = logging.getLogger(__name__)


def setup_tracing(app=None, enabled: bool = True):
    """Initializes OpenTelemetry tracing."""
    if not enabled:
        logger.info("Tracing disabled by configuration.")
        return

    # Spans go to console for now (production uses an OTLP exporter)
    provider = TracerProvider()
    processor = BatchSpanProcessor(ConsoleSpanExporter())
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)

    if app:
        FastAPIInstrumentor.instrument_app(app)
        logger.info("OpenTelemetry FastAPI instrumentation enabled.")


def get_tracer(name: str):
    """Returns a tracer instance."""
    return trace.get_tracer(name)
