"""Tracing helpers built on the OpenTelemetry API.

Only the API package is required. Without an SDK and exporter configured by
the embedding application every span is a no-op, so instrumented code pays
almost nothing when tracing is off.

Data guidance for span attributes:
- NEVER record card titles, descriptions or element text
- Prefer counters (delivered, degraded, total) and element kinds
- Resource locators may carry signed query strings; record the host only
"""

from __future__ import annotations

from urllib.parse import urlparse

from opentelemetry import trace


SESSION_SPAN = "cardstream.session"
RESOLVE_SPAN = "cardstream.resolve"


def get_tracer(name: str) -> trace.Tracer:
    """Get an OpenTelemetry tracer for custom instrumentation.

    Example:
        tracer = get_tracer(__name__)

        with tracer.start_as_current_span(SESSION_SPAN) as span:
            span.set_attribute("elements.delivered", 3)
    """
    return trace.get_tracer(name)


def locator_host(locator: str) -> str:
    """Return only the host part of a locator for safe span attributes."""
    return urlparse(locator).hostname or "unknown"
