"""Observability utilities: Langfuse traces and OpenTelemetry spans.

- Trace: thin wrapper over a Langfuse trace. Inert when LANGFUSE_HOST / keys are unset.
- span: context manager opening an OpenTelemetry span with attributes. A console
  exporter is attached only when OTEL_CONSOLE_EXPORT is set; otherwise spans go to
  whatever tracer provider the deployment installed.

Telemetry failures are logged and never fail a request.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from langfuse import Langfuse
from langfuse.client import StatefulTraceClient
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

from concierge.config import settings

logger = logging.getLogger(__name__)

_langfuse_client: Optional[Langfuse] = None
_otel_inited: bool = False


def _init_langfuse() -> Optional[Langfuse]:
    """Create the Langfuse client once, if host and keys are configured."""
    global _langfuse_client
    if _langfuse_client is not None:
        return _langfuse_client
    if settings.LANGFUSE_HOST and settings.LANGFUSE_PUBLIC_KEY and settings.LANGFUSE_SECRET_KEY:
        _langfuse_client = Langfuse(
            host=settings.LANGFUSE_HOST,
            public_key=settings.LANGFUSE_PUBLIC_KEY,
            secret_key=settings.LANGFUSE_SECRET_KEY,
        )
        return _langfuse_client
    return None


def _init_otel() -> None:
    global _otel_inited
    if _otel_inited:
        return
    _otel_inited = True
    if settings.OTEL_CONSOLE_EXPORT:
        tp = TracerProvider()
        tp.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
        trace.set_tracer_provider(tp)


@contextmanager
def span(name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[None]:
    """Open an OpenTelemetry span around a block.

    Args:
        name: Span name.
        attributes: Primitive attribute values; lists are joined into strings.
    """
    _init_otel()
    tracer = trace.get_tracer(__name__)
    with tracer.start_as_current_span(name) as otel_span:
        for k, v in (attributes or {}).items():
            if isinstance(v, (list, tuple)):
                v = ",".join(str(x) for x in v)
            if v is not None:
                otel_span.set_attribute(k, v)
        yield


class Trace:
    """Request-level Langfuse trace; every method is a no-op when Langfuse is off."""

    def __init__(self, name: str, input: Optional[Dict[str, Any]] = None):
        self.name = name
        self.enabled = False
        self._trace: Optional[StatefulTraceClient] = None
        client = _init_langfuse()
        if client is not None:
            try:
                self._trace = client.trace(name=name, input=input or {})
                self.enabled = True
            except Exception as e:
                logger.warning("Langfuse trace creation failed: %s", e)

    def event(self, name: str, data: Optional[Dict[str, Any]] = None) -> None:
        if not self.enabled or self._trace is None:
            return
        try:
            self._trace.event(name=name, input=data or {})
        except Exception as e:
            logger.debug("Langfuse event %s failed: %s", name, e)

    def generation(self, name: str, prompt: str, output: str, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Record a model generation (input prompt, output text) on the trace."""
        if not self.enabled or self._trace is None:
            return
        try:
            self._trace.generation(
                name=name,
                input=prompt,
                output=output,
                metadata=metadata or {},
                model=settings.OPENAI_MODEL,
            )
        except Exception as e:
            logger.debug("Langfuse generation %s failed: %s", name, e)

    def end(self, output: Optional[Dict[str, Any]] = None) -> None:
        if not self.enabled or self._trace is None:
            return
        try:
            self._trace.update(output=output or {})
        except Exception as e:
            logger.debug("Langfuse trace update failed: %s", e)
