"""Trace exporters for OpenTelemetry, Jaeger and Zipkin shaped records.

Each exporter is a pure translation of the same spans. Span times are
stored in milliseconds and exported in microseconds.
"""

from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

from vigilpy.core.models import SpanStatus, TraceSpan

US_PER_MS = 1000


class ExportFormat(str, Enum):
    OPENTELEMETRY = "opentelemetry"
    JAEGER = "jaeger"
    ZIPKIN = "zipkin"


def _micros(value: float | None) -> float | None:
    return value * US_PER_MS if value is not None else None


def export_opentelemetry(
    spans: Iterable[TraceSpan], service_name: str
) -> list[dict[str, Any]]:
    records = []
    for span in spans:
        records.append(
            {
                "traceId": span.trace_id,
                "spanId": span.span_id,
                "parentSpanId": span.parent_span_id,
                "operationName": span.operation,
                "startTime": _micros(span.start_time),
                "finishTime": _micros(span.end_time),
                "duration": _micros(span.duration),
                "tags": dict(span.tags),
                "logs": (
                    [
                        {
                            "timestamp": _micros(span.end_time),
                            "fields": {"error": span.error},
                        }
                    ]
                    if span.error
                    else []
                ),
                "status": {
                    "code": 0 if span.status is SpanStatus.SUCCESS else 1,
                    "message": span.error or "",
                },
                "resource": {"service.name": service_name},
            }
        )
    return records


def _jaeger_tag(key: str, value: Any) -> dict[str, str]:
    if isinstance(value, bool):
        kind = "bool"
        text = "true" if value else "false"
    elif isinstance(value, (int, float)):
        kind = "number"
        text = str(value)
    else:
        kind = "string"
        text = str(value)
    return {"key": key, "type": kind, "value": text}


def export_jaeger(spans: Iterable[TraceSpan], service_name: str) -> list[dict[str, Any]]:
    return [
        {
            "traceID": span.trace_id,
            "spanID": span.span_id,
            "parentSpanID": span.parent_span_id,
            "operationName": span.operation,
            "startTime": _micros(span.start_time),
            "duration": _micros(span.duration) or 0,
            "tags": [_jaeger_tag(key, value) for key, value in span.tags.items()],
            "process": {"serviceName": service_name, "tags": []},
        }
        for span in spans
    ]


def export_zipkin(spans: Iterable[TraceSpan], service_name: str) -> list[dict[str, Any]]:
    records = []
    for span in spans:
        annotations = []
        if span.error and span.end_time is not None:
            annotations.append({"timestamp": _micros(span.end_time), "value": "error"})
        records.append(
            {
                "traceId": span.trace_id,
                "id": span.span_id,
                "parentId": span.parent_span_id,
                "name": span.operation,
                "timestamp": _micros(span.start_time),
                "duration": _micros(span.duration),
                "kind": "SERVER",
                "localEndpoint": {"serviceName": service_name},
                "tags": {key: str(value) for key, value in span.tags.items()},
                "annotations": annotations,
            }
        )
    return records


_EXPORTERS: dict[ExportFormat, Callable[[Iterable[TraceSpan], str], list[dict[str, Any]]]] = {
    ExportFormat.OPENTELEMETRY: export_opentelemetry,
    ExportFormat.JAEGER: export_jaeger,
    ExportFormat.ZIPKIN: export_zipkin,
}


def export_spans(
    spans: Iterable[TraceSpan],
    format: ExportFormat | str = ExportFormat.OPENTELEMETRY,
    service_name: str = "",
) -> list[dict[str, Any]]:
    """Translate spans into the records of an external tracing system.

    Args:
        spans: Spans to export, in the order they should appear.
        format: opentelemetry, jaeger or zipkin.
        service_name: Reported as the emitting service.

    Returns:
        One dict per span.

    Raises:
        ValueError: If ``format`` is not a supported export format.
    """
    return _EXPORTERS[ExportFormat(format)](spans, service_name)
