"""Encoders for exported observability data."""

from vigilpy.core.encoding.ndjson import encode_ndjson
from vigilpy.core.encoding.traces import (
    ExportFormat,
    export_jaeger,
    export_opentelemetry,
    export_spans,
    export_zipkin,
)

__all__ = [
    "ExportFormat",
    "encode_ndjson",
    "export_jaeger",
    "export_opentelemetry",
    "export_spans",
    "export_zipkin",
]
