"""Distributed tracing store: span registry, service map and export."""

import asyncio
import logging
import secrets
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from vigilpy.core.encoding.traces import ExportFormat, export_spans
from vigilpy.core.models import SpanContext, SpanStatus, TraceSpan
from vigilpy.core.ports import ClockPort

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TraceQuery:
    """Filters for ``TracingStore.search_traces``; every field is optional.

    Attributes:
        operation: Exact operation name.
        service: Value of the span's ``service`` tag.
        min_duration: Minimum duration in ms (unfinished spans count as 0).
        max_duration: Maximum duration in ms.
        status: Span status.
        tag: A single ``(key, value)`` equality.
        start: Earliest start time (epoch ms, inclusive).
        end: Latest start time (epoch ms, inclusive).
    """

    operation: str | None = None
    service: str | None = None
    min_duration: float | None = None
    max_duration: float | None = None
    status: SpanStatus | None = None
    tag: tuple[str, Any] | None = None
    start: float | None = None
    end: float | None = None

    def matches(self, span: TraceSpan) -> bool:
        duration = span.duration or 0.0
        if self.operation is not None and span.operation != self.operation:
            return False
        if self.service is not None and span.tags.get("service") != self.service:
            return False
        if self.min_duration is not None and duration < self.min_duration:
            return False
        if self.max_duration is not None and duration > self.max_duration:
            return False
        if self.status is not None and span.status != self.status:
            return False
        if self.tag is not None:
            key, value = self.tag
            if key not in span.tags or span.tags[key] != value:
                return False
        if self.start is not None and span.start_time < self.start:
            return False
        if self.end is not None and span.start_time > self.end:
            return False
        return True


@dataclass
class _DependencyTotals:
    calls: int = 0
    total_duration: float = 0.0
    errors: int = 0


@dataclass(frozen=True)
class ServiceDependency:
    service: str
    operation: str
    calls: int
    avg_duration: float
    error_rate: float


@dataclass(frozen=True)
class OperationStats:
    count: int
    avg_duration: float
    error_rate: float


@dataclass(frozen=True)
class TracingStats:
    """Summary of retained traces.

    Durations are in ms; error rates are percentages of finished spans.
    """

    total_traces: int
    active_spans: int
    avg_duration: float
    error_rate: float
    operations: dict[str, OperationStats] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "TracingStats":
        return cls(total_traces=0, active_spans=0, avg_duration=0.0, error_rate=0.0)


class TracingStore:
    """Registry of spans grouped into traces.

    Traces are kept in insertion order; starting a new trace beyond
    ``max_traces`` evicts the oldest ones.

    Args:
        clock: Time source (seconds); spans store epoch milliseconds.
        service_name: Default ``service`` tag and exporter service name.
        max_traces: Number of traces retained.
    """

    def __init__(
        self,
        clock: ClockPort,
        service_name: str = "health-ai-backend",
        max_traces: int = 1000,
    ) -> None:
        self._clock = clock
        self.service_name = service_name
        self._max_traces = max_traces
        self._traces: dict[str, list[TraceSpan]] = {}
        self._active: dict[str, TraceSpan] = {}
        self._dependencies: dict[tuple[str, str], _DependencyTotals] = {}

    def _now_ms(self) -> float:
        return self._clock.time() * 1000

    def start_span(
        self,
        operation: str,
        parent: SpanContext | TraceSpan | None = None,
        tags: dict[str, Any] | None = None,
    ) -> TraceSpan:
        """Open a span, joining the parent's trace if one is given."""
        trace_id = parent.trace_id if parent is not None else secrets.token_hex(16)
        span = TraceSpan(
            trace_id=trace_id,
            span_id=secrets.token_hex(8),
            parent_span_id=parent.span_id if parent is not None else None,
            operation=operation,
            start_time=self._now_ms(),
            tags={"service": self.service_name, **(tags or {})},
        )
        self._active[span.span_id] = span
        spans = self._traces.get(trace_id)
        if spans is None:
            self._traces[trace_id] = [span]
            self._evict()
        else:
            spans.append(span)
        logger.debug("Started span %s (trace %s)", operation, trace_id)
        return span

    def _evict(self) -> None:
        while len(self._traces) > self._max_traces:
            oldest = next(iter(self._traces))
            for span in self._traces.pop(oldest):
                self._active.pop(span.span_id, None)

    def finish_span(
        self,
        span_id: str,
        status: SpanStatus = SpanStatus.SUCCESS,
        error: str | None = None,
        extra_tags: dict[str, Any] | None = None,
    ) -> TraceSpan | None:
        """Close an active span.

        Returns:
            The finished span, or None if ``span_id`` is not active
            (already finished or never started).
        """
        span = self._active.pop(span_id, None)
        if span is None:
            logger.warning("Span %s not found", span_id)
            return None
        span.end_time = max(self._now_ms(), span.start_time)
        span.duration = span.end_time - span.start_time
        span.status = SpanStatus(status)
        if error is not None:
            span.error = error
        if extra_tags:
            span.tags.update(extra_tags)
        self._track_dependency(span)
        logger.debug(
            "Finished span %s (%.1fms, status: %s)",
            span.operation,
            span.duration,
            span.status.value,
        )
        return span

    def _track_dependency(self, span: TraceSpan) -> None:
        key = (str(span.tags.get("targetService", "internal")), span.operation)
        totals = self._dependencies.setdefault(key, _DependencyTotals())
        totals.calls += 1
        totals.total_duration += span.duration or 0.0
        if span.status is SpanStatus.ERROR:
            totals.errors += 1

    def add_tag(self, span_id: str, key: str, value: Any) -> bool:
        span = self._active.get(span_id)
        if span is None:
            logger.warning("Span %s not found", span_id)
            return False
        span.tags[key] = value
        return True

    def add_error(self, span_id: str, error: BaseException | str) -> bool:
        """Attach an error message to an active span and tag it ``error``."""
        span = self._active.get(span_id)
        if span is None:
            logger.warning("Span %s not found", span_id)
            return False
        span.error = error if isinstance(error, str) else str(error)
        span.tags["error"] = True
        return True

    @contextmanager
    def span(
        self,
        operation: str,
        parent: SpanContext | TraceSpan | None = None,
        tags: dict[str, Any] | None = None,
    ) -> Iterator[TraceSpan]:
        """Span around a block, finished as error or timeout if it raises."""
        span = self.start_span(operation, parent, tags)
        try:
            yield span
        except (TimeoutError, asyncio.TimeoutError) as exc:
            self.finish_span(span.span_id, SpanStatus.TIMEOUT, str(exc) or "timeout")
            raise
        except Exception as exc:
            self.finish_span(span.span_id, SpanStatus.ERROR, str(exc))
            raise
        else:
            self.finish_span(span.span_id)

    def get_trace(self, trace_id: str) -> list[TraceSpan] | None:
        spans = self._traces.get(trace_id)
        return list(spans) if spans is not None else None

    def trace_ids(self) -> list[str]:
        return list(self._traces)

    def active_spans(self) -> list[TraceSpan]:
        return list(self._active.values())

    def _all_spans(self) -> list[TraceSpan]:
        return [span for spans in self._traces.values() for span in spans]

    def search_traces(self, query: TraceQuery | None = None) -> list[TraceSpan]:
        """Spans of retained traces matching every filter set on ``query``."""
        query = query or TraceQuery()
        return [span for span in self._all_spans() if query.matches(span)]

    def stats(self) -> TracingStats:
        if not self._traces and not self._active:
            return TracingStats.empty()
        finished = [span for span in self._all_spans() if span.finished]
        if not finished:
            return TracingStats(
                total_traces=len(self._traces),
                active_spans=len(self._active),
                avg_duration=0.0,
                error_rate=0.0,
            )
        by_operation: dict[str, list[TraceSpan]] = {}
        for span in finished:
            by_operation.setdefault(span.operation, []).append(span)
        operations = {
            name: OperationStats(
                count=len(spans),
                avg_duration=sum(s.duration or 0.0 for s in spans) / len(spans),
                error_rate=_error_rate(spans),
            )
            for name, spans in by_operation.items()
        }
        avg = sum(s.duration or 0.0 for s in finished) / len(finished)
        return TracingStats(
            total_traces=len(self._traces),
            active_spans=len(self._active),
            avg_duration=round(avg, 2),
            error_rate=round(_error_rate(finished), 2),
            operations=operations,
        )

    def service_map(self) -> list[ServiceDependency]:
        """Dependencies observed from finished spans, busiest first."""
        dependencies = [
            ServiceDependency(
                service=service,
                operation=operation,
                calls=totals.calls,
                avg_duration=totals.total_duration / totals.calls,
                error_rate=totals.errors / totals.calls * 100,
            )
            for (service, operation), totals in self._dependencies.items()
        ]
        return sorted(dependencies, key=lambda d: d.calls, reverse=True)

    def export_traces(
        self, format: ExportFormat | str = ExportFormat.OPENTELEMETRY
    ) -> list[dict[str, Any]]:
        """Every retained span, translated for an external tracing system.

        Raises:
            ValueError: If ``format`` is not a supported export format.
        """
        return export_spans(self._all_spans(), format, self.service_name)

    def reset(self) -> None:
        self._traces.clear()
        self._active.clear()
        self._dependencies.clear()
        logger.info("Tracing data reset")


def _error_rate(spans: list[TraceSpan]) -> float:
    errors = sum(1 for s in spans if s.status is SpanStatus.ERROR)
    return errors / len(spans) * 100
