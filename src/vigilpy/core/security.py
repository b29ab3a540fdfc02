"""Security event store with threshold-based anomaly detection.

Every recorded event updates per-IP and per-user 24h activity windows and
is checked against the immediate rules (brute force, unusual activity,
high request rate). Detected anomalies are recorded as events through the
same path. A periodic sweep evaluates longer-horizon patterns.
"""

import logging
import secrets
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any

from vigilpy.core.config import AnomalyPattern, SecurityThresholds
from vigilpy.core.models import (
    EventStatus,
    SecurityEvent,
    SecurityEventType,
    Severity,
)
from vigilpy.core.ports import ClockPort, SchedulerPort

logger = logging.getLogger(__name__)

SWEEP_JOB = "security.sweep"
SWEEP_INTERVAL = 5 * 60

_FAILURE_TYPES = frozenset(
    {SecurityEventType.AUTH_FAILURE, SecurityEventType.PRIVILEGE_ESCALATION}
)
_SEVERITY_RANK = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}


@dataclass(frozen=True)
class _IpActivity:
    timestamp: float
    event_type: SecurityEventType


@dataclass(frozen=True)
class _UserActivity:
    timestamp: float
    endpoint: str
    success: bool


@dataclass(frozen=True)
class UserActivityPattern:
    unique_endpoints: int
    request_count: int
    failure_rate: float


@dataclass(frozen=True)
class EventQuery:
    """Filters for ``SecurityDetector.get_events``; every field is optional."""

    type: SecurityEventType | None = None
    severity: Severity | None = None
    ip_address: str | None = None
    user_id: str | None = None
    status: EventStatus | None = None
    start: float | None = None
    end: float | None = None
    limit: int | None = None


@dataclass(frozen=True)
class SourceCount:
    ip: str
    count: int
    severity: Severity


@dataclass(frozen=True)
class SecurityMetrics:
    total_events: int
    events_by_type: dict[str, int]
    events_by_severity: dict[str, int]
    top_sources: list[SourceCount]
    recent_events: list[SecurityEvent]
    anomalies_detected: int
    false_positive_rate: float


@dataclass(frozen=True)
class SecuritySummary:
    total_events: int = 0
    critical_events: int = 0
    blocked_ips: int = 0
    suspicious_users: int = 0


@dataclass(frozen=True)
class ThreatTrend:
    type: str
    count: int
    trend: str


@dataclass(frozen=True)
class TimelineSlot:
    hour: int
    events: int
    severity: Severity


@dataclass(frozen=True)
class SecurityDashboard:
    """Last 24h of security activity.

    Attributes:
        summary: Event totals over the last 24h.
        recent_threats: Newest high and critical events (up to 10).
        top_threats: Most frequent event types with their 6h trend.
        timeline: 24 hourly slots, oldest first.
    """

    summary: SecuritySummary = field(default_factory=SecuritySummary)
    recent_threats: list[SecurityEvent] = field(default_factory=list)
    top_threats: list[ThreatTrend] = field(default_factory=list)
    timeline: list[TimelineSlot] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "SecurityDashboard":
        return cls(
            timeline=[TimelineSlot(hour=i, events=0, severity=Severity.LOW) for i in range(24)]
        )


def slot_severity(events: list[SecurityEvent]) -> Severity:
    """Worst severity in a slot; medium only when busier than 10 events."""
    if any(e.severity is Severity.CRITICAL for e in events):
        return Severity.CRITICAL
    if any(e.severity is Severity.HIGH for e in events):
        return Severity.HIGH
    if len(events) > 10:
        return Severity.MEDIUM
    return Severity.LOW


class SecurityDetector:
    """Append-only security event log and anomaly detector.

    Args:
        clock: Time source for event timestamps and windows.
        scheduler: Runs the periodic pattern sweep once started.
        thresholds: Detection thresholds, windows and sweep patterns.
    """

    def __init__(
        self,
        clock: ClockPort,
        scheduler: SchedulerPort | None = None,
        thresholds: SecurityThresholds | None = None,
    ) -> None:
        self._clock = clock
        self._scheduler = scheduler
        self._thresholds = thresholds or SecurityThresholds()
        self._events: dict[str, SecurityEvent] = {}
        self._ip_activity: dict[str, deque[_IpActivity]] = {}
        self._user_activity: dict[str, deque[_UserActivity]] = {}
        # (rule, subject) -> (detected at, rule window)
        self._last_detection: dict[tuple[str, str], tuple[float, float]] = {}

    # --- recording ---

    def record(
        self,
        type: SecurityEventType,
        severity: Severity,
        ip_address: str,
        description: str,
        metadata: dict[str, Any] | None = None,
        user_id: str | None = None,
        user_agent: str | None = None,
        endpoint: str | None = None,
    ) -> str:
        """Record an event and run the immediate anomaly checks.

        Returns:
            The new event's id.
        """
        event = SecurityEvent(
            id=f"sec_{secrets.token_hex(8)}",
            type=SecurityEventType(type),
            severity=Severity(severity),
            timestamp=self._clock.time(),
            ip_address=ip_address,
            description=description,
            metadata=dict(metadata or {}),
            user_id=user_id,
            user_agent=user_agent,
            endpoint=endpoint,
        )
        self._events[event.id] = event
        self._update_activity(event)
        if event.severity in (Severity.HIGH, Severity.CRITICAL):
            logger.warning("Security event %s: %s", event.type.value, description)
        else:
            logger.info("Security event %s: %s", event.type.value, description)
        self._check_anomalies(event)
        self.purge_expired()
        return event.id

    def record_auth_failure(
        self,
        ip_address: str,
        user_id: str | None = None,
        user_agent: str | None = None,
        reason: str = "Invalid credentials",
    ) -> str:
        return self.record(
            SecurityEventType.AUTH_FAILURE,
            Severity.MEDIUM,
            ip_address,
            f"Authentication failure: {reason}",
            {"reason": reason, "attempts": self.recent_auth_failures(ip_address) + 1},
            user_id=user_id,
            user_agent=user_agent,
            endpoint="/auth/login",
        )

    def record_suspicious_data_access(
        self,
        user_id: str,
        endpoint: str,
        ip_address: str,
        user_agent: str | None = None,
        data_type: str | None = None,
    ) -> str:
        pattern = self.user_activity_pattern(user_id)
        return self.record(
            SecurityEventType.DATA_ACCESS,
            Severity.HIGH,
            ip_address,
            f"Suspicious data access to {endpoint}",
            {
                "data_type": data_type,
                "unique_endpoints": pattern.unique_endpoints,
                "request_count": pattern.request_count,
                "hour_of_day": time.localtime(self._clock.time()).tm_hour,
            },
            user_id=user_id,
            user_agent=user_agent,
            endpoint=endpoint,
        )

    def record_brute_force_attempt(
        self,
        ip_address: str,
        target: str,
        attempt_count: int,
        user_agent: str | None = None,
    ) -> str:
        return self.record(
            SecurityEventType.BRUTE_FORCE,
            Severity.HIGH,
            ip_address,
            f"Brute force attack detected against {target}",
            {"target": target, "attempt_count": attempt_count, "blocked": True},
            user_agent=user_agent,
        )

    def record_privilege_escalation(
        self,
        user_id: str,
        endpoint: str,
        ip_address: str,
        attempted_action: str,
        user_agent: str | None = None,
    ) -> str:
        return self.record(
            SecurityEventType.PRIVILEGE_ESCALATION,
            Severity.CRITICAL,
            ip_address,
            f"Privilege escalation attempt: {attempted_action}",
            {"attempted_action": attempted_action},
            user_id=user_id,
            user_agent=user_agent,
            endpoint=endpoint,
        )

    # --- activity windows ---

    def _update_activity(self, event: SecurityEvent) -> None:
        cutoff = event.timestamp - self._thresholds.activity_retention_seconds
        ip_log = self._ip_activity.setdefault(event.ip_address, deque())
        ip_log.append(_IpActivity(event.timestamp, event.type))
        while ip_log and ip_log[0].timestamp <= cutoff:
            ip_log.popleft()

        if event.user_id is None:
            return
        user_log = self._user_activity.setdefault(event.user_id, deque())
        user_log.append(
            _UserActivity(
                timestamp=event.timestamp,
                endpoint=event.endpoint or "unknown",
                success=event.type not in _FAILURE_TYPES,
            )
        )
        while user_log and user_log[0].timestamp <= cutoff:
            user_log.popleft()

    def recent_auth_failures(self, ip_address: str) -> int:
        """Auth failures recorded from ``ip_address`` in the login window."""
        cutoff = self._clock.time() - self._thresholds.login_window_seconds
        return sum(
            1
            for entry in self._ip_activity.get(ip_address, ())
            if entry.event_type is SecurityEventType.AUTH_FAILURE
            and entry.timestamp >= cutoff
        )

    def ip_request_count(self, ip_address: str) -> int:
        cutoff = self._clock.time() - self._thresholds.activity_window_seconds
        return sum(1 for e in self._ip_activity.get(ip_address, ()) if e.timestamp > cutoff)

    def user_activity_pattern(self, user_id: str) -> UserActivityPattern:
        cutoff = self._clock.time() - self._thresholds.activity_window_seconds
        recent = [a for a in self._user_activity.get(user_id, ()) if a.timestamp > cutoff]
        failures = sum(1 for a in recent if not a.success)
        return UserActivityPattern(
            unique_endpoints=len({a.endpoint for a in recent}),
            request_count=len(recent),
            failure_rate=failures / len(recent) * 100 if recent else 0.0,
        )

    # --- detection ---

    def _should_emit(self, rule: str, subject: str, window: float) -> bool:
        """True unless ``rule`` already fired for ``subject`` inside ``window``."""
        now = self._clock.time()
        last = self._last_detection.get((rule, subject))
        if last is not None and now - last[0] < window:
            return False
        self._last_detection[(rule, subject)] = (now, window)
        return True

    def _check_anomalies(self, event: SecurityEvent) -> None:
        t = self._thresholds
        if event.type is SecurityEventType.AUTH_FAILURE:
            failures = self.recent_auth_failures(event.ip_address)
            if failures >= t.login_attempts_per_ip and self._should_emit(
                SecurityEventType.BRUTE_FORCE.value,
                event.ip_address,
                t.login_window_seconds,
            ):
                self.record_brute_force_attempt(event.ip_address, "login", failures)

        if event.user_id is not None:
            pattern = self.user_activity_pattern(event.user_id)
            if pattern.unique_endpoints > t.unusual_endpoints_per_user and self._should_emit(
                SecurityEventType.UNUSUAL_ACTIVITY.value,
                event.user_id,
                t.activity_window_seconds,
            ):
                self.record(
                    SecurityEventType.UNUSUAL_ACTIVITY,
                    Severity.MEDIUM,
                    event.ip_address,
                    f"Unusual activity pattern detected for user {event.user_id}",
                    {
                        "unique_endpoints": pattern.unique_endpoints,
                        "request_count": pattern.request_count,
                        "failure_rate": pattern.failure_rate,
                    },
                    user_id=event.user_id,
                )

        requests = self.ip_request_count(event.ip_address)
        if requests > t.requests_per_ip and self._should_emit(
            SecurityEventType.SUSPICIOUS_IP.value,
            event.ip_address,
            t.activity_window_seconds,
        ):
            self.record(
                SecurityEventType.SUSPICIOUS_IP,
                Severity.MEDIUM,
                event.ip_address,
                f"High request rate detected from IP {event.ip_address}",
                {"request_count": requests},
            )

    def check_pattern(self, pattern: AnomalyPattern) -> int:
        """Evaluate one sweep pattern, recording an event per offending subject.

        Returns:
            Number of events recorded.
        """
        now = self._clock.time()
        cutoff = now - pattern.window_seconds
        counts: Counter[str] = Counter()
        for event in list(self._events.values()):
            if event.type.value not in pattern.event_types or event.timestamp < cutoff:
                continue
            subject = event.ip_address if pattern.group_by == "ip" else event.user_id
            if subject is not None:
                counts[subject] += 1

        emitted = 0
        for subject, count in counts.items():
            if count < pattern.threshold:
                continue
            if not self._should_emit(pattern.name, subject, pattern.window_seconds):
                continue
            ip = subject if pattern.group_by == "ip" else self._last_ip_for_user(subject)
            self.record(
                SecurityEventType.UNUSUAL_ACTIVITY,
                pattern.severity,
                ip,
                f"{pattern.description} ({count} events)",
                {"pattern": pattern.name, "count": count},
                user_id=subject if pattern.group_by == "user" else None,
            )
            emitted += 1
        return emitted

    def _last_ip_for_user(self, user_id: str) -> str:
        for event in reversed(list(self._events.values())):
            if event.user_id == user_id:
                return event.ip_address
        return "unknown"

    def run_sweep(self) -> int:
        """Evaluate every enabled pattern; a failing pattern is skipped."""
        emitted = 0
        for pattern in self._thresholds.patterns:
            if not pattern.enabled:
                continue
            try:
                emitted += self.check_pattern(pattern)
            except Exception:
                logger.exception("Anomaly pattern %s failed", pattern.name)
        return emitted

    def start(self) -> None:
        if self._scheduler is None:
            logger.warning("SecurityDetector has no scheduler; sweep disabled")
            return
        self._scheduler.every(SWEEP_JOB, SWEEP_INTERVAL, self.run_sweep)

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.cancel(SWEEP_JOB)

    # --- queries ---

    def update_event_status(self, event_id: str, status: EventStatus) -> bool:
        event = self._events.get(event_id)
        if event is None:
            logger.warning("Security event %s not found", event_id)
            return False
        event.status = EventStatus(status)
        logger.info("Updated event %s status to %s", event_id, event.status.value)
        return True

    def get_event(self, event_id: str) -> SecurityEvent | None:
        return self._events.get(event_id)

    def get_events(self, query: EventQuery | None = None) -> list[SecurityEvent]:
        """Events matching every filter set on ``query``, newest first."""
        q = query or EventQuery()
        events = [
            e
            for e in self._events.values()
            if (q.type is None or e.type == q.type)
            and (q.severity is None or e.severity == q.severity)
            and (q.ip_address is None or e.ip_address == q.ip_address)
            and (q.user_id is None or e.user_id == q.user_id)
            and (q.status is None or e.status == q.status)
            and (q.start is None or e.timestamp >= q.start)
            and (q.end is None or e.timestamp <= q.end)
        ]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        if q.limit is not None:
            events = events[: q.limit]
        return events

    def _ip_severity(self, events: list[SecurityEvent]) -> Severity:
        if any(e.severity is Severity.CRITICAL for e in events):
            return Severity.CRITICAL
        if sum(1 for e in events if e.severity is Severity.HIGH) > 2:
            return Severity.HIGH
        if len(events) > 10:
            return Severity.MEDIUM
        return Severity.LOW

    def security_metrics(self) -> SecurityMetrics:
        events = list(self._events.values())
        by_ip: dict[str, list[SecurityEvent]] = {}
        for event in events:
            by_ip.setdefault(event.ip_address, []).append(event)
        top_sources = sorted(
            (
                SourceCount(ip=ip, count=len(ip_events), severity=self._ip_severity(ip_events))
                for ip, ip_events in by_ip.items()
            ),
            key=lambda s: s.count,
            reverse=True,
        )[:10]
        cutoff = self._clock.time() - 24 * 3600
        recent = sorted(
            (e for e in events if e.timestamp >= cutoff),
            key=lambda e: e.timestamp,
            reverse=True,
        )[:50]
        closed = [
            e for e in events if e.status in (EventStatus.RESOLVED, EventStatus.FALSE_POSITIVE)
        ]
        false_positives = sum(1 for e in closed if e.status is EventStatus.FALSE_POSITIVE)
        return SecurityMetrics(
            total_events=len(events),
            events_by_type=dict(Counter(e.type.value for e in events)),
            events_by_severity=dict(Counter(e.severity.value for e in events)),
            top_sources=top_sources,
            recent_events=recent,
            anomalies_detected=sum(
                1 for e in events if e.type is SecurityEventType.UNUSUAL_ACTIVITY
            ),
            false_positive_rate=(
                round(false_positives / len(closed) * 100, 2) if closed else 0.0
            ),
        )

    def _trend(self, event_type: SecurityEventType, events: list[SecurityEvent]) -> str:
        now = self._clock.time()
        six_hours_ago = now - 6 * 3600
        twelve_hours_ago = now - 12 * 3600
        recent = sum(1 for e in events if e.type is event_type and e.timestamp > six_hours_ago)
        previous = sum(
            1
            for e in events
            if e.type is event_type and twelve_hours_ago < e.timestamp <= six_hours_ago
        )
        if recent > previous * 1.5:
            return "increasing"
        if recent < previous * 0.5:
            return "decreasing"
        return "stable"

    def security_dashboard(self) -> SecurityDashboard:
        now = self._clock.time()
        recent = [e for e in self._events.values() if e.timestamp >= now - 24 * 3600]
        if not recent:
            return SecurityDashboard.empty()

        summary = SecuritySummary(
            total_events=len(recent),
            critical_events=sum(1 for e in recent if e.severity is Severity.CRITICAL),
            blocked_ips=len(
                {
                    e.ip_address
                    for e in self._events.values()
                    if e.type is SecurityEventType.BRUTE_FORCE
                }
            ),
            suspicious_users=len({e.user_id for e in recent if e.user_id}),
        )
        threats = sorted(
            (e for e in recent if _SEVERITY_RANK[e.severity] >= _SEVERITY_RANK[Severity.HIGH]),
            key=lambda e: e.timestamp,
            reverse=True,
        )[:10]
        type_counts = Counter(e.type for e in recent)
        top = [
            ThreatTrend(type=t.value, count=count, trend=self._trend(t, recent))
            for t, count in type_counts.most_common(5)
        ]
        timeline = []
        for hour in range(24):
            slot_start = now - (24 - hour) * 3600
            slot_end = slot_start + 3600
            slot_events = [e for e in recent if slot_start < e.timestamp <= slot_end]
            timeline.append(
                TimelineSlot(hour=hour, events=len(slot_events), severity=slot_severity(slot_events))
            )
        return SecurityDashboard(
            summary=summary, recent_threats=threats, top_threats=top, timeline=timeline
        )

    # --- retention ---

    def purge_expired(self) -> int:
        """Delete events past the retention period, whatever their status.

        Activity windows of IPs and users that went quiet, and detections
        whose window has passed, are dropped as well.

        Returns:
            Number of events deleted.
        """
        now = self._clock.time()
        cutoff = now - self._thresholds.event_retention_seconds
        expired = [eid for eid, e in self._events.items() if e.timestamp < cutoff]
        for event_id in expired:
            del self._events[event_id]
        if expired:
            logger.info("Purged %d expired security events", len(expired))

        activity_cutoff = now - self._thresholds.activity_retention_seconds
        for activity in (self._ip_activity, self._user_activity):
            stale = [
                key
                for key, log in activity.items()
                if not log or log[-1].timestamp <= activity_cutoff
            ]
            for key in stale:
                del activity[key]
        finished = [
            key
            for key, (detected_at, window) in self._last_detection.items()
            if now - detected_at >= window
        ]
        for key in finished:
            del self._last_detection[key]
        return len(expired)

    def reset(self) -> None:
        self._events.clear()
        self._ip_activity.clear()
        self._user_activity.clear()
        self._last_detection.clear()
        logger.info("Security data reset")
