"""Audit, metrics, error and compliance sinks.

The gateway reports every state transition and every failure to these
collaborators. Reporting is fire-and-forget: ``EventSinks`` isolates the
call path from sink failures, which are logged and dropped.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from .errors import (
    ComplianceViolation,
    EncryptionError,
    InsuranceError,
    InvalidCredentials,
    NetworkError,
)
from .models import APIMetrics, ComplianceStatus, ErrorStatistics
from .transport.session import CallObserver, utcnow

logger = logging.getLogger(__name__)
audit_log = logging.getLogger("insurance_gateway.audit")


@dataclass
class AuditEvent:
    """A single audited action."""

    action: str
    provider_id: str
    timestamp: datetime
    status: str = "success"
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class MetricsEvent:
    """A counter increment, optionally with a request duration."""

    name: str
    provider_id: str
    success: bool
    timestamp: datetime
    duration_ms: float | None = None


class AuditLogger:
    """Writes audit events to the audit logger and keeps a bounded trail."""

    def __init__(self, max_events: int = 1000) -> None:
        self._events: deque[AuditEvent] = deque(maxlen=max_events)

    def log(self, event: AuditEvent) -> None:
        self._events.append(event)
        audit_log.info(
            f"{event.action} [{event.provider_id}] {event.status}",
            extra={
                "provider_id": event.provider_id,
                "audit_action": event.action,
                "audit_status": event.status,
                "audit_details": event.details,
            },
        )

    def events(self, provider_id: str | None = None) -> list[AuditEvent]:
        if provider_id is None:
            return list(self._events)
        return [e for e in self._events if e.provider_id == provider_id]


class MetricsCollector:
    """In-memory per-provider counters and request timings."""

    def __init__(self) -> None:
        self._counters: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._requests: dict[str, dict[str, Any]] = {}

    def record(self, event: MetricsEvent) -> None:
        outcome = "success" if event.success else "failure"
        self._counters[event.provider_id][f"{event.name}.{outcome}"] += 1

        # Only remote calls carry a duration and count as API requests
        if event.duration_ms is None:
            return

        stats = self._requests.setdefault(
            event.provider_id,
            {"total": 0, "successful": 0, "failed": 0, "total_ms": 0.0, "last": None},
        )
        stats["total"] += 1
        stats["successful" if event.success else "failed"] += 1
        stats["total_ms"] += event.duration_ms
        stats["last"] = event.timestamp

    def counters(self, provider_id: str) -> dict[str, int]:
        return dict(self._counters.get(provider_id, {}))

    def get_metrics(self, provider_id: str) -> APIMetrics:
        stats = self._requests.get(provider_id)
        if not stats:
            return APIMetrics(provider_id=provider_id)
        return APIMetrics(
            provider_id=provider_id,
            total_requests=stats["total"],
            successful_requests=stats["successful"],
            failed_requests=stats["failed"],
            average_response_time_ms=round(stats["total_ms"] / stats["total"], 2),
            last_request_time=stats["last"],
        )

    def reset(self, provider_id: str) -> None:
        self._counters.pop(provider_id, None)
        self._requests.pop(provider_id, None)


class ErrorTracker:
    """Counts errors per provider by error code."""

    def __init__(self) -> None:
        self._errors: dict[str, dict[str, Any]] = {}

    def record_error(self, error: BaseException, provider_id: str, at: datetime) -> None:
        code = getattr(error, "code", type(error).__name__)
        stats = self._errors.setdefault(
            provider_id, {"total": 0, "types": defaultdict(int), "last": None}
        )
        stats["total"] += 1
        stats["types"][code] += 1
        stats["last"] = at

    def get_statistics(self, provider_id: str) -> ErrorStatistics:
        stats = self._errors.get(provider_id)
        if not stats:
            return ErrorStatistics(provider_id=provider_id)
        return ErrorStatistics(
            provider_id=provider_id,
            total_errors=stats["total"],
            error_types=dict(stats["types"]),
            last_error_time=stats["last"],
        )

    def reset(self, provider_id: str) -> None:
        self._errors.pop(provider_id, None)


class ComplianceMonitor:
    """Advisory compliance scoring; never blocks a call."""

    def __init__(self) -> None:
        self._violations: dict[str, list[ComplianceViolation]] = defaultdict(list)
        self._last_check: dict[str, datetime] = {}

    def check_impact(self, error: BaseException, provider_id: str, at: datetime) -> None:
        """Record a violation when an error has compliance implications.

        Payload encryption failures and credential rejections are recorded;
        other errors only update the check timestamp.
        """
        self._last_check[provider_id] = at

        violation: ComplianceViolation | None = None
        if isinstance(error, EncryptionError):
            violation = ComplianceViolation(
                f"payload protection failed: {error.message}", provider_id
            )
        elif isinstance(error, InvalidCredentials) and isinstance(error.__cause__, NetworkError):
            violation = ComplianceViolation(
                f"provider rejected credentials (HTTP {error.__cause__.status_code})", provider_id
            )
        elif isinstance(error, NetworkError) and error.auth_rejected:
            violation = ComplianceViolation(
                f"provider rejected credentials (HTTP {error.status_code})", provider_id
            )

        if violation is not None:
            self._violations[provider_id].append(violation)
            logger.warning(f"[{provider_id}] {violation.message}")

    def get_status(self, provider_id: str, now: datetime) -> ComplianceStatus:
        issues = [v.message for v in self._violations.get(provider_id, [])]
        return ComplianceStatus(
            provider_id=provider_id,
            is_compliant=not issues,
            compliance_issues=issues,
            last_compliance_check=self._last_check.get(provider_id, now),
        )

    def reset(self, provider_id: str) -> None:
        self._violations.pop(provider_id, None)
        self._last_check.pop(provider_id, None)


class EventSinks:
    """Fan-out to the reporting collaborators.

    Every method swallows and logs sink failures so reporting can never
    break or block the primary call path.
    """

    def __init__(
        self,
        audit: AuditLogger | None = None,
        metrics: MetricsCollector | None = None,
        errors: ErrorTracker | None = None,
        compliance: ComplianceMonitor | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.audit_logger = audit or AuditLogger()
        self.metrics = metrics or MetricsCollector()
        self.errors = errors or ErrorTracker()
        self.compliance = compliance or ComplianceMonitor()
        self._clock = clock

    def _safely(self, fn: Callable[..., None], *args: Any) -> None:
        try:
            fn(*args)
        except Exception as e:
            logger.warning(f"Event sink {getattr(fn, '__qualname__', fn)} failed: {e}")

    def audit(
        self, action: str, provider_id: str, status: str = "success", **details: Any
    ) -> None:
        event = AuditEvent(
            action=action,
            provider_id=provider_id,
            timestamp=self._clock(),
            status=status,
            details=details,
        )
        self._safely(self.audit_logger.log, event)

    def metric(
        self,
        name: str,
        provider_id: str,
        success: bool = True,
        duration_ms: float | None = None,
    ) -> None:
        event = MetricsEvent(
            name=name,
            provider_id=provider_id,
            success=success,
            timestamp=self._clock(),
            duration_ms=duration_ms,
        )
        self._safely(self.metrics.record, event)

    def call_observer(self, provider_id: str) -> CallObserver:
        """Build the per-session observer that times remote calls."""

        def observe(operation: str, success: bool, duration_ms: float) -> None:
            self.metric(f"request.{operation}", provider_id, success, duration_ms)

        return observe

    def report_error(
        self, error: BaseException, provider_id: str, operation: str
    ) -> None:
        """Report a failure to every sink."""
        now = self._clock()
        code = getattr(error, "code", type(error).__name__)
        message = error.message if isinstance(error, InsuranceError) else str(error)
        self.audit(
            "api_error",
            provider_id,
            status="error",
            operation=operation,
            code=code,
            error=message,
        )
        self.metric(f"{operation}.error", provider_id, success=False)
        self._safely(self.errors.record_error, error, provider_id, now)
        self._safely(self.compliance.check_impact, error, provider_id, now)

    def forget(self, provider_id: str) -> None:
        """Drop all collected data for a removed provider."""
        for sink in (self.metrics, self.errors, self.compliance):
            self._safely(sink.reset, provider_id)
