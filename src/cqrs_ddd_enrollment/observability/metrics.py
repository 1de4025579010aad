"""Enrollment metrics for Prometheus.

Usage:
    ```python
    from cqrs_ddd_enrollment.observability import EnrollmentMetrics

    with EnrollmentMetrics.operation("start", factor="email"):
        challenge = await client.enroll_email(token, email)

    EnrollmentMetrics.record_step_up("success")
    ```
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from prometheus_client import Counter, Histogram

_logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Generator


class _EnrollmentMetricsRegistry:
    """Registry for enrollment Prometheus collectors.

    Collectors are created on first use and shared by the whole process.
    """

    def __init__(self) -> None:
        self._histogram: Any = None
        self._counter: Any = None
        self._outcomes: Any = None
        self._step_ups: Any = None
        self._initialized = False

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return

        self._histogram = Histogram(
            "enrollment_remote_call_duration_seconds",
            "Duration of account-management API calls",
            ["operation", "factor"],
        )
        self._counter = Counter(
            "enrollment_remote_calls_total",
            "Account-management API calls",
            ["operation", "factor", "result"],
        )
        self._outcomes = Counter(
            "enrollment_recovery_outcomes_total",
            "Outcomes of operations run through the recovery orchestrator",
            ["operation", "status", "kind"],
        )
        self._step_ups = Counter(
            "enrollment_step_ups_total",
            "Step-up authentication attempts",
            ["result"],
        )
        self._initialized = True

    @property
    def histogram(self) -> Any:
        self._ensure_initialized()
        return self._histogram

    @property
    def counter(self) -> Any:
        self._ensure_initialized()
        return self._counter

    @property
    def outcomes(self) -> Any:
        self._ensure_initialized()
        return self._outcomes

    @property
    def step_ups(self) -> Any:
        self._ensure_initialized()
        return self._step_ups


_registry = _EnrollmentMetricsRegistry()


class EnrollmentMetrics:
    """Helpers for recording enrollment metrics."""

    @staticmethod
    @contextmanager
    def operation(
        operation: str,
        *,
        factor: str = "none",
    ) -> Generator[None, None, None]:
        """Time a remote call and count its result.

        Args:
            operation: Operation name (start, confirm, list, delete, ...).
            factor: Factor kind value, or ``none`` for registry calls.
        """
        result = "success"
        start = time.monotonic()

        try:
            yield
        except BaseException:
            result = "error"
            raise
        finally:
            duration = time.monotonic() - start
            try:
                _registry.histogram.labels(
                    operation=operation, factor=factor
                ).observe(duration)
                _registry.counter.labels(
                    operation=operation, factor=factor, result=result
                ).inc()
            except ValueError:
                _logger.debug("Failed to record metrics for %s", operation)

    @staticmethod
    def record_outcome(operation: str, status: str, kind: str = "none") -> None:
        """Count one recovery outcome.

        Args:
            operation: Logical operation name.
            status: Outcome status value.
            kind: ErrorKind value for failures, ``none`` for successes.
        """
        _registry.outcomes.labels(operation=operation, status=status, kind=kind).inc()

    @staticmethod
    def record_step_up(result: str) -> None:
        """Count one step-up attempt (``success`` or an ErrorKind value)."""
        _registry.step_ups.labels(result=result).inc()


__all__: list[str] = ["EnrollmentMetrics"]
