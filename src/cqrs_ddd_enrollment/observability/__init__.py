"""Observability helpers for the enrollment SDK."""

from __future__ import annotations

from .metrics import EnrollmentMetrics

__all__: list[str] = ["EnrollmentMetrics"]
