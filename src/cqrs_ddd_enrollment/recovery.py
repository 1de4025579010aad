"""Recovery policy shared by enrollment, listing and deletion flows.

The orchestrator runs an operation, classifies any failure, performs
step-up authentication for ``mfa_required`` failures and re-runs the
operation, up to a fixed number of step-ups. Every other failure becomes
a terminal failure carrying a user-facing message and a ``retry``
coroutine that re-runs the whole operation from the top.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .classifier import ClassifiedError, ErrorClassifier, ErrorKind
from .observability.metrics import EnrollmentMetrics
from .ports import IRefreshObserver

if TYPE_CHECKING:
    from .models import ScopedAudience
    from .step_up import StepUpAuthenticator

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ═══════════════════════════════════════════════════════════════
# OUTCOMES
# ═══════════════════════════════════════════════════════════════


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    RETRY_SUCCEEDED = "retry_succeeded"
    RETRY_EXHAUSTED = "retry_exhausted"
    NON_RECOVERABLE = "non_recoverable"


GENERIC_SUBTITLE = (
    "We are unable to process your request. Please try again in a few minutes. "
    "If this problem persists, please contact us."
)
DEFAULT_BUTTON_TITLE = "Try again"

_SCREENS: dict[ErrorKind, tuple[str, str]] = {
    ErrorKind.NETWORK: (
        "Connection problem",
        "Please check your internet connection",
    ),
    ErrorKind.UNAUTHORIZED: (
        "Session expired",
        "Your session has expired. Please login again to continue.",
    ),
    ErrorKind.RATE_LIMITED: (
        "Too many attempts",
        "Your account has been temporarily blocked due to too many failed "
        "attempts. Please try again later.",
    ),
}

_CODE_SUBTITLE = "The code you entered is incorrect or has expired. Please try again."


def describe(classified: ClassifiedError) -> tuple[str, str]:
    """Return the (title, subtitle) shown for a terminal failure."""
    if classified.kind in _SCREENS:
        return _SCREENS[classified.kind]
    if classified.kind in (ErrorKind.INVALID_INPUT, ErrorKind.EXPIRED):
        return classified.message, _CODE_SUBTITLE
    return classified.message, GENERIC_SUBTITLE


@dataclass(frozen=True)
class TerminalFailure(Generic[T]):
    """A failure that reached the caller.

    Attributes:
        kind: Classified kind.
        message: Human-readable message.
        title: Screen title.
        subtitle: Screen subtitle.
        button_title: Label of the retry affordance.
        retry: Re-runs the whole logical operation through the orchestrator.
        code: Machine-readable code, if any.
        cause: The exception that ended the chain.
    """

    kind: ErrorKind
    message: str
    title: str
    subtitle: str
    retry: Callable[[], Awaitable[RecoveryOutcome[T]]] = field(
        repr=False, compare=False
    )
    button_title: str = DEFAULT_BUTTON_TITLE
    code: str | None = None
    cause: BaseException | None = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class RecoveryOutcome(Generic[T]):
    """What the orchestrator reports after running an operation.

    Attributes:
        status: Outcome status.
        value: Operation result on success.
        failure: Terminal failure otherwise.
        step_ups: Number of successful or attempted step-ups.
    """

    status: OutcomeStatus
    value: T | None = None
    failure: TerminalFailure[T] | None = None
    step_ups: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status in (OutcomeStatus.SUCCEEDED, OutcomeStatus.RETRY_SUCCEEDED)

    @property
    def kind(self) -> ErrorKind | None:
        return self.failure.kind if self.failure else None


# ═══════════════════════════════════════════════════════════════
# REFRESH NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class RefreshEvent:
    """Published after a successful operation so dependent state can reload."""

    operation: str
    status: OutcomeStatus


RefreshCallback = Callable[[RefreshEvent], None]


class RefreshNotifier:
    """Explicit observer channel for refresh notifications.

    Example:
        ```python
        unsubscribe = notifier.subscribe(lambda event: reload_methods())
        ...
        unsubscribe()
        ```
    """

    def __init__(self) -> None:
        self._observers: list[RefreshCallback] = []

    def subscribe(
        self, observer: IRefreshObserver | RefreshCallback
    ) -> Callable[[], None]:
        """Register an observer and return its unsubscribe function."""
        callback: RefreshCallback = (
            observer.on_refresh if isinstance(observer, IRefreshObserver) else observer
        )
        self._observers.append(callback)

        def unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return unsubscribe

    def notify(self, event: RefreshEvent) -> None:
        for callback in list(self._observers):
            try:
                callback(event)
            except Exception:
                logger.exception("Refresh observer failed for %s", event.operation)

    def __len__(self) -> int:
        return len(self._observers)


# ═══════════════════════════════════════════════════════════════
# ORCHESTRATOR
# ═══════════════════════════════════════════════════════════════


class RecoveryOrchestrator:
    """Runs remote operations with step-up recovery.

    Only ``mfa_required`` is recovered automatically: step-up with the
    audience/scope of the failed call, then re-run the operation. After
    ``max_step_ups`` step-ups a further ``mfa_required`` ends the chain
    with ``RETRY_EXHAUSTED``. With ``max_step_ups=0`` step-up is disabled
    and ``mfa_required`` is ``NON_RECOVERABLE`` like any other failure. A
    failed or cancelled step-up ends the chain with ``NON_RECOVERABLE``
    without re-running the operation.

    Example:
        ```python
        outcome = await orchestrator.run(
            lambda: email.enroll(EmailTarget(address), ask_for_code),
            email.scoped_audience,
            name="enroll_email",
        )
        if not outcome.succeeded:
            show(outcome.failure.title, outcome.failure.subtitle)
        ```
    """

    def __init__(
        self,
        step_up: StepUpAuthenticator,
        classifier: ErrorClassifier | None = None,
        *,
        max_step_ups: int = 1,
        notifier: RefreshNotifier | None = None,
    ) -> None:
        if max_step_ups < 0:
            raise ValueError("max_step_ups must be >= 0")
        self._step_up = step_up
        self._classifier = classifier or ErrorClassifier()
        self._max_step_ups = max_step_ups
        self.notifier = notifier or RefreshNotifier()

    @property
    def max_step_ups(self) -> int:
        return self._max_step_ups

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        scoped_audience: ScopedAudience,
        *,
        name: str = "operation",
        on_success: Callable[[T], Any] | None = None,
    ) -> RecoveryOutcome[T]:
        """Run ``operation`` with recovery.

        Args:
            operation: Zero-argument coroutine factory for the whole logical
                operation. Called again for every retry.
            scoped_audience: Audience/scope the operation needs; used for
                step-up.
            name: Operation name for logs, metrics and refresh events.
            on_success: Called (and awaited if it returns an awaitable) with
                the result after success. A failing callback is logged; the
                refresh event is still published.
        Returns:
            The outcome. Failures are never raised.

        Raises:
            asyncio.CancelledError: If the calling task is cancelled.
        """
        step_ups = 0

        def retry() -> Awaitable[RecoveryOutcome[T]]:
            return self.run(
                operation, scoped_audience, name=name, on_success=on_success
            )

        while True:
            try:
                value = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                classified = self._classifier.classify(e)
                if not classified.requires_step_up:
                    return self._fail(
                        OutcomeStatus.NON_RECOVERABLE, classified, step_ups, retry, name
                    )
                if step_ups >= self._max_step_ups:
                    exhausted = (
                        OutcomeStatus.RETRY_EXHAUSTED
                        if step_ups
                        else OutcomeStatus.NON_RECOVERABLE
                    )
                    return self._fail(exhausted, classified, step_ups, retry, name)

                step_ups += 1
                try:
                    await self._step_up.upgrade(scoped_audience)
                except asyncio.CancelledError:
                    raise
                except Exception as step_up_error:
                    return self._fail(
                        OutcomeStatus.NON_RECOVERABLE,
                        self._classifier.classify(step_up_error),
                        step_ups,
                        retry,
                        name,
                    )
                logger.info("Retrying %s after step-up %d", name, step_ups)
                continue

            status = (
                OutcomeStatus.RETRY_SUCCEEDED if step_ups else OutcomeStatus.SUCCEEDED
            )
            EnrollmentMetrics.record_outcome(name, status.value)
            if on_success is not None:
                try:
                    result = on_success(value)
                    if inspect.isawaitable(result):
                        await result
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Success callback failed for %s", name)
            self.notifier.notify(RefreshEvent(operation=name, status=status))
            return RecoveryOutcome(status=status, value=value, step_ups=step_ups)

    def _fail(
        self,
        status: OutcomeStatus,
        classified: ClassifiedError,
        step_ups: int,
        retry: Callable[[], Awaitable[RecoveryOutcome[T]]],
        name: str,
    ) -> RecoveryOutcome[T]:
        logger.warning(
            "%s failed (%s, %s) after %d step-up(s)",
            name,
            status.value,
            classified.kind.value,
            step_ups,
        )
        EnrollmentMetrics.record_outcome(name, status.value, classified.kind.value)
        title, subtitle = describe(classified)
        failure: TerminalFailure[T] = TerminalFailure(
            kind=classified.kind,
            message=classified.message,
            title=title,
            subtitle=subtitle,
            retry=retry,
            code=classified.code,
            cause=classified.cause,
        )
        return RecoveryOutcome(status=status, failure=failure, step_ups=step_ups)


__all__: list[str] = [
    "OutcomeStatus",
    "TerminalFailure",
    "RecoveryOutcome",
    "RefreshEvent",
    "RefreshNotifier",
    "RecoveryOrchestrator",
    "describe",
    "GENERIC_SUBTITLE",
]
