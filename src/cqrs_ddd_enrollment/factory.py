"""Composition root for the enrollment SDK."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .classifier import ErrorClassifier
from .enrollment import (
    EnrollmentPayload,
    EnrollmentProof,
    FactorEnrollmentOperation,
    ProofProvider,
)
from .http import MyAccountHttpClient
from .models import AuthenticationMethod, EnrollmentChallenge, Factor, FactorKind
from .recovery import RecoveryOrchestrator, RecoveryOutcome, RefreshNotifier
from .registry import AuthenticationMethodRegistry, FactorOverview
from .step_up import StepUpAuthenticator

if TYPE_CHECKING:
    from .config import EnrollmentConfig
    from .ports import ICredentialProvider, IInteractiveLogin, IMyAccountClient


@dataclass
class EnrollmentComponents:
    """Wired SDK components.

    The coroutine methods are what screen controllers call: each one runs
    through the recovery orchestrator and never raises for remote failures.
    """

    config: EnrollmentConfig
    client: IMyAccountClient
    credential_provider: ICredentialProvider
    step_up: StepUpAuthenticator
    orchestrator: RecoveryOrchestrator
    registry: AuthenticationMethodRegistry
    operations: dict[FactorKind, FactorEnrollmentOperation] = field(default_factory=dict)

    @property
    def notifier(self) -> RefreshNotifier:
        return self.orchestrator.notifier

    def operation(self, kind: FactorKind) -> FactorEnrollmentOperation:
        return self.operations[kind]

    async def start(
        self,
        kind: FactorKind,
        payload: EnrollmentPayload = None,
    ) -> RecoveryOutcome[EnrollmentChallenge]:
        op = self.operations[kind]
        return await self.orchestrator.run(
            lambda: op.start(payload), op.scoped_audience, name=f"start_{kind.value}"
        )

    async def confirm(
        self,
        kind: FactorKind,
        challenge: EnrollmentChallenge,
        proof: EnrollmentProof = None,
        *,
        on_success: Callable[[AuthenticationMethod], Any] | None = None,
    ) -> RecoveryOutcome[AuthenticationMethod]:
        """Confirm one challenge.

        The challenge is spent by the first attempt, so a retry after step-up
        ends as ``expired`` and the caller restarts with ``start`` (or uses
        ``enroll``, which restarts by itself).
        """
        op = self.operations[kind]
        return await self.orchestrator.run(
            lambda: op.confirm(challenge, proof),
            op.scoped_audience,
            name=f"confirm_{kind.value}",
            on_success=on_success,
        )

    async def enroll(
        self,
        kind: FactorKind,
        payload: EnrollmentPayload = None,
        proof_provider: ProofProvider | None = None,
        *,
        on_success: Callable[[AuthenticationMethod], Any] | None = None,
    ) -> RecoveryOutcome[AuthenticationMethod]:
        op = self.operations[kind]
        return await self.orchestrator.run(
            lambda: op.enroll(payload, proof_provider),
            op.scoped_audience,
            name=f"enroll_{kind.value}",
            on_success=on_success,
        )

    async def list_methods(self) -> RecoveryOutcome[list[AuthenticationMethod]]:
        return await self.orchestrator.run(
            self.registry.list_methods,
            self.registry.list_audience,
            name="list_methods",
        )

    async def delete_method(self, method_id: str) -> RecoveryOutcome[None]:
        return await self.orchestrator.run(
            lambda: self.registry.delete_method(method_id),
            self.registry.delete_audience,
            name="delete_method",
        )

    async def list_factors(self) -> RecoveryOutcome[list[Factor]]:
        return await self.orchestrator.run(
            self.registry.list_factors,
            self.registry.factors_audience,
            name="list_factors",
        )

    async def overview(
        self, supported: Sequence[FactorKind] = tuple(FactorKind)
    ) -> RecoveryOutcome[list[FactorOverview]]:
        return await self.orchestrator.run(
            lambda: self.registry.overview(supported),
            self.registry.overview_audience,
            name="overview",
        )


def create_enrollment_components(
    config: EnrollmentConfig,
    credential_provider: ICredentialProvider,
    interactive_login: IInteractiveLogin,
    *,
    client: IMyAccountClient | None = None,
    classifier: ErrorClassifier | None = None,
    notifier: RefreshNotifier | None = None,
) -> EnrollmentComponents:
    """Wire the SDK from its configuration and external collaborators.

    Args:
        config: SDK configuration.
        credential_provider: Source of API credentials.
        interactive_login: Login used for step-up authentication.
        client: Account-management API client (defaults to the httpx one).
        classifier: Error classifier (defaults to ErrorClassifier()).
        notifier: Refresh notifier shared with other screens.

    Returns:
        The wired components, with one operation per factor kind.

    Example:
        ```python
        sdk = create_enrollment_components(config, provider, login)
        outcome = await sdk.list_methods()
        ```
    """
    classifier = classifier or ErrorClassifier()
    client = client or MyAccountHttpClient(config)
    step_up = StepUpAuthenticator(interactive_login, credential_provider, classifier)
    orchestrator = RecoveryOrchestrator(
        step_up,
        classifier,
        max_step_ups=config.max_step_ups,
        notifier=notifier,
    )
    registry = AuthenticationMethodRegistry(
        client=client, credential_provider=credential_provider, config=config
    )
    operations = {
        kind: FactorEnrollmentOperation(
            kind,
            client=client,
            credential_provider=credential_provider,
            config=config,
        )
        for kind in FactorKind
    }
    return EnrollmentComponents(
        config=config,
        client=client,
        credential_provider=credential_provider,
        step_up=step_up,
        orchestrator=orchestrator,
        registry=registry,
        operations=operations,
    )


__all__: list[str] = ["EnrollmentComponents", "create_enrollment_components"]
