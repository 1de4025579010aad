"""CQRS-DDD Enrollment Package

MFA factor enrollment against an account-management ("My Account") API.

Every factor (email, SMS, TOTP, push, passkey, recovery code) is enrolled
with the same start → confirm protocol. Failures are classified into a
fixed set of error kinds; ``mfa_required`` is recovered by step-up
authentication and a bounded retry, everything else reaches the caller as
a terminal failure with a message and a retry callback.

Usage:
    ```python
    from cqrs_ddd_enrollment import (
        EmailTarget,
        EnrollmentConfig,
        FactorKind,
        OtpProof,
        create_enrollment_components,
    )

    config = EnrollmentConfig(domain="tenant.auth0.com", client_id="abc")
    sdk = create_enrollment_components(config, credential_provider, login)

    async def ask_for_code(challenge):
        return OtpProof(await prompt("Code sent to your inbox"))

    outcome = await sdk.enroll(
        FactorKind.EMAIL, EmailTarget("user@example.com"), ask_for_code
    )
    if not outcome.succeeded:
        show(outcome.failure.title, outcome.failure.subtitle)
    ```

Submodules:
    - `enrollment`: the two-phase enrollment operation
    - `recovery`: recovery orchestrator and refresh notifications
    - `http`: httpx client for the account-management API
    - `credentials`: credential providers
    - `oauth2`: PKCE interactive login for step-up
"""

from __future__ import annotations

# Classification
from .classifier import ClassifiedError, ErrorClassifier, ErrorKind

# Configuration
from .config import EnrollmentConfig, __version__

# Credential providers
from .credentials import (
    CachingCredentialProvider,
    InMemoryCredentialProvider,
    RefreshTokenCredentialProvider,
)

# Enrollment
from .enrollment import (
    EmailTarget,
    FactorEnrollmentOperation,
    OtpProof,
    PasskeyHints,
    PhoneTarget,
    compose_phone_number,
)

# Exceptions
from .exceptions import (
    ChallengeConsumedError,
    ChallengeError,
    ChallengeMismatchError,
    ConfigurationError,
    CredentialsError,
    DecodeError,
    EnrollmentError,
    InteractiveLoginError,
    InvalidEnrollmentInputError,
    LoginCancelledError,
    MyAccountApiError,
    PasskeyCancelledError,
    PasskeyCreationError,
    RemoteError,
    StepUpError,
    TransportError,
)

# Composition
from .factory import EnrollmentComponents, create_enrollment_components
from .http import MyAccountHttpClient

# Models
from .models import (
    ApiCredentials,
    AuthenticationMethod,
    Credentials,
    EmailEnrollmentChallenge,
    EnrollmentChallenge,
    Factor,
    FactorKind,
    NewPasskey,
    PasskeyAuthenticationMethod,
    PasskeyEnrollmentChallenge,
    PhoneEnrollmentChallenge,
    PreferredAuthenticationMethod,
    PushEnrollmentChallenge,
    RecoveryCodeEnrollmentChallenge,
    ScopedAudience,
    TotpEnrollmentChallenge,
)
from .oauth2 import PkceInteractiveLogin

# Ports
from .ports import (
    IBrowser,
    ICredentialProvider,
    IInteractiveLogin,
    IMyAccountClient,
    IPasskeyCreator,
    IRefreshObserver,
)

# Recovery
from .recovery import (
    OutcomeStatus,
    RecoveryOrchestrator,
    RecoveryOutcome,
    RefreshEvent,
    RefreshNotifier,
    TerminalFailure,
)
from .registry import AuthenticationMethodRegistry, FactorOverview, filter_methods
from .step_up import StepUpAuthenticator

__all__: list[str] = [
    # Classification
    "ClassifiedError",
    "ErrorClassifier",
    "ErrorKind",
    # Configuration
    "EnrollmentConfig",
    # Credential providers
    "CachingCredentialProvider",
    "InMemoryCredentialProvider",
    "RefreshTokenCredentialProvider",
    # Enrollment
    "EmailTarget",
    "FactorEnrollmentOperation",
    "OtpProof",
    "PasskeyHints",
    "PhoneTarget",
    "compose_phone_number",
    # Exceptions
    "ChallengeConsumedError",
    "ChallengeError",
    "ChallengeMismatchError",
    "ConfigurationError",
    "CredentialsError",
    "DecodeError",
    "EnrollmentError",
    "InteractiveLoginError",
    "InvalidEnrollmentInputError",
    "LoginCancelledError",
    "MyAccountApiError",
    "PasskeyCancelledError",
    "PasskeyCreationError",
    "RemoteError",
    "StepUpError",
    "TransportError",
    # Composition
    "EnrollmentComponents",
    "create_enrollment_components",
    "MyAccountHttpClient",
    "PkceInteractiveLogin",
    # Models
    "ApiCredentials",
    "AuthenticationMethod",
    "Credentials",
    "EmailEnrollmentChallenge",
    "EnrollmentChallenge",
    "Factor",
    "FactorKind",
    "NewPasskey",
    "PasskeyAuthenticationMethod",
    "PasskeyEnrollmentChallenge",
    "PhoneEnrollmentChallenge",
    "PreferredAuthenticationMethod",
    "PushEnrollmentChallenge",
    "RecoveryCodeEnrollmentChallenge",
    "ScopedAudience",
    "TotpEnrollmentChallenge",
    # Ports
    "IBrowser",
    "ICredentialProvider",
    "IInteractiveLogin",
    "IMyAccountClient",
    "IPasskeyCreator",
    "IRefreshObserver",
    # Recovery
    "OutcomeStatus",
    "RecoveryOrchestrator",
    "RecoveryOutcome",
    "RefreshEvent",
    "RefreshNotifier",
    "TerminalFailure",
    "AuthenticationMethodRegistry",
    "FactorOverview",
    "filter_methods",
    "StepUpAuthenticator",
]
