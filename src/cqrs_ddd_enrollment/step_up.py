"""Step-up authentication.

When the account-management API reports that the session is not strong
enough for a scope, the user is sent through an interactive login for the
same audience and scope. The credential obtained that way is stored
against the audience before ``upgrade`` returns, so the next fetch for
that audience sees it.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import TYPE_CHECKING

from .classifier import ErrorClassifier, ErrorKind
from .exceptions import StepUpError
from .models import ApiCredentials, ScopedAudience
from .observability.metrics import EnrollmentMetrics

if TYPE_CHECKING:
    from .ports import ICredentialProvider, IInteractiveLogin

logger = logging.getLogger(__name__)


class StepUpAuthenticator:
    """Upgrades the session for one audience/scope pair.

    Holds no state between calls; concurrent upgrades for different
    audiences are independent.

    Example:
        ```python
        step_up = StepUpAuthenticator(login, credential_provider)
        await step_up.upgrade(ScopedAudience.for_scopes(audience, scope))
        ```
    """

    def __init__(
        self,
        login: IInteractiveLogin,
        credential_provider: ICredentialProvider,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        self._login = login
        self._credentials = credential_provider
        self._classifier = classifier or ErrorClassifier()

    async def upgrade(self, scoped_audience: ScopedAudience) -> ApiCredentials:
        """Run the interactive login and store the upgraded credential.

        Args:
            scoped_audience: The audience/scope the failed call needed.

        Returns:
            The stored API credential.

        Raises:
            StepUpError: If the login or the store failed. ``kind`` is
                ``ErrorKind.CANCELLED`` when the user dismissed the login.
        """
        logger.info(
            "Step-up authentication for %s (%s)",
            scoped_audience.audience,
            scoped_audience.scope,
        )
        try:
            credentials = await self._login.login(
                audience=scoped_audience.audience,
                scope=scoped_audience.scope,
            )
            api_credentials = _with_requested_scope(
                ApiCredentials.from_credentials(credentials), scoped_audience
            )
            await self._credentials.store_api_credentials(
                api_credentials, scoped_audience.audience
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            classified = self._classifier.classify(e)
            kind = classified.kind
            if kind is ErrorKind.MFA_REQUIRED:
                # A login cannot itself require step-up
                kind = ErrorKind.UNKNOWN
            logger.info("Step-up authentication failed: %s", kind.value)
            EnrollmentMetrics.record_step_up(kind.value)
            raise StepUpError(classified.message, kind) from e

        EnrollmentMetrics.record_step_up("success")
        return api_credentials


def _with_requested_scope(
    credentials: ApiCredentials, scoped_audience: ScopedAudience
) -> ApiCredentials:
    """Merge the requested scope into the scope the login reported.

    The login was made for ``scoped_audience``; a response that omits or
    abbreviates the scope must still satisfy later fetches for that pair.
    """
    granted = credentials.scope.split()
    missing = [s for s in scoped_audience.scopes if s not in granted]
    if not missing:
        return credentials
    return dataclasses.replace(credentials, scope=" ".join([*granted, *missing]))


__all__: list[str] = ["StepUpAuthenticator"]
