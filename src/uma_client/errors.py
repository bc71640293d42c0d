"""UMA negotiation errors.

This module defines the exception hierarchy for UMA claim negotiation.
All errors inherit from UmaError to allow catch-all error handling.

Propagation:
    Every failure raised once the negotiation loop has started travels up
    through the fetch interceptor to the original caller. The only failure
    absorbed locally is an unparseable UMA challenge, for which the
    interceptor returns the original 401 response instead of raising.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import RequiredClaim


class UmaError(Exception):
    """Base exception for all UMA negotiation failures.

    Application code can catch this single exception type to handle any
    negotiation failure generically.
    """


class ProtocolError(UmaError):  # noqa: N818
    """Raised when an authorization server violates the UMA wire contract.

    This occurs when:
    - A successful token response lacks ``access_token`` or ``token_type``
    - A ``need_info`` response carries no ``required_claims``
    - The token endpoint fails with anything other than ``need_info``
    - Metadata discovery fails or returns no ``token_endpoint``

    These failures are never retried.

    Attributes:
        status: HTTP status code of the offending response.
        payload: Decoded JSON body (or raw text) of the offending response,
            if any.
    """

    def __init__(self, message: str, status: int, payload: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.payload = payload


class NegotiationStuck(UmaError):  # noqa: N818
    """Raised when the server re-requests a claim that was already pushed.

    Every required claim listed in a ``need_info`` response has a canonical
    key already present in the run's pushed set. Issuing another request would
    loop forever against a misbehaving or cyclically-demanding server, so the
    run stops here without sending anything else.

    Attributes:
        required_claims: The claims the server asked for in its last response.
    """

    def __init__(self, message: str, required_claims: list[RequiredClaim]) -> None:
        super().__init__(message)
        self.required_claims = required_claims


class ResolutionError(UmaError):
    """Raised when a required claim cannot be turned into a claim token.

    This occurs when:
    - No registered resolver matches the required claim
    - The selected resolver produces nothing
    - The produced claim lacks ``claim_token`` or ``claim_token_format``
    - A resolver's own preconditions are not met
    """


class NoResolverMatched(ResolutionError):  # noqa: N818
    """Raised when no registered resolver accepts a required claim.

    Attributes:
        required_claim: The claim for which no resolver was found.
    """

    def __init__(self, required_claim: RequiredClaim) -> None:
        super().__init__(
            f"No claim resolver matched required claim: {required_claim.to_json()}"
        )
        self.required_claim = required_claim


class MissingIdentityToken(UmaError):  # noqa: N818
    """Raised when a claim token is requested but no ID token is available.

    The identity session has not been logged in, or its tokens were cleared.
    """


class TokenRefreshError(UmaError):
    """Raised when the OIDC refresh-token grant fails.

    This occurs when:
    - The issuer's OpenID configuration cannot be fetched
    - The token endpoint rejects the refresh token
    """


class SessionAlreadyCreated(UmaError):  # noqa: N818
    """Raised when the default session is reconfigured after first use."""
