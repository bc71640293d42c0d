"""
UMA claim negotiation on top of an OIDC identity session.

High-level flow (per protected request)
---------------------------------------
1. `AuthFetch` sends the request without OIDC credentials.
2. On `401` with `WWW-Authenticate: UMA as_uri=..., ticket=...`:
   - `parse_uma_authenticate_header` extracts the challenge
   - `discover_uma_configuration` finds the authorization server's token endpoint
   - `fetch_access_token` exchanges the ticket, pushing the ID token first and
     then one resolver-produced claim per `need_info` response
   - The request is retried once with `Authorization: <token_type> <access_token>`
3. On any other `401`: the OIDC access token is refreshed if due and the
   request is retried once with `Authorization: Bearer <access_token>`.
4. Every other response is returned untouched.

Termination notes
-----------------
- A negotiation run never pushes the same required claim twice.
- When the server only asks for claims already pushed, `NegotiationStuck` is raised.
- Malformed server responses raise `ProtocolError` and are never retried.

Example usage
-------------

.. code-block:: python

    from uma_client import OIDCSession, SessionSettings, Claim

    async with OIDCSession(SessionSettings.from_env()) as session:
        session.set_tokens(tokens_from_login)

        # Teach the session to answer a custom claim type
        async def resolve_membership(required, session):
            return Claim(
                claim_token=await issue_membership_vc(),
                claim_token_format="urn:example:vc",
            )

        session.add_claim_resolver("urn:example:vc", resolve_membership)

        fetch = session.create_auth_fetch(deadline=30)
        response = await fetch("GET", "https://pod.example/private/doc.ttl")
"""

# Cache stores
from .cache_stores import InMemoryUmaTokenCache, RedisUmaTokenCache, UmaTokenCacheEntry

# Challenge parsing
from .challenge import parse_uma_authenticate_header

# Claim resolution
from .claims import (
    ACCESS_TOKEN_CLAIM_FORMAT,
    ACCESS_TOKEN_CLAIM_TYPE,
    ID_TOKEN_CLAIM_FORMAT,
    ID_TOKEN_CLAIM_FORMAT_URN,
    ClaimResolverRegistry,
    MatchResult,
    create_default_claim_resolvers,
    evaluate_match,
    evaluate_matcher,
    gather_claims,
    resolve_claim_resolver,
)

# Configuration
from .config import SessionSettings

# Default session
from .default_session import configure_default_session, get_default_session

# Errors
from .errors import (
    MissingIdentityToken,
    NegotiationStuck,
    NoResolverMatched,
    ProtocolError,
    ResolutionError,
    SessionAlreadyCreated,
    TokenRefreshError,
    UmaError,
)

# Fetch interceptor
from .fetch import AuthFetch

# Models
from .models import (
    UMA_TICKET_GRANT_TYPE,
    AuthorizationChallenge,
    AuthorizationServerMetadata,
    Claim,
    ClaimResolverDefinition,
    NeedInfoResponse,
    PermissionDescription,
    RequiredClaim,
    TokenRequest,
    TokenResponse,
)

# Negotiation
from .negotiation import (
    build_claim_key,
    discover_uma_configuration,
    fetch_access_token,
    fetch_with_uma,
    negotiate_challenge,
)

# Protocols
from .protocols import (
    AuthenticatedSession,
    ClaimMatcher,
    ClaimResolveFunc,
    ClaimResolverMatch,
    IdentitySession,
    UmaTokenStore,
)

# Session
from .session import OIDCSession, extract_web_id

__all__ = [
    # Errors
    "UmaError",
    "ProtocolError",
    "NegotiationStuck",
    "ResolutionError",
    "NoResolverMatched",
    "MissingIdentityToken",
    "TokenRefreshError",
    "SessionAlreadyCreated",
    # Protocols
    "AuthenticatedSession",
    "ClaimMatcher",
    "ClaimResolveFunc",
    "ClaimResolverMatch",
    "IdentitySession",
    "UmaTokenStore",
    # Models
    "UMA_TICKET_GRANT_TYPE",
    "AuthorizationChallenge",
    "AuthorizationServerMetadata",
    "Claim",
    "ClaimResolverDefinition",
    "NeedInfoResponse",
    "PermissionDescription",
    "RequiredClaim",
    "TokenRequest",
    "TokenResponse",
    # Claim resolution
    "ACCESS_TOKEN_CLAIM_FORMAT",
    "ACCESS_TOKEN_CLAIM_TYPE",
    "ID_TOKEN_CLAIM_FORMAT",
    "ID_TOKEN_CLAIM_FORMAT_URN",
    "ClaimResolverRegistry",
    "MatchResult",
    "create_default_claim_resolvers",
    "evaluate_match",
    "evaluate_matcher",
    "gather_claims",
    "resolve_claim_resolver",
    # Challenge parsing
    "parse_uma_authenticate_header",
    # Negotiation
    "build_claim_key",
    "discover_uma_configuration",
    "fetch_access_token",
    "fetch_with_uma",
    "negotiate_challenge",
    # Cache stores
    "InMemoryUmaTokenCache",
    "RedisUmaTokenCache",
    "UmaTokenCacheEntry",
    # Fetch interceptor
    "AuthFetch",
    # Session
    "OIDCSession",
    "SessionSettings",
    "extract_web_id",
    "configure_default_session",
    "get_default_session",
]
