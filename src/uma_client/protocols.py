"""Protocol definitions for the UMA negotiation client.

This module defines structural interfaces using Protocol (PEP 544) for:
- The identity session the negotiation core consumes
- The authenticated session the fetch interceptor falls back to
- UMA token caching

Using protocols allows for duck-typing and easier testing/mocking without
requiring explicit inheritance. Any class that implements the required methods
satisfies the protocol.

Type aliases provide semantic clarity and adapt easily to future changes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    import httpx

    from .cache_stores import UmaTokenCacheEntry
    from .models import Claim, ClaimResolverDefinition, RequiredClaim, TokenResponse

# ============================================================================
# Type Aliases
# ============================================================================

type JsonObject = dict[str, Any]
"""A decoded JSON object."""

type ClaimMatcher = Mapping[str, str | Sequence[str]]
"""Partial mapping from required-claim field to accepted value(s)."""

type ClaimResolverMatch = ClaimMatcher | Sequence[ClaimMatcher]
"""A single matcher, or an ordered alternation of matchers (logical OR)."""

type ClaimResolveFunc = Callable[
    [RequiredClaim, IdentitySession], Claim | None | Awaitable[Claim | None]
]
"""Resolver implementation. Plain functions and coroutine functions are both accepted."""


# ============================================================================
# Core Protocols
# ============================================================================


class IdentitySession(Protocol):
    """Capabilities the negotiation core needs from an identity session.

    ``OIDCSession`` is the bundled implementation. Tests and embedding
    applications can supply any object with these three methods.
    """

    def get_transport(self) -> httpx.AsyncClient:
        """Return the HTTP client used for every negotiation request."""
        ...

    async def create_claim_token(self) -> str:
        """Return the ID token used as the baseline identity claim.

        Raises:
            MissingIdentityToken: If no ID token is currently available.
        """
        ...

    def get_claim_resolvers(self) -> list[ClaimResolverDefinition]:
        """Return the registered resolvers in registration order."""
        ...


class AuthenticatedSession(IdentitySession, Protocol):
    """Identity session that can also authenticate plain bearer requests.

    The fetch interceptor needs this wider interface for its non-UMA path.
    """

    @property
    def access_token(self) -> str | None:
        """Current OIDC access token, if any."""
        ...

    async def ensure_valid_token(self) -> None:
        """Refresh the OIDC tokens if they are about to expire."""
        ...


class UmaTokenStore(Protocol):
    """Protocol for caching UMA access tokens per (resource, method).

    Entries are keyed by ``"<METHOD> <resource_url>"`` with the method
    upper-cased. Expired entries must never be returned; implementations evict
    them lazily on read. Every operation is a coroutine so network-backed
    stores do not block the event loop.
    """

    async def get(self, resource_url: str, method: str = "GET") -> UmaTokenCacheEntry | None:
        """Retrieve a live cached token.

        Args:
            resource_url: URL of the protected resource.
            method: HTTP method of the request. Case-insensitive.

        Returns:
            The cache entry, or None if absent or expired (and then evicted).
        """
        ...

    async def put(self, resource_url: str, method: str, token: TokenResponse) -> UmaTokenCacheEntry:
        """Store a token obtained by negotiation.

        Last write wins when two negotiations race for the same key.

        Returns:
            The entry as stored, with ``expires_at`` computed.
        """
        ...

    async def delete(
        self, resource_url: str, method: str = "GET", *, access_token: str | None = None
    ) -> None:
        """Remove the entry for the key, if present.

        Args:
            resource_url: URL of the protected resource.
            method: HTTP method of the request.
            access_token: If given, remove the entry only while it still holds
                this token. Must be atomic with respect to concurrent ``put``.
        """
        ...

    async def clear(self) -> None:
        """Remove every entry."""
        ...
