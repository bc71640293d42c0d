"""OIDC identity session backing UMA negotiation.

``OIDCSession`` holds the tokens obtained by an OIDC login performed
elsewhere (the authorization-code/PKCE redirect dance is the embedding
application's concern) and exposes what the negotiation core consumes:

- an HTTP transport (``httpx.AsyncClient``)
- the ID token as the baseline UMA claim
- the ordered claim resolver registry

It also keeps the OIDC tokens fresh through authlib's refresh-token grant
and owns the UMA token cache used by the fetch interceptor.

Example
-------

.. code-block:: python

    async with OIDCSession(SessionSettings.from_env()) as session:
        session.set_tokens(token_response_from_login)
        fetch = session.create_auth_fetch()
        response = await fetch("GET", "https://pod.example/private/doc.ttl")
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

import httpx
import jwt
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.oauth2.rfc6749 import OAuth2Token

from .cache_stores import InMemoryUmaTokenCache
from .claims.registry import ClaimResolverRegistry, create_default_claim_resolvers
from .config import SessionSettings
from .errors import MissingIdentityToken, TokenRefreshError, UmaError
from .models import ClaimResolverDefinition
from .negotiation import safe_json

if TYPE_CHECKING:
    from .cache_stores import UmaTokenCacheEntry
    from .fetch import AuthFetch
    from .models import TokenResponse
    from .protocols import ClaimResolveFunc, JsonObject, UmaTokenStore

logger = logging.getLogger(__name__)

_OIDC_WELL_KNOWN = ".well-known/openid-configuration"


def extract_web_id(id_token: str) -> str | None:
    """Read the WebID (or, failing that, the subject) from an ID token.

    The signature is not verified: the token came straight from the
    issuer's token endpoint and is only used here to label the session.
    """
    try:
        claims = jwt.decode(id_token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    return claims.get("webid") or claims.get("sub")


class OIDCSession:
    """Identity session and UMA client entry point.

    Responsibilities:
    - Hold OIDC tokens and refresh them shortly before expiry
    - Provide the baseline ID-token claim and the claim resolver registry
    - Own the HTTP client and the UMA token cache
    - Build fetch interceptors bound to this session

    Resolvers passed at construction are registered after the built-in
    ID-token and access-token resolvers.

    Attributes:
        web_id: WebID (or subject) of the logged-in user, if known.
    """

    def __init__(
        self,
        settings: SessionSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        client: httpx.AsyncClient | None = None,
        claim_resolvers: Iterable[ClaimResolverDefinition] = (),
        token_store: UmaTokenStore | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            settings: Session configuration. Defaults to ``SessionSettings()``.
            transport: httpx transport for the session's own client and for
                token refresh. Tests pass ``httpx.MockTransport`` here.
            client: Ready-made client to use instead of building one.
            claim_resolvers: Extra resolvers, appended after the built-ins.
            token_store: UMA token cache. Defaults to an in-memory cache.
        """
        self._settings = settings or SessionSettings()
        self._transport = transport
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            transport=transport, timeout=self._settings.http_timeout_seconds
        )
        self._registry = ClaimResolverRegistry(
            [*create_default_claim_resolvers(), *claim_resolvers]
        )
        if token_store is None:
            token_store = InMemoryUmaTokenCache(
                default_ttl_seconds=self._settings.uma_token_default_ttl_seconds
            )
        self._token_store: UmaTokenStore = token_store
        self._token: OAuth2Token | None = None
        self.web_id: str | None = None

    # ------------------------------------------------------------------
    # IdentitySession
    # ------------------------------------------------------------------

    def get_transport(self) -> httpx.AsyncClient:
        return self._client

    def get_claim_resolvers(self) -> list[ClaimResolverDefinition]:
        return self._registry.snapshot()

    async def create_claim_token(self) -> str:
        """Return a fresh ID token for use as a UMA claim.

        Raises:
            MissingIdentityToken: If the session holds no ID token.
            TokenRefreshError: If a due refresh fails.
        """
        await self.ensure_valid_token()
        if not self.id_token:
            raise MissingIdentityToken("No OIDC ID token available for UMA claims.")
        return self.id_token

    # ------------------------------------------------------------------
    # Token state
    # ------------------------------------------------------------------

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    @property
    def token_store(self) -> UmaTokenStore:
        return self._token_store

    @property
    def access_token(self) -> str | None:
        return self._token.get("access_token") if self._token else None

    @property
    def id_token(self) -> str | None:
        return self._token.get("id_token") if self._token else None

    @property
    def refresh_token(self) -> str | None:
        return self._token.get("refresh_token") if self._token else None

    @property
    def expires_at(self) -> int | None:
        return self._token.get("expires_at") if self._token else None

    def set_tokens(self, token: Mapping[str, Any]) -> None:
        """Install tokens from an OIDC token response.

        ``expires_in`` is converted to an absolute ``expires_at``. Members
        missing from ``token`` keep their previous values, so a refresh
        response without a new ID token does not drop the current one.
        """
        merged: dict[str, Any] = dict(self._token or {})
        if "expires_in" in token:
            merged.pop("expires_at", None)
        merged.update(token)
        self._token = OAuth2Token(merged)
        if token.get("id_token"):
            self.web_id = extract_web_id(token["id_token"])

    def clear_oidc_tokens(self) -> None:
        self._token = None
        self.web_id = None

    async def is_logged_in(self) -> bool:
        try:
            await self.ensure_valid_token()
        except (UmaError, httpx.HTTPError):
            return False
        return bool(self.access_token or self.id_token)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def get_oidc_config(self, issuer: str) -> JsonObject:
        """Fetch the issuer's OpenID configuration (no caching).

        Raises:
            TokenRefreshError: If the document cannot be fetched or parsed.
        """
        url = f"{issuer.rstrip('/')}/{_OIDC_WELL_KNOWN}"
        response = await self._client.get(url, headers={"Accept": "application/json"})
        data = safe_json(response)
        if not response.is_success or not isinstance(data, Mapping):
            raise TokenRefreshError(f"Failed fetching OIDC configuration ({response.status_code}).")
        return dict(data)

    async def ensure_valid_token(self) -> None:
        """Refresh the tokens if they expire within the configured leeway.

        Does nothing when there is no expiry, no refresh token, or no
        issuer/client configured to refresh against.
        """
        if self._token is None or not self.refresh_token:
            return
        if not self._token.is_expired(leeway=self._settings.refresh_leeway_seconds):
            return
        if not self._settings.issuer or not self._settings.client_id:
            logger.debug("OIDC token is due for refresh but no issuer/client_id is configured")
            return

        config = await self.get_oidc_config(self._settings.issuer)
        token_endpoint = config.get("token_endpoint")
        if not token_endpoint:
            return
        await self.refresh_tokens(token_endpoint)

    async def refresh_tokens(self, token_endpoint: str) -> None:
        """Run the refresh-token grant and install the new tokens.

        Raises:
            TokenRefreshError: If the token endpoint rejects the request.
        """
        if not self.refresh_token:
            return

        async with AsyncOAuth2Client(
            client_id=self._settings.client_id,
            token_endpoint_auth_method="none",
            transport=self._transport,
            timeout=self._settings.http_timeout_seconds,
        ) as oauth:
            try:
                token = await oauth.refresh_token(token_endpoint, refresh_token=self.refresh_token)
            except (AuthlibBaseError, httpx.HTTPError) as e:
                raise TokenRefreshError(f"Refresh token request failed: {e}") from e

        logger.info("Refreshed OIDC tokens for %s", self.web_id or "session")
        self.set_tokens(token)

    # ------------------------------------------------------------------
    # Claim resolvers
    # ------------------------------------------------------------------

    def add_claim_resolver(
        self,
        resolver: str | ClaimResolverDefinition,
        resolve: ClaimResolveFunc | None = None,
    ) -> ClaimResolverDefinition:
        """Register a claim resolver.

        Args:
            resolver: Either a full definition, or a claim token format for
                the single-format shorthand.
            resolve: The resolver function, required with the shorthand.

        Returns:
            The registered definition.

        Raises:
            ValueError: If the shorthand is used without ``resolve``.
        """
        if isinstance(resolver, str):
            if resolve is None:
                raise ValueError("Claim resolver function is required.")
            return self._registry.register_format(resolver, resolve)
        self._registry.register(resolver)
        return resolver

    # ------------------------------------------------------------------
    # UMA tokens and fetch
    # ------------------------------------------------------------------

    def create_auth_fetch(self, *, deadline: float | None = None) -> AuthFetch:
        from .fetch import AuthFetch

        return AuthFetch(self, token_store=self._token_store, deadline=deadline)

    async def get_stored_uma_token(self, resource_url: str, method: str = "GET") -> UmaTokenCacheEntry | None:
        return await self._token_store.get(resource_url, method)

    async def store_uma_token(self, resource_url: str, method: str, token: TokenResponse) -> UmaTokenCacheEntry:
        return await self._token_store.put(resource_url, method, token)

    async def clear_uma_cache(self) -> None:
        await self._token_store.clear()

    async def clear_cache(self) -> None:
        await self.clear_uma_cache()
        self.clear_oidc_tokens()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> OIDCSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
