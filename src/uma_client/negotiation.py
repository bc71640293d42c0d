"""UMA ticket-grant negotiation.

High-level flow
---------------
1. ``discover_uma_configuration`` fetches the authorization server's
   ``.well-known/uma2-configuration`` to find its ``token_endpoint``.
2. ``fetch_access_token`` POSTs the ticket (or permissions) together with the
   session's ID token as the baseline claim.
3. On ``need_info`` it pushes exactly one not-yet-pushed required claim,
   resolved through the claim registry, and tries again.
4. It stops on an access token, or raises as soon as the server asks only for
   claims already pushed in this run.

Termination
-----------
The pushed set only grows and each ``need_info`` response lists finitely many
claim keys, so a run either makes progress or raises ``NegotiationStuck``.
No iteration cap is needed on top of that guard.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Final
from urllib.parse import urljoin

import httpx

from .claims.id_token import ID_TOKEN_CLAIM_FORMAT, ID_TOKEN_FORMATS
from .claims.registry import gather_claims
from .errors import NegotiationStuck, ProtocolError, ResolutionError
from .models import (
    AuthorizationServerMetadata,
    Claim,
    NeedInfoResponse,
    PermissionDescription,
    RequiredClaim,
    TokenRequest,
    TokenResponse,
)

if TYPE_CHECKING:
    from .models import AuthorizationChallenge
    from .protocols import IdentitySession, UmaTokenStore

logger = logging.getLogger(__name__)

UMA_WELL_KNOWN: Final[str] = ".well-known/uma2-configuration"
NEED_INFO: Final[str] = "need_info"

type UmaRequest = str | Sequence[PermissionDescription]
"""A ticket string, or the permissions requested directly."""


def safe_json(response: httpx.Response) -> Any:
    """Decode a JSON body, returning None for empty or malformed bodies."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def build_claim_key(claim: RequiredClaim) -> str:
    """Canonical key identifying a required claim within one negotiation run.

    Populated fields are serialized as JSON with sorted keys; set-valued
    fields are sorted so the key does not depend on the order the server
    listed them in.
    """
    normalized: dict[str, Any] = {}
    for name, value in claim.to_dict().items():
        normalized[name] = sorted(value) if isinstance(value, list) else value
    return json.dumps(normalized, sort_keys=True)


def seed_id_token_claims(pushed: set[str]) -> None:
    """Mark both ID-token formats and types as already pushed."""
    for claim_format in ID_TOKEN_FORMATS:
        pushed.add(build_claim_key(RequiredClaim(claim_token_format=claim_format)))
        pushed.add(build_claim_key(RequiredClaim(claim_type=claim_format)))


def resolve_request_url(
    client: httpx.AsyncClient,
    method: str,
    url: str | httpx.URL,
    params: Any = None,
) -> httpx.URL:
    """Return the absolute URL a request will go to, query params merged.

    This is the resource identity used for UMA token cache keys.
    """
    return client.build_request(method, url, params=params).url


def uma_configuration_url(as_uri: str) -> str:
    if "/.well-known/" in as_uri:
        return as_uri
    base = as_uri if as_uri.endswith("/") else f"{as_uri}/"
    return urljoin(base, UMA_WELL_KNOWN)


async def discover_uma_configuration(
    as_uri: str,
    client: httpx.AsyncClient,
) -> AuthorizationServerMetadata:
    """Fetch the authorization server's UMA metadata document.

    Nothing is cached across calls.

    Raises:
        ProtocolError: If the fetch fails or the body is empty or not JSON.
    """
    url = uma_configuration_url(as_uri)
    response = await client.get(url, headers={"Accept": "application/json"})

    if not response.is_success:
        raise ProtocolError(
            f"Failed to discover UMA metadata ({response.status_code}).",
            response.status_code,
        )

    data = safe_json(response)
    if not isinstance(data, Mapping):
        raise ProtocolError("UMA metadata response was empty.", response.status_code)
    return AuthorizationServerMetadata.from_dict(data)


def _select_unpushed(
    required_claims: Sequence[RequiredClaim], pushed: set[str]
) -> tuple[RequiredClaim, str] | None:
    for claim in required_claims:
        key = build_claim_key(claim)
        if key not in pushed:
            return claim, key
    return None


async def fetch_access_token(
    session: IdentitySession,
    token_endpoint: str,
    request: UmaRequest,
    *,
    scope: str | None = None,
) -> TokenResponse:
    """Run the UMA negotiation loop until a token is issued.

    Args:
        session: Supplies the transport, the baseline ID token and the
            claim resolvers.
        token_endpoint: The authorization server's token endpoint.
        request: A permission ticket, or permissions requested directly.
        scope: Optional global scope sent with every request.

    Returns:
        The successful token response.

    Raises:
        ProtocolError: Malformed success body, ``need_info`` without required
            claims, or any other failure status.
        NegotiationStuck: The server asked only for claims already pushed.
        ResolutionError: A required claim could not be resolved into a
            complete claim.
        MissingIdentityToken: The session has no ID token to seed with.
    """
    client = session.get_transport()
    pushed: set[str] = set()
    seed_id_token_claims(pushed)

    pending: Claim | None = Claim(
        claim_token=await session.create_claim_token(),
        claim_token_format=ID_TOKEN_CLAIM_FORMAT,
    )
    current: UmaRequest = request
    attempt = 0

    while True:
        attempt += 1
        if isinstance(current, str):
            token_request = TokenRequest(ticket=current, claim=pending, scope=scope)
        else:
            token_request = TokenRequest(permissions=tuple(current), claim=pending, scope=scope)

        logger.debug(
            "UMA token request #%d to %s (claim format %s)",
            attempt,
            token_endpoint,
            pending.claim_token_format if pending else None,
        )
        response = await client.post(token_endpoint, json=token_request.to_payload())
        body = safe_json(response)

        if response.is_success:
            if (
                not isinstance(body, Mapping)
                or not body.get("access_token")
                or not body.get("token_type")
            ):
                raise ProtocolError(
                    "UMA token response missing access_token or token_type.",
                    response.status_code,
                    body,
                )
            try:
                token = TokenResponse.from_dict(body)
            except (TypeError, ValueError) as e:
                raise ProtocolError(
                    "UMA token response has a malformed expires_in.",
                    response.status_code,
                    body,
                ) from e
            logger.debug("UMA token issued after %d request(s)", attempt)
            return token

        if not isinstance(body, Mapping) or body.get("error") != NEED_INFO:
            logger.warning("UMA token request failed with status %d", response.status_code)
            raise ProtocolError(
                f"UMA token request failed ({response.status_code}).",
                response.status_code,
                body if body is not None else response.text,
            )

        need_info = NeedInfoResponse.from_dict(body)
        if not need_info.required_claims:
            raise ProtocolError(
                "UMA server requested additional claims but did not specify any.",
                response.status_code,
                body,
            )

        selected = _select_unpushed(need_info.required_claims, pushed)
        if selected is None:
            raise NegotiationStuck(
                "UMA server requested claims that were already pushed: "
                + json.dumps([c.to_dict() for c in need_info.required_claims]),
                list(need_info.required_claims),
            )

        required, key = selected
        pushed.add(key)
        logger.debug("Pushing claim %s", key)

        resolved = await gather_claims([], [required], session, session.get_claim_resolvers())
        if not resolved:
            raise ResolutionError("No resolver produced a claim for the required claim.")
        if not resolved[0].is_complete:
            raise ResolutionError("Resolved claim is missing claim_token or format.")

        pending = resolved[0]
        if isinstance(current, str) and need_info.ticket:
            current = need_info.ticket


async def negotiate_challenge(
    session: IdentitySession,
    challenge: AuthorizationChallenge,
) -> TokenResponse:
    """Discover the challenge's authorization server and negotiate its ticket.

    Raises:
        ProtocolError: If the challenge is incomplete or the metadata has no
            ``token_endpoint``, plus everything ``fetch_access_token`` raises.
    """
    if not challenge.as_uri or not challenge.ticket:
        raise ProtocolError("UMA challenge is missing as_uri or ticket.", 401)

    metadata = await discover_uma_configuration(challenge.as_uri, session.get_transport())
    if not metadata.token_endpoint:
        raise ProtocolError("UMA metadata is missing a token_endpoint.", 200, dict(metadata.raw))

    return await fetch_access_token(session, metadata.token_endpoint, challenge.ticket)


async def fetch_with_uma(
    session: IdentitySession,
    challenge: AuthorizationChallenge,
    method: str,
    url: str | httpx.URL,
    *,
    token_store: UmaTokenStore | None = None,
    **kwargs: Any,
) -> httpx.Response:
    """Negotiate a token for ``challenge`` and retry the request once with it.

    Args:
        session: Identity session.
        challenge: The parsed UMA challenge from the 401 response.
        method: HTTP method of the original request.
        url: URL of the original request.
        token_store: If given, the obtained token is cached for the
            (resource, method) pair. The resource is the full request URL,
            including any ``params``.
        **kwargs: Forwarded to ``httpx.AsyncClient.request``.

    Returns:
        The response to the retried request, whatever its status.
    """
    client = session.get_transport()
    target = resolve_request_url(client, method, url, kwargs.pop("params", None))

    token = await negotiate_challenge(session, challenge)
    if token_store is not None:
        await token_store.put(str(target), method, token)

    headers = httpx.Headers(kwargs.pop("headers", None))
    headers["Authorization"] = token.authorization
    return await client.request(method, target, headers=headers, **kwargs)
