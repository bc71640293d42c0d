"""Authenticated fetch interceptor.

Wraps an HTTP call and handles ``401 Unauthorized`` responses:

- UMA challenge (``WWW-Authenticate: UMA ...``): negotiate a token with the
  authorization server named in the challenge and retry with it.
- Any other 401: make sure the OIDC access token is fresh and retry with
  ``Authorization: Bearer <token>``.

Every other response is returned untouched. A call retries at most once and
the retried response is never intercepted again.

Error mapping:
- Unusable UMA challenge  -> original 401 returned
- No OIDC access token    -> original 401 returned
- Negotiation failure     -> raised to the caller (UmaError subclasses)
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import httpx

from .challenge import WWW_AUTHENTICATE, get_header, is_uma_challenge, parse_uma_authenticate_header
from .negotiation import fetch_with_uma, resolve_request_url

if TYPE_CHECKING:
    from .protocols import AuthenticatedSession, UmaTokenStore

logger = logging.getLogger(__name__)


class AuthFetch:
    """Callable that performs an HTTP request with lazy UMA/bearer auth.

    The first attempt is sent without OIDC credentials. If a UMA token for
    the same (resource, method) is cached, it is attached to the first
    attempt; a 401 in reply evicts it. The resource is the full request URL,
    query string included.

    Usage:
        fetch = session.create_auth_fetch()
        response = await fetch("GET", "https://pod.example/private/doc.ttl")

    Cancellation:
        Pass ``deadline`` (here or per call) to bound the whole call,
        negotiation included, with ``asyncio.wait_for``. A cancelled call
        does not abort an HTTP exchange already on the wire. The httpx
        ``timeout`` keyword is left alone and still applies per request.
    """

    def __init__(
        self,
        session: AuthenticatedSession,
        *,
        token_store: UmaTokenStore | None = None,
        deadline: float | None = None,
    ) -> None:
        self._session = session
        self._store = token_store
        self._deadline = deadline

    async def __call__(
        self,
        method: str,
        url: str | httpx.URL,
        *,
        deadline: float | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send the request, authenticating on a 401.

        Args:
            method: HTTP method.
            url: Target URL.
            deadline: Overall limit in seconds for this call, negotiation
                included. Overrides the one given at construction.
            **kwargs: Forwarded to ``httpx.AsyncClient.request``. Request
                bodies must be replayable (bytes, str, json, data).

        Returns:
            The first response if it needs no auth, otherwise the response to
            the single retry (or the original 401 when no retry is possible).

        Raises:
            UmaError: If UMA negotiation was entered and failed.
            TimeoutError: If the deadline elapsed.
        """
        limit = deadline if deadline is not None else self._deadline
        if limit is None:
            return await self._fetch(method, url, **kwargs)
        return await asyncio.wait_for(self._fetch(method, url, **kwargs), limit)

    async def get(self, url: str | httpx.URL, **kwargs: Any) -> httpx.Response:
        return await self("GET", url, **kwargs)

    async def _fetch(self, method: str, url: str | httpx.URL, **kwargs: Any) -> httpx.Response:
        client = self._session.get_transport()
        headers = httpx.Headers(kwargs.pop("headers", None))
        target = resolve_request_url(client, method, url, kwargs.pop("params", None))
        resource = str(target)

        # A token already negotiated for this exact resource is sent up front
        # to skip the ticket round trip. A 401 evicts it below.
        cached = await self._store.get(resource, method) if self._store is not None else None
        first_headers = headers.copy()
        if cached is not None:
            first_headers["Authorization"] = cached.authorization

        response = await client.request(method, target, headers=first_headers, **kwargs)
        if response.is_success or response.status_code != 401:
            return response

        if cached is not None and self._store is not None:
            await self._store.delete(resource, method, access_token=cached.access_token)

        if is_uma_challenge(get_header(response.headers, WWW_AUTHENTICATE)):
            challenge = parse_uma_authenticate_header(response.headers)
            if challenge is None or not challenge.is_complete:
                logger.debug("Ignoring unusable UMA challenge from %s", resource)
                return response
            return await fetch_with_uma(
                self._session,
                challenge,
                method,
                target,
                token_store=self._store,
                headers=headers,
                **kwargs,
            )

        await self._session.ensure_valid_token()
        access_token = self._session.access_token
        if not access_token:
            return response

        headers["Authorization"] = f"Bearer {access_token}"
        return await client.request(method, target, headers=headers, **kwargs)
