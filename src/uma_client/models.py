"""Data model and wire records for the UMA ticket grant.

Every record here is an immutable dataclass. Records that travel over the
wire provide ``from_dict`` (server → client) or ``to_payload`` (client →
server) so the negotiation loop never handles raw dicts beyond the JSON
boundary.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Literal

if TYPE_CHECKING:
    from .protocols import ClaimResolveFunc, ClaimResolverMatch, JsonObject

UMA_TICKET_GRANT_TYPE: Final[str] = "urn:ietf:params:oauth:grant-type:uma-ticket"
"""OAuth grant type for the UMA 2.0 ticket grant."""

CLAIM_FIELDS: Final[tuple[str, ...]] = (
    "claim_token_format",
    "claim_type",
    "issuer",
    "name",
    "friendly_name",
)
"""Required-claim fields that take part in matching and claim keys."""

type ClaimFieldValue = str | tuple[str, ...]


def _field_value(value: Any) -> ClaimFieldValue | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, Sequence):
        return tuple(str(item) for item in value)
    return str(value)


@dataclass(frozen=True, slots=True)
class RequiredClaim:
    """One line item an authorization server demands before issuing a token.

    Each field holds either a single accepted value or a tuple of acceptable
    values. Fields the server did not send are ``None``.

    Attributes:
        claim_token_format: URI(s) identifying the claim token format.
        claim_type: URI(s) identifying the type of claim.
        issuer: Issuer(s) the claim needs to come from.
        name: Name of the claim request.
        friendly_name: Human-friendly name for the claim.
        extra: Any other members the server sent. Never used for matching.
    """

    claim_token_format: ClaimFieldValue | None = None
    claim_type: ClaimFieldValue | None = None
    issuer: ClaimFieldValue | None = None
    name: ClaimFieldValue | None = None
    friendly_name: ClaimFieldValue | None = None
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RequiredClaim:
        """Build a required claim from a ``required_claims`` list item."""
        values = {name: _field_value(data.get(name)) for name in CLAIM_FIELDS}
        extra = {key: value for key, value in data.items() if key not in CLAIM_FIELDS}
        return cls(**values, extra=extra)

    def get(self, name: str) -> ClaimFieldValue | None:
        if name not in CLAIM_FIELDS:
            return None
        return getattr(self, name)

    def to_dict(self) -> JsonObject:
        """Return the populated claim fields, tuples rendered as lists."""
        out: dict[str, Any] = {}
        for name in CLAIM_FIELDS:
            value = self.get(name)
            if value is None:
                continue
            out[name] = list(value) if isinstance(value, tuple) else value
        return out

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)


@dataclass(frozen=True, slots=True)
class Claim:
    """Material a resolver produces to satisfy a required claim.

    Both fields are optional on the type so an incomplete claim can be
    reported as a resolution failure instead of a construction error.
    """

    claim_token: str | None = None
    claim_token_format: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Claim:
        return cls(
            claim_token=data.get("claim_token"),
            claim_token_format=data.get("claim_token_format"),
        )

    @property
    def is_complete(self) -> bool:
        return bool(self.claim_token) and bool(self.claim_token_format)


@dataclass(frozen=True, slots=True)
class ClaimResolverDefinition:
    """A resolver record selected by the matching algorithm.

    Attributes:
        id: Resolver identifier, used in logs and diagnostics.
        resolve: Callable ``(required, session) -> Claim | None``. May be a
            coroutine function.
        match: One matcher or an ordered sequence of alternative matchers.
            ``None`` matches every required claim at specificity 0.
        priority: Higher wins over specificity. Defaults to 0.
    """

    id: str
    resolve: ClaimResolveFunc
    match: ClaimResolverMatch | None = None
    priority: int = 0


@dataclass(frozen=True, slots=True)
class AuthorizationChallenge:
    """A parsed ``WWW-Authenticate: UMA ...`` challenge.

    ``as_uri`` and ``ticket`` are read verbatim from the header and may be
    missing; both are required before negotiation can start.
    """

    as_uri: str | None
    ticket: str | None
    scheme: Literal["UMA"] = "UMA"

    @property
    def is_complete(self) -> bool:
        return bool(self.as_uri) and bool(self.ticket)


@dataclass(frozen=True, slots=True)
class PermissionDescription:
    """A permission requested directly, without a ticket."""

    resource_id: str
    resource_scopes: tuple[str, ...] | None = None

    def to_dict(self) -> JsonObject:
        out: dict[str, Any] = {"resource_id": self.resource_id}
        if self.resource_scopes is not None:
            out["resource_scopes"] = list(self.resource_scopes)
        return out


@dataclass(frozen=True, slots=True)
class TokenRequest:
    """UMA token endpoint request body.

    Exactly one of ``ticket`` and ``permissions`` is set.
    """

    ticket: str | None = None
    permissions: tuple[PermissionDescription, ...] | None = None
    claim: Claim | None = None
    scope: str | None = None
    grant_type: str = UMA_TICKET_GRANT_TYPE

    def to_payload(self) -> JsonObject:
        payload: dict[str, Any] = {"grant_type": self.grant_type}
        if self.ticket is not None:
            payload["ticket"] = self.ticket
        if self.permissions is not None:
            payload["permissions"] = [p.to_dict() for p in self.permissions]
        if self.claim is not None:
            payload["claim_token"] = self.claim.claim_token
            payload["claim_token_format"] = self.claim.claim_token_format
        if self.scope is not None:
            payload["scope"] = self.scope
        return payload


@dataclass(frozen=True, slots=True)
class TokenResponse:
    """Successful UMA token endpoint response.

    Attributes:
        access_token: The requesting party token.
        token_type: Token type, typically ``Bearer``.
        expires_in: Lifetime in seconds, if the server sent one.
        extra: All other members of the response body.
    """

    access_token: str
    token_type: str
    expires_in: int | None = None
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TokenResponse:
        expires_in = data.get("expires_in")
        return cls(
            access_token=data["access_token"],
            token_type=data["token_type"],
            expires_in=int(expires_in) if expires_in is not None else None,
            extra={
                key: value
                for key, value in data.items()
                if key not in ("access_token", "token_type", "expires_in")
            },
        )

    @property
    def authorization(self) -> str:
        """Value for the ``Authorization`` header of the retried request."""
        return f"{self.token_type} {self.access_token}"


@dataclass(frozen=True, slots=True)
class NeedInfoResponse:
    """A ``need_info`` failure from the token endpoint."""

    required_claims: tuple[RequiredClaim, ...]
    ticket: str | None = None
    interval: int | None = None
    redirect_user: str | None = None
    error_description: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NeedInfoResponse:
        raw_claims = data.get("required_claims") or []
        return cls(
            required_claims=tuple(
                RequiredClaim.from_dict(item)
                for item in raw_claims
                if isinstance(item, Mapping)
            ),
            ticket=data.get("ticket"),
            interval=data.get("interval"),
            redirect_user=data.get("redirect_user"),
            error_description=data.get("error_description"),
        )


@dataclass(frozen=True, slots=True)
class AuthorizationServerMetadata:
    """The ``.well-known/uma2-configuration`` document.

    Only ``token_endpoint`` is needed by the negotiation loop; the full
    document is kept in ``raw``.
    """

    token_endpoint: str | None
    issuer: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AuthorizationServerMetadata:
        return cls(
            token_endpoint=data.get("token_endpoint"),
            issuer=data.get("issuer"),
            raw=dict(data),
        )
