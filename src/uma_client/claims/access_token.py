"""Built-in resolver that derives an access token from another UMA server.

Some authorization servers (aggregators) accept an access token issued by an
upstream server as a claim. The resolver runs a nested permissions-mode
negotiation against the upstream issuer's token endpoint and pushes the
resulting token.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

from ..errors import ResolutionError
from ..models import Claim, ClaimResolverDefinition, PermissionDescription

if TYPE_CHECKING:
    from ..models import ClaimFieldValue, RequiredClaim
    from ..protocols import IdentitySession

ACCESS_TOKEN_CLAIM_FORMAT: Final[str] = "urn:ietf:params:oauth:token-type:access_token"
ACCESS_TOKEN_CLAIM_TYPE: Final[str] = (
    "https://spec.knows.idlab.ugent.be/aggregator-protocol/latest/#derivation-access"
)


def _pick_single(value: ClaimFieldValue | None, field: str) -> str | None:
    if not value:
        return None
    if isinstance(value, str):
        return value
    if len(value) == 1:
        return value[0]
    raise ResolutionError(f'UMA claim field "{field}" must be a single value.')


async def access_token_claim_resolver(required: RequiredClaim, session: IdentitySession) -> Claim:
    """Obtain an upstream access token for the resource named by the claim.

    The resource id comes from ``name``, falling back to a single
    ``claim_type``. The upstream token endpoint is ``<issuer>/token``.

    Raises:
        ResolutionError: If the claim lacks a single issuer or a resource id.
    """
    # Imported here: negotiation depends on the registry that lists this resolver.
    from ..negotiation import fetch_access_token

    issuer = _pick_single(required.issuer, "issuer")
    resource_id = _pick_single(required.name, "name") or _pick_single(
        required.claim_type, "claim_type"
    )
    if not issuer or not resource_id:
        raise ResolutionError("UMA access_token claim requires issuer and resource identifier.")

    token = await fetch_access_token(
        session,
        f"{issuer.rstrip('/')}/token",
        [PermissionDescription(resource_id=resource_id)],
    )
    return Claim(claim_token=token.access_token, claim_token_format=ACCESS_TOKEN_CLAIM_FORMAT)


access_token_claim_resolvers: Final[tuple[ClaimResolverDefinition, ...]] = (
    ClaimResolverDefinition(
        id="access-token",
        match=(
            {"claim_token_format": ACCESS_TOKEN_CLAIM_FORMAT},
            {"claim_type": ACCESS_TOKEN_CLAIM_FORMAT},
            {"claim_type": ACCESS_TOKEN_CLAIM_TYPE},
        ),
        resolve=access_token_claim_resolver,
    ),
)
