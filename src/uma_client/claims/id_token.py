"""Built-in resolver pushing the session's OIDC ID token."""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

from ..models import Claim, ClaimResolverDefinition

if TYPE_CHECKING:
    from ..models import RequiredClaim
    from ..protocols import IdentitySession

ID_TOKEN_CLAIM_FORMAT: Final[str] = "http://openid.net/specs/openid-connect-core-1_0.html#IDToken"
ID_TOKEN_CLAIM_FORMAT_URN: Final[str] = "urn:ietf:params:oauth:token-type:id_token"

ID_TOKEN_FORMATS: Final[tuple[str, ...]] = (ID_TOKEN_CLAIM_FORMAT, ID_TOKEN_CLAIM_FORMAT_URN)


async def id_token_claim_resolver(required: RequiredClaim, session: IdentitySession) -> Claim:
    return Claim(
        claim_token=await session.create_claim_token(),
        claim_token_format=ID_TOKEN_CLAIM_FORMAT,
    )


id_token_claim_resolvers: Final[tuple[ClaimResolverDefinition, ...]] = (
    ClaimResolverDefinition(
        id="id-token",
        match=(
            {"claim_token_format": ID_TOKEN_FORMATS},
            {"claim_type": ID_TOKEN_FORMATS},
        ),
        resolve=id_token_claim_resolver,
    ),
)
