"""
Claim resolution: declarative matching, resolver selection, and the
built-in ID-token and access-token resolvers.
"""

from .access_token import (
    ACCESS_TOKEN_CLAIM_FORMAT,
    ACCESS_TOKEN_CLAIM_TYPE,
    access_token_claim_resolver,
)
from .id_token import ID_TOKEN_CLAIM_FORMAT, ID_TOKEN_CLAIM_FORMAT_URN, id_token_claim_resolver
from .matcher import MatchResult, evaluate_match, evaluate_matcher
from .registry import (
    ClaimResolverRegistry,
    create_default_claim_resolvers,
    gather_claims,
    resolve_claim_resolver,
)

__all__ = [
    "ACCESS_TOKEN_CLAIM_FORMAT",
    "ACCESS_TOKEN_CLAIM_TYPE",
    "ID_TOKEN_CLAIM_FORMAT",
    "ID_TOKEN_CLAIM_FORMAT_URN",
    "ClaimResolverRegistry",
    "MatchResult",
    "access_token_claim_resolver",
    "create_default_claim_resolvers",
    "evaluate_match",
    "evaluate_matcher",
    "gather_claims",
    "id_token_claim_resolver",
    "resolve_claim_resolver",
]
