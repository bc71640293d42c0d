"""Claim resolver registry and selection.

Resolvers are plain ``ClaimResolverDefinition`` records. Selection ranks
every matching resolver by ``(priority, specificity)`` and keeps the first
registered resolver among exact ties, so built-in resolvers (registered
first) win ties against user resolvers unless given a higher priority.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import TYPE_CHECKING

from ..errors import NoResolverMatched
from ..models import Claim, ClaimResolverDefinition
from .access_token import access_token_claim_resolvers
from .id_token import id_token_claim_resolvers
from .matcher import evaluate_match

if TYPE_CHECKING:
    from ..models import RequiredClaim
    from ..protocols import ClaimResolveFunc, IdentitySession

logger = logging.getLogger(__name__)


def create_default_claim_resolvers() -> list[ClaimResolverDefinition]:
    """Return the built-in resolvers, ID token first."""
    return [*id_token_claim_resolvers, *access_token_claim_resolvers]


class ClaimResolverRegistry:
    """Ordered, appendable collection of claim resolvers.

    Insertion order is the final tie-break during selection. Resolvers may be
    appended at any time; negotiations read a snapshot.

    Example:
        ```python
        registry = ClaimResolverRegistry(create_default_claim_resolvers())
        registry.register_format("urn:example:vc", resolve_vc)
        resolver = resolve_claim_resolver(required, registry.snapshot())
        ```
    """

    def __init__(self, resolvers: Iterable[ClaimResolverDefinition] = ()) -> None:
        self._resolvers: list[ClaimResolverDefinition] = list(resolvers)

    def register(self, definition: ClaimResolverDefinition) -> None:
        self._resolvers.append(definition)

    def register_format(self, claim_token_format: str, resolve: ClaimResolveFunc) -> ClaimResolverDefinition:
        """Register a resolver that matches a single claim token format.

        The resolver only accepts required claims whose ``claim_token_format``
        equals ``claim_token_format``.

        Returns:
            The definition that was registered.
        """
        definition = ClaimResolverDefinition(
            id=f"custom:{claim_token_format}",
            match={"claim_token_format": claim_token_format},
            resolve=resolve,
        )
        self.register(definition)
        return definition

    def snapshot(self) -> list[ClaimResolverDefinition]:
        return list(self._resolvers)

    def __iter__(self) -> Iterator[ClaimResolverDefinition]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._resolvers)


def resolve_claim_resolver(
    required: RequiredClaim,
    resolvers: Iterable[ClaimResolverDefinition],
) -> ClaimResolverDefinition | None:
    """Select the best resolver for a required claim.

    Args:
        required: The claim the authorization server asked for.
        resolvers: Candidates in registration order.

    Returns:
        The matching resolver with the highest ``(priority, specificity)``
        rank, the earliest registered among exact ties, or None if nothing
        matches.
    """
    best: ClaimResolverDefinition | None = None
    best_rank: tuple[int, int] | None = None

    for resolver in resolvers:
        result = evaluate_match(required, resolver.match)
        if not result.matched:
            continue
        rank = (resolver.priority, result.specificity)
        # Strictly greater only: earlier registrations keep exact ties.
        if best_rank is None or rank > best_rank:
            best, best_rank = resolver, rank

    return best


async def gather_claims(
    existing: Sequence[Claim],
    required_claims: Sequence[RequiredClaim] | None,
    session: IdentitySession,
    resolvers: Iterable[ClaimResolverDefinition],
) -> list[Claim]:
    """Resolve each required claim, in order, into claim material.

    Args:
        existing: Claims already gathered; copied into the result.
        required_claims: Claims to satisfy.
        session: Identity session handed to each resolver.
        resolvers: Candidate resolvers in registration order.

    Returns:
        ``existing`` followed by every claim the selected resolvers produced.
        Resolvers returning None contribute nothing.

    Raises:
        NoResolverMatched: If any required claim has no matching resolver.
    """
    claims = list(existing)
    if not required_claims:
        return claims

    candidates = list(resolvers)
    for required in required_claims:
        resolver = resolve_claim_resolver(required, candidates)
        if resolver is None:
            raise NoResolverMatched(required)

        logger.debug("Resolving %s with resolver %r", required.to_json(), resolver.id)
        produced = resolver.resolve(required, session)
        if inspect.isawaitable(produced):
            produced = await produced

        if produced is None:
            continue
        if isinstance(produced, Mapping):
            produced = Claim.from_dict(produced)
        claims.append(produced)

    return claims
