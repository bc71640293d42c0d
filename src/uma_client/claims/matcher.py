"""Declarative claim matching.

A matcher is a partial mapping from required-claim field to accepted
value(s). Specificity counts the fields that were checked: a narrower
matcher that still matches is a more deliberate choice than a broad one.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..models import ClaimFieldValue, RequiredClaim
    from ..protocols import ClaimMatcher, ClaimResolverMatch


@dataclass(frozen=True, slots=True)
class MatchResult:
    """Outcome of evaluating a matcher against a required claim.

    Attributes:
        matched: Whether every checked field accepted the claim.
        specificity: Number of fields checked. On a failed match this counts
            up to and including the failing field and is only useful for
            diagnostics.
    """

    matched: bool
    specificity: int


_REJECTED = MatchResult(matched=False, specificity=0)


def _as_values(value: str | Sequence[str]) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def _matches_field(value: ClaimFieldValue | None, accepted: str | Sequence[str]) -> bool:
    if not value:
        return False
    return not set(_as_values(value)).isdisjoint(_as_values(accepted))


def evaluate_matcher(required: RequiredClaim, matcher: ClaimMatcher) -> MatchResult:
    """Evaluate a single matcher against a required claim.

    Fields with an empty accepted value are skipped. An empty matcher
    trivially matches with specificity 0.
    """
    specificity = 0
    for name, accepted in matcher.items():
        if not accepted:
            continue
        specificity += 1
        if not _matches_field(required.get(name), accepted):
            return MatchResult(matched=False, specificity=specificity)
    return MatchResult(matched=True, specificity=specificity)


def evaluate_match(required: RequiredClaim, match: ClaimResolverMatch | None) -> MatchResult:
    """Evaluate a resolver's ``match`` clause.

    ``None`` matches everything at specificity 0. An alternation matches if
    any alternative does, with the highest specificity among the matching
    alternatives.
    """
    if match is None:
        return MatchResult(matched=True, specificity=0)

    alternatives = [match] if isinstance(match, Mapping) else list(match)
    best = -1
    for alternative in alternatives:
        result = evaluate_matcher(required, alternative)
        if result.matched and result.specificity > best:
            best = result.specificity

    if best < 0:
        return _REJECTED
    return MatchResult(matched=True, specificity=best)
