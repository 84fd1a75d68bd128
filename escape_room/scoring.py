from typing import Sequence, Tuple

from .settings import NO_BADGE


def badge(duration_seconds: int, thresholds: Sequence[Tuple[str, int]]) -> str:
    """Map an elapsed time to a badge tier.

    ``thresholds`` is a table of ``(tier, upper_bound_seconds)``. Entries are
    checked in ascending bound order and the first bound strictly greater than
    the duration wins; past the last bound the team gets ``"none"``.
    """
    for tier, bound in sorted(thresholds, key=lambda entry: entry[1]):
        if duration_seconds < bound:
            return tier
    return NO_BADGE
