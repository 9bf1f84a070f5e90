"""Archetype Matcher - Stage 3 of the lens pipeline.

Ranks a lens's archetypes by cosine similarity to a weight profile and
picks the closest one, falling back to the ``custom`` sentinel when nothing
is close enough.
"""

import logging
import math
from collections.abc import Sequence
from typing import Optional

from lens_catalog.errors import LensMismatchError

from .config import EngineConfig, get_config
from .explainer import explain_match
from .schema import (
    CUSTOM_ARCHETYPE_ID,
    Archetype,
    ArchetypeCandidate,
    ArchetypeMatch,
    LensDefinition,
    WeightProfile,
)

logger = logging.getLogger(__name__)

# Rounding makes exact self-matches read 1.0 and ties compare equal
SIMILARITY_DECIMALS = 12
SHARED_PRIORITY_COUNT = 3


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> Optional[float]:
    """Cosine of the angle between two vectors, or None if either is zero."""
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return None
    dot = sum(x * y for x, y in zip(a, b))
    similarity = round(dot / (norm_a * norm_b), SIMILARITY_DECIMALS)
    return max(-1.0, min(1.0, similarity))


class ArchetypeMatcher:
    """Matches weight profiles against one lens's archetype catalog."""

    def __init__(
        self,
        lens: LensDefinition,
        threshold: Optional[float] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.lens = lens
        self.config = config or get_config()
        self.threshold = lens.match_threshold if threshold is None else threshold
        self.shared_priority_count = self.config.matching.shared_priority_count

    def rank(self, profile: WeightProfile) -> list[ArchetypeCandidate]:
        """Score every archetype, similarity descending then id ascending."""
        _check_profile(profile, self.lens)
        factor_ids = self.lens.factor_ids
        vector = [profile.weights[f] for f in factor_ids]
        profile_is_zero = not any(vector)

        candidates = []
        for archetype in self.lens.archetypes:
            reference = [archetype.weights[f] for f in factor_ids]
            if not any(reference):
                # A zero reference has no direction to compare against
                continue
            similarity = 0.0 if profile_is_zero else cosine_similarity(vector, reference)
            candidates.append(ArchetypeCandidate(
                archetype_id=archetype.id,
                name=archetype.name,
                similarity=similarity,
            ))

        candidates.sort(key=lambda c: (-c.similarity, c.archetype_id))
        return candidates

    def match(self, profile: WeightProfile) -> ArchetypeMatch:
        candidates = self.rank(profile)
        best = candidates[0] if candidates else None

        if best is None or best.similarity < self.threshold:
            logger.debug(
                "No archetype within threshold %.2f for lens %s (best=%s)",
                self.threshold,
                self.lens.version.value,
                f"{best.archetype_id}:{best.similarity:.3f}" if best else "none",
            )
            match = ArchetypeMatch(
                lens=self.lens.version,
                archetype_id=CUSTOM_ARCHETYPE_ID,
                name="Custom",
                similarity=best.similarity if best else 0.0,
                candidates=candidates,
            )
        else:
            match = ArchetypeMatch(
                lens=self.lens.version,
                archetype_id=best.archetype_id,
                name=best.name,
                similarity=best.similarity,
                candidates=candidates,
            )

        if best is not None:
            archetype = self.lens.get_archetype(best.archetype_id)
            match.shared_priorities = shared_priorities(
                profile, archetype, self.shared_priority_count
            )

        match.explanation = explain_match(match, self.lens, self.config)
        return match


def shared_priorities(
    profile: WeightProfile,
    archetype: Archetype,
    count: int = SHARED_PRIORITY_COUNT,
) -> list[str]:
    """Factors in both the profile's and the archetype's top priorities.

    Returned in the profile's priority order.
    """
    if not any(profile.weights.values()):
        return []
    reference = WeightProfile(lens=profile.lens, weights=archetype.weights)
    theirs = set(reference.top_factors(count))
    return [f for f in profile.top_factors(count) if f in theirs]


def match_archetype(
    profile: WeightProfile,
    lens: LensDefinition,
    threshold: Optional[float] = None,
) -> ArchetypeMatch:
    """Match a profile against a lens's archetypes.

    ``threshold`` defaults to the lens's own match threshold.
    """
    return ArchetypeMatcher(lens, threshold).match(profile)


def _check_profile(profile: WeightProfile, lens: LensDefinition) -> None:
    if profile.lens != lens.version:
        raise LensMismatchError(
            f"Cannot match a {profile.lens.value} profile against {lens.version.value} archetypes",
            expected=lens.version.value,
            actual=profile.lens.value,
        )
    if set(profile.weights) != set(lens.factor_ids):
        raise LensMismatchError(
            f"Profile factors do not match lens {lens.version.value}",
            expected=lens.version.value,
            actual=profile.lens.value,
        )
