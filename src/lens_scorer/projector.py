"""Policy Impact Projector - Stage 4 of the lens pipeline.

Scores a policy for a profile as the dot product of the profile's weights
and the policy's per-factor impacts, then rescales that onto the display
range.
"""

import logging
from collections.abc import Sequence
from typing import Optional

from lens_catalog.errors import DegenerateFactorError, LensMismatchError
from lens_catalog.schema import NORMALIZED_MAX, NORMALIZED_MIN

from .modifiers import apply_modifiers
from .schema import (
    FactorScores,
    ImpactScore,
    PolicyImpactScores,
    PolicyModifier,
    PolicyVariant,
    WeightProfile,
)

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_RANGE = (-100.0, 100.0)


def project_impact(profile: WeightProfile, policy: PolicyImpactScores) -> float:
    """Raw projection of a profile onto a policy's impacts.

    Raises:
        LensMismatchError: Profile and policy use different lenses or factor sets.
    """
    if profile.lens != policy.lens:
        raise LensMismatchError(
            f"Cannot project a {profile.lens.value} profile onto "
            f"{policy.lens.value} policy {policy.policy_id}",
            expected=policy.lens.value,
            actual=profile.lens.value,
        )
    if set(profile.weights) != set(policy.impacts):
        raise LensMismatchError(
            f"Policy {policy.policy_id} impacts do not cover the profile's factors",
            expected=policy.lens.value,
            actual=profile.lens.value,
        )

    # Profile order is lens factor order, which fixes summation order
    return sum(weight * policy.impacts[factor_id] for factor_id, weight in profile.weights.items())


def projection_extremes(policy: PolicyImpactScores) -> tuple[float, float]:
    """Lowest and highest raw scores any profile could give this policy."""
    low = sum(min(NORMALIZED_MIN * i, NORMALIZED_MAX * i) for i in policy.impacts.values())
    high = sum(max(NORMALIZED_MIN * i, NORMALIZED_MAX * i) for i in policy.impacts.values())
    return low, high


def scale_to_display(
    raw_score: float,
    policy: PolicyImpactScores,
    display_range: Sequence[float] = DEFAULT_DISPLAY_RANGE,
) -> float:
    """Map a raw projection linearly onto the display range.

    Raises:
        DegenerateFactorError: Every impact of the policy is zero.
    """
    low, high = projection_extremes(policy)
    if high == low:
        raise DegenerateFactorError(
            f"Policy {policy.policy_id} has no non-zero impact to scale against"
        )
    out_low, out_high = display_range
    scaled = out_low + (out_high - out_low) * (raw_score - low) / (high - low)
    return min(out_high, max(out_low, scaled))


def apply_variants(policy: PolicyImpactScores, variants: list[PolicyVariant]) -> PolicyImpactScores:
    """Return a copy of the policy with variant deltas applied in order.

    Each intermediate value is clamped to [-1, 1], so the order of variants
    matters when they push the same factor past a bound.
    """
    if not variants:
        return policy

    impacts = dict(policy.impacts)
    for variant in variants:
        unknown = set(variant.delta) - set(impacts)
        if unknown:
            raise LensMismatchError(
                f"Variant {variant.id} shifts factors outside lens {policy.lens.value}: "
                f"{sorted(unknown)}",
                expected=policy.lens.value,
            )
        for factor_id, delta in variant.delta.items():
            shifted = impacts[factor_id] + delta
            impacts[factor_id] = min(NORMALIZED_MAX, max(NORMALIZED_MIN, shifted))

    logger.debug(
        "Applied variants %s to %s",
        [v.id for v in variants],
        policy.policy_id,
    )
    return policy.model_copy(update={"impacts": impacts})


def score_impact(
    profile: WeightProfile,
    policy: PolicyImpactScores,
    modifiers: Sequence[PolicyModifier] = (),
    factor_scores: Optional[FactorScores] = None,
    display_range: Sequence[float] = DEFAULT_DISPLAY_RANGE,
    variants: Optional[list[PolicyVariant]] = None,
) -> ImpactScore:
    """Project, scale and modify: the full per-policy scoring path.

    Modifiers operate in display units and the result is clamped to the
    display range.
    """
    variants = variants or []
    effective = apply_variants(policy, variants)
    raw = project_impact(profile, effective)
    base = scale_to_display(raw, effective, display_range)
    outcome = apply_modifiers(
        base,
        profile,
        modifiers,
        factor_scores=factor_scores,
        policy_id=policy.policy_id,
        bounds=display_range,
    )
    return ImpactScore(
        policy_id=policy.policy_id,
        lens=policy.lens,
        raw_score=raw,
        base_score=base,
        score=outcome.score,
        fired_modifiers=outcome.fired,
        variants=[v.id for v in variants],
    )
