"""Weight Normalizer - Stage 2 of the lens pipeline.

Maps each raw factor score linearly from its theoretical range onto the
normalized weight range [-1, 1]. The theoretical range comes from the lens
loading table and the Likert extremes, never from observed data.
"""

import logging

from lens_catalog.errors import DegenerateFactorError, InvalidInputError, LensMismatchError
from lens_catalog.schema import NORMALIZED_MAX, NORMALIZED_MIN

from .schema import FactorBounds, FactorScores, LensBounds, LensDefinition, WeightProfile

logger = logging.getLogger(__name__)

# Relative slack allowed before an out-of-range score is treated as bad input
ROUND_OFF_TOLERANCE = 1e-9


def compute_lens_bounds(lens: LensDefinition) -> LensBounds:
    """Derive each factor's theoretical min/max from the loading table.

    Each question contributes ``min(lo*w, hi*w)`` to the factor minimum and
    ``max(lo*w, hi*w)`` to the maximum, so reverse-phrased items are handled
    without special cases.
    """
    low, high = lens.scale.minimum, lens.scale.maximum
    minimums = {factor_id: 0.0 for factor_id in lens.factor_ids}
    maximums = {factor_id: 0.0 for factor_id in lens.factor_ids}

    for question in lens.questions:
        for factor_id, loading in question.loadings.items():
            ends = (low * loading, high * loading)
            minimums[factor_id] += min(ends)
            maximums[factor_id] += max(ends)

    return LensBounds(
        lens=lens.version,
        factors={
            factor_id: FactorBounds(
                factor=factor_id,
                minimum=minimums[factor_id],
                maximum=maximums[factor_id],
            )
            for factor_id in lens.factor_ids
        },
    )


def normalize(factor_scores: FactorScores, lens_bounds: LensBounds) -> WeightProfile:
    """Map raw factor scores onto [-1, 1] using the lens bounds.

    Raises:
        LensMismatchError: The scores belong to another lens or factor set.
        DegenerateFactorError: A factor's theoretical range is zero.
        InvalidInputError: A score lies outside its theoretical range.
    """
    if factor_scores.lens != lens_bounds.lens:
        raise LensMismatchError(
            f"Cannot normalize {factor_scores.lens.value} scores with "
            f"{lens_bounds.lens.value} bounds",
            expected=lens_bounds.lens.value,
            actual=factor_scores.lens.value,
        )
    if set(factor_scores.scores) != set(lens_bounds.factors):
        raise LensMismatchError(
            "Factor scores do not cover the lens factor set "
            f"(expected {sorted(lens_bounds.factors)}, got {sorted(factor_scores.scores)})",
            expected=lens_bounds.lens.value,
            actual=factor_scores.lens.value,
        )

    span_out = NORMALIZED_MAX - NORMALIZED_MIN
    weights = {}
    for factor_id, bounds in lens_bounds.factors.items():
        if bounds.span == 0:
            raise DegenerateFactorError(
                f"Factor {factor_id} in lens {lens_bounds.lens.value} has a zero theoretical range",
                factor=factor_id,
            )
        score = factor_scores.scores[factor_id]
        slack = ROUND_OFF_TOLERANCE * bounds.span
        if score < bounds.minimum - slack or score > bounds.maximum + slack:
            raise InvalidInputError(
                f"Score for {factor_id} ({score}) is outside its theoretical range "
                f"{bounds.minimum}..{bounds.maximum}",
                value=score,
            )

        weight = NORMALIZED_MIN + span_out * (score - bounds.minimum) / bounds.span
        weights[factor_id] = min(NORMALIZED_MAX, max(NORMALIZED_MIN, weight))

    logger.debug("Normalized %d factors for lens %s", len(weights), lens_bounds.lens.value)
    return WeightProfile(lens=lens_bounds.lens, weights=weights)
