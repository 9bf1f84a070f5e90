"""Policy Modifier Engine - Stage 5 of the lens pipeline.

Applies an ordered list of rule-based adjustments to a projected score.
Each modifier sees the running score left by the modifiers before it, so
the list order is part of the result.
"""

import logging
from collections.abc import Sequence
from typing import Optional

from lens_catalog.schema import (
    ConditionMode,
    ConditionSource,
    FactorCondition,
    FiredCondition,
    RunningScoreCondition,
)

from .schema import FactorScores, FiredModifier, ModifierOutcome, PolicyModifier, WeightProfile

logger = logging.getLogger(__name__)


class ModifierEngine:
    """Evaluates modifiers for one (profile, policy) pair."""

    def __init__(
        self,
        profile: WeightProfile,
        factor_scores: Optional[FactorScores] = None,
        policy_id: Optional[str] = None,
    ):
        self.profile = profile
        self.factor_scores = factor_scores
        self.policy_id = policy_id

    def run(
        self,
        score: float,
        modifiers: Sequence[PolicyModifier],
        bounds: Optional[Sequence[float]] = None,
    ) -> ModifierOutcome:
        running = score
        fired: list[FiredModifier] = []
        fired_ids: set[str] = set()

        for modifier in modifiers:
            if not modifier.applies_to(self.policy_id):
                continue
            if not self._fires(modifier, running, fired_ids):
                continue

            before = running
            running = modifier.adjustment.apply(running)
            fired.append(FiredModifier(
                modifier_id=modifier.id,
                name=modifier.name,
                score_before=before,
                score_after=running,
            ))
            fired_ids.add(modifier.id)
            logger.debug(
                "Modifier %s fired on %s: %.3f -> %.3f",
                modifier.id,
                self.policy_id or "<unscoped>",
                before,
                running,
            )

        if bounds is not None:
            low, high = bounds
            running = min(high, max(low, running))

        return ModifierOutcome(score=running, fired=fired)

    def _fires(self, modifier: PolicyModifier, running: float, fired_ids: set[str]) -> bool:
        results = (self._check(c, running, fired_ids) for c in modifier.conditions)
        if modifier.match is ConditionMode.ANY:
            return any(results)
        return all(results)

    def _check(self, condition, running: float, fired_ids: set[str]) -> bool:
        if isinstance(condition, FactorCondition):
            value = self._factor_value(condition)
            if value is None:
                return False
            return condition.op.compare(value, condition.value)
        if isinstance(condition, RunningScoreCondition):
            return condition.op.compare(running, condition.value)
        if isinstance(condition, FiredCondition):
            return condition.modifier in fired_ids
        raise TypeError(f"Unsupported modifier condition: {condition!r}")

    def _factor_value(self, condition: FactorCondition) -> Optional[float]:
        if condition.source is ConditionSource.WEIGHT:
            return self.profile.weights.get(condition.factor)
        # Score conditions cannot hold without raw scores, e.g. for archetype profiles
        if self.factor_scores is None:
            return None
        return self.factor_scores.scores.get(condition.factor)


def apply_modifiers(
    raw_score: float,
    profile: WeightProfile,
    modifiers: Sequence[PolicyModifier],
    factor_scores: Optional[FactorScores] = None,
    policy_id: Optional[str] = None,
    bounds: Optional[Sequence[float]] = None,
) -> ModifierOutcome:
    """Run modifiers in list order over a score.

    Returns the final score and every fired modifier in firing order. When
    ``bounds`` is given the final score is clamped into it.
    """
    engine = ModifierEngine(profile, factor_scores, policy_id)
    return engine.run(raw_score, modifiers, bounds)
