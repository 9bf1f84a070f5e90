"""Consensus Classifier & Divergence Ranker - Stage 6 of the lens pipeline.

Compares an individual's policy score with a baseline score, attributes the
gap to individual factors, and summarizes how an archetype panel views a
policy.
"""

import logging
import math
from collections.abc import Sequence
from typing import Optional, Union

from lens_catalog.errors import LensMismatchError

from .config import EngineConfig, PanelConfig, get_config
from .explainer import consensus_narrative
from .projector import DEFAULT_DISPLAY_RANGE, projection_extremes, score_impact
from .schema import (
    ConsensusState,
    ConsensusThresholds,
    DivergenceDriver,
    DivergenceReport,
    FactorScores,
    ImpactScore,
    LensDefinition,
    PanelAnalysis,
    PanelDriver,
    PanelMember,
    PanelState,
    PolicyImpactScores,
    PolicyModifier,
    WeightProfile,
)

logger = logging.getLogger(__name__)


def _score_value(score: Union[ImpactScore, float]) -> float:
    if isinstance(score, ImpactScore):
        return score.score
    return float(score)


def classify_consensus(
    impact_score: Union[ImpactScore, float],
    baseline_score: Union[ImpactScore, float],
    thresholds: ConsensusThresholds,
) -> ConsensusState:
    """Classify the gap between an individual score and the baseline.

    Scores of opposite sign that both reach the polarization floor are
    polarized whatever the gap; otherwise the first band covering the
    absolute gap wins.
    """
    individual = _score_value(impact_score)
    baseline = _score_value(baseline_score)

    floor = thresholds.polarization_floor
    if individual * baseline < 0 and abs(individual) >= floor and abs(baseline) >= floor:
        return ConsensusState.POLARIZED
    return thresholds.band_for(individual - baseline)


class DivergenceRanker:
    """Attributes the individual-vs-baseline gap to factors, one at a time.

    A factor's contribution is the individual score minus the score obtained
    after resetting only that factor to its baseline weight. When no modifier
    fires this is exact and the contributions sum to the whole gap; once
    modifiers fire the scoring is no longer linear and a residual remains.
    """

    def __init__(
        self,
        policy: PolicyImpactScores,
        modifiers: Sequence[PolicyModifier] = (),
        factor_scores: Optional[FactorScores] = None,
        display_range: Sequence[float] = DEFAULT_DISPLAY_RANGE,
        lens: Optional[LensDefinition] = None,
    ):
        self.policy = policy
        self.modifiers = modifiers
        self.factor_scores = factor_scores
        self.display_range = display_range
        self.lens = lens

    def _score(self, profile: WeightProfile, factor_scores: Optional[FactorScores]) -> ImpactScore:
        return score_impact(
            profile,
            self.policy,
            self.modifiers,
            factor_scores=factor_scores,
            display_range=self.display_range,
        )

    def _label(self, factor_id: str) -> str:
        return self.lens.factor_label(factor_id) if self.lens else factor_id

    def explain(self, profile: WeightProfile, baseline_profile: WeightProfile) -> DivergenceReport:
        if profile.lens != baseline_profile.lens or set(profile.weights) != set(baseline_profile.weights):
            raise LensMismatchError(
                "Profile and baseline profile belong to different lenses",
                expected=profile.lens.value,
                actual=baseline_profile.lens.value,
            )

        individual = self._score(profile, self.factor_scores)
        baseline = self._score(baseline_profile, None)
        linear = not individual.fired_modifiers and not baseline.fired_modifiers

        drivers = []
        for factor_id, baseline_weight in baseline_profile.weights.items():
            # Raw factor scores stay fixed; only the weight is reset
            reset = self._score(profile.replace(factor_id, baseline_weight), self.factor_scores)
            if reset.fired_modifiers:
                linear = False
            drivers.append(DivergenceDriver(
                factor=factor_id,
                label=self._label(factor_id),
                contribution=individual.score - reset.score,
            ))

        order = {factor_id: i for i, factor_id in enumerate(profile.weights)}
        drivers.sort(key=lambda d: (-abs(d.contribution), order[d.factor]))

        total_gap = individual.score - baseline.score
        attributed = sum(d.contribution for d in drivers)
        if not linear:
            logger.debug(
                "Modifiers fired while explaining %s; divergence is approximate (residual %.3f)",
                self.policy.policy_id,
                total_gap - attributed,
            )

        return DivergenceReport(
            policy_id=self.policy.policy_id,
            lens=self.policy.lens,
            individual_score=individual.score,
            baseline_score=baseline.score,
            total_gap=total_gap,
            attributed_gap=attributed,
            residual=total_gap - attributed,
            exact=linear,
            drivers=drivers,
        )


def rank_divergence_drivers(
    profile: WeightProfile,
    baseline_profile: WeightProfile,
    policy: PolicyImpactScores,
    modifiers: Sequence[PolicyModifier] = (),
    factor_scores: Optional[FactorScores] = None,
    display_range: Sequence[float] = DEFAULT_DISPLAY_RANGE,
    lens: Optional[LensDefinition] = None,
) -> list[DivergenceDriver]:
    """Factors ordered by how much of the gap to the baseline they explain.

    Sorted by absolute contribution, ties in lens factor order.
    """
    ranker = DivergenceRanker(policy, modifiers, factor_scores, display_range, lens)
    return ranker.explain(profile, baseline_profile).drivers


def explain_divergence(
    profile: WeightProfile,
    baseline_profile: WeightProfile,
    policy: PolicyImpactScores,
    modifiers: Sequence[PolicyModifier] = (),
    factor_scores: Optional[FactorScores] = None,
    display_range: Sequence[float] = DEFAULT_DISPLAY_RANGE,
    lens: Optional[LensDefinition] = None,
) -> DivergenceReport:
    """Drivers plus total gap, attributed gap and residual."""
    ranker = DivergenceRanker(policy, modifiers, factor_scores, display_range, lens)
    return ranker.explain(profile, baseline_profile)


def _to_percent(score: float, display_range: Sequence[float]) -> float:
    low, high = display_range
    return (score - low) / (high - low) * 100.0


def find_panel_drivers(
    policy: PolicyImpactScores,
    lens: LensDefinition,
    display_range: Sequence[float] = DEFAULT_DISPLAY_RANGE,
    top_n: int = 3,
    min_spread: float = 5.0,
) -> list[PanelDriver]:
    """Factors whose contribution to the score varies most across archetypes.

    A factor's contribution for one archetype is impact times archetype
    weight, in display units. Factors are ranked by the population variance
    of those contributions, ties in lens factor order. ``min_spread`` is on
    the 0-100 scale used by the panel thresholds.
    """
    if not lens.archetypes or top_n <= 0:
        return []

    proj_low, proj_high = projection_extremes(policy)
    out_low, out_high = display_range
    slope = (out_high - out_low) / (proj_high - proj_low) if proj_high != proj_low else 0.0

    drivers = []
    for factor_id in lens.factor_ids:
        impact = policy.impacts[factor_id]
        contributions = [impact * archetype.weights[factor_id] * slope for archetype in lens.archetypes]
        mean = sum(contributions) / len(contributions)
        variance = sum((c - mean) ** 2 for c in contributions) / len(contributions)
        highest, lowest = max(contributions), min(contributions)
        spread = highest - lowest

        label = lens.factor_label(factor_id)
        factor = lens.get_factor(factor_id)
        if factor is not None and factor.thinker:
            label = f"{label} ({factor.thinker})"
        if spread / (out_high - out_low) * 100.0 > min_spread:
            high = lens.archetypes[contributions.index(highest)]
            low = lens.archetypes[contributions.index(lowest)]
            narrative = f"{label} creates a {spread:.0f}-point gap between {high.name} and {low.name}."
        else:
            narrative = f"{label} contributes similarly across perspectives."

        drivers.append(PanelDriver(
            factor=factor_id,
            label=lens.factor_label(factor_id),
            variance=variance,
            spread=spread,
            narrative=narrative,
        ))

    drivers.sort(key=lambda d: -d.variance)
    return drivers[:top_n]


def _panel_state(percents: list[float], std_dev: float, cfg: PanelConfig) -> PanelState:
    mean = sum(percents) / len(percents)
    if all(p > cfg.consensus_min_score for p in percents) and std_dev < cfg.consensus_max_std_dev:
        return PanelState.SUPER_CONSENSUS
    if all(p < cfg.reject_max_score for p in percents):
        return PanelState.UNIVERSAL_REJECT
    if mean > cfg.hidden_min_mean and cfg.consensus_max_std_dev <= std_dev < cfg.hidden_max_std_dev:
        return PanelState.HIDDEN_AGREEMENT
    if std_dev >= cfg.battleground_min_std_dev:
        return PanelState.BATTLEGROUND
    return PanelState.MIXED


def analyze_panel(
    policy: PolicyImpactScores,
    lens: LensDefinition,
    modifiers: Optional[Sequence[PolicyModifier]] = None,
    display_range: Sequence[float] = DEFAULT_DISPLAY_RANGE,
    config: Optional[EngineConfig] = None,
) -> PanelAnalysis:
    """Score a policy for every archetype of the lens and classify the spread.

    Panel thresholds are configured on a 0-100 scale; scores are rescaled
    from the display range before they are compared. Mean and standard
    deviation are reported in display units.
    """
    if modifiers is None:
        modifiers = lens.modifiers
    config = config or get_config()
    cfg = config.panel

    members = []
    for archetype in lens.archetypes:
        profile = WeightProfile(lens=lens.version, weights=archetype.weights)
        scored = score_impact(profile, policy, modifiers, display_range=display_range)
        members.append(PanelMember(archetype_id=archetype.id, name=archetype.name, score=scored.score))

    if not members:
        analysis = PanelAnalysis(
            policy_id=policy.policy_id,
            lens=lens.version,
            mean=0.0,
            std_dev=0.0,
            state=PanelState.MIXED,
        )
    else:
        percents = [_to_percent(m.score, display_range) for m in members]
        mean_pct = sum(percents) / len(percents)
        std_pct = math.sqrt(sum((p - mean_pct) ** 2 for p in percents) / len(percents))
        low, high = display_range
        analysis = PanelAnalysis(
            policy_id=policy.policy_id,
            lens=lens.version,
            members=members,
            mean=low + mean_pct * (high - low) / 100.0,
            std_dev=std_pct * (high - low) / 100.0,
            state=_panel_state(percents, std_pct, cfg),
            drivers=find_panel_drivers(
                policy,
                lens,
                display_range,
                top_n=cfg.driver_count,
                min_spread=cfg.driver_min_spread,
            ),
        )

    analysis.narrative = consensus_narrative(analysis, lens, config)
    logger.debug("Panel for %s: %s", policy.policy_id, analysis.state.value)
    return analysis
