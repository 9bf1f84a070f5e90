"""Explainer - Stage 7 of the lens pipeline.

Turns matches, divergence drivers and panel analyses into short
human-readable sentences.
"""

from typing import Optional

from .config import EngineConfig, get_config
from .schema import (
    ArchetypeMatch,
    ConsensusState,
    DivergenceDriver,
    LensDefinition,
    PanelAnalysis,
    PanelState,
)

CONSENSUS_DESCRIPTIONS = {
    ConsensusState.STRONGLY_ALIGNED: "You and the baseline see this policy almost identically.",
    ConsensusState.MILDLY_ALIGNED: "You and the baseline broadly agree on this policy.",
    ConsensusState.NEUTRAL: "Your view differs noticeably from the baseline.",
    ConsensusState.MILDLY_DIVERGENT: "Your view departs clearly from the baseline.",
    ConsensusState.STRONGLY_DIVERGENT: "Your view is far from the baseline.",
    ConsensusState.POLARIZED: "You and the baseline land on opposite sides of this policy.",
}

PANEL_LABELS = {
    PanelState.SUPER_CONSENSUS: ("Super-Consensus", "All perspectives strongly support this policy."),
    PanelState.HIDDEN_AGREEMENT: (
        "Hidden Agreement",
        "Despite different priorities, all perspectives find merit in this policy.",
    ),
    PanelState.BATTLEGROUND: ("Battleground", "Sharp disagreement between perspectives on this policy."),
    PanelState.UNIVERSAL_REJECT: ("Universal Reject", "All perspectives rate this policy poorly."),
    PanelState.MIXED: ("Mixed", "Moderate variation in how perspectives view this policy."),
}


def _join_labels(labels: list[str]) -> str:
    if len(labels) <= 1:
        return "".join(labels)
    return ", ".join(labels[:-1]) + " and " + labels[-1]


class LensExplainer:
    """Builds explanation text for one lens.

    Configuration:
    - Minimum gap for insights and driver count come from lens-config.yaml
    """

    def __init__(self, lens: LensDefinition, config: Optional[EngineConfig] = None):
        cfg = (config or get_config()).explanation
        self.lens = lens
        self.insight_min_gap = cfg.insight_min_gap
        self.max_drivers = cfg.max_drivers

    def explain_match(self, match: ArchetypeMatch) -> str:
        labels = [self.lens.factor_label(f) for f in match.shared_priorities]

        if match.is_custom:
            if not match.candidates:
                return "This lens has no archetypes to compare your priorities against."
            nearest = match.candidates[0]
            return (
                "Your priorities don't closely match any archetype. "
                f"The nearest is {nearest.name} at {nearest.similarity:.0%} similarity."
            )

        archetype = self.lens.get_archetype(match.archetype_id)
        who = f"{archetype.name} ({archetype.philosopher})" if archetype.philosopher else archetype.name
        sentence = f"You align with {who} at {match.similarity:.0%} similarity"
        if labels:
            sentence += f", sharing a focus on {_join_labels(labels)}"
        return sentence + "."

    def score_insight(
        self,
        individual_score: float,
        baseline_score: float,
        drivers: list[DivergenceDriver],
    ) -> Optional[str]:
        """One-line reason why the individual score differs from the baseline.

        Returns None when the gap is too small to be worth explaining.
        """
        gap = individual_score - baseline_score
        if abs(gap) < self.insight_min_gap:
            return None

        points = round(abs(gap))
        direction = "above" if gap > 0 else "below"
        lead = f"Scores {points} points {direction} the baseline."

        # Only name drivers that push in the same direction as the gap
        aligned = [d for d in drivers if d.contribution * gap > 0][:self.max_drivers]
        if not aligned:
            return f"{lead} No single priority explains the difference."

        top = aligned[0]
        if gap > 0:
            sentence = f"{lead} Your emphasis on {top.label} is the biggest reason"
        else:
            sentence = f"{lead} Your weighting of {top.label} pulls it down most"
        others = [d.label for d in aligned[1:]]
        if others:
            sentence += f", followed by {_join_labels(others)}"
        return sentence + "."

    def consensus_narrative(self, analysis: PanelAnalysis) -> str:
        label, description = PANEL_LABELS[analysis.state]
        narrative = f"{label}: {description}"
        champion, skeptic = analysis.champion, analysis.skeptic
        if champion is not None and skeptic is not None and champion.archetype_id != skeptic.archetype_id:
            narrative += (
                f" {champion.name} rates it highest ({champion.score:+.0f}),"
                f" {skeptic.name} lowest ({skeptic.score:+.0f})."
            )
        # Mixed panels have no single story to tell
        if analysis.drivers and analysis.state is not PanelState.MIXED:
            narrative += f" {analysis.drivers[0].narrative}"
        return narrative


def describe_consensus(state: ConsensusState) -> str:
    return CONSENSUS_DESCRIPTIONS[state]


def explain_match(
    match: ArchetypeMatch,
    lens: LensDefinition,
    config: Optional[EngineConfig] = None,
) -> str:
    return LensExplainer(lens, config).explain_match(match)


def score_insight(
    individual_score: float,
    baseline_score: float,
    drivers: list[DivergenceDriver],
    lens: LensDefinition,
    config: Optional[EngineConfig] = None,
) -> Optional[str]:
    return LensExplainer(lens, config).score_insight(individual_score, baseline_score, drivers)


def consensus_narrative(
    analysis: PanelAnalysis,
    lens: LensDefinition,
    config: Optional[EngineConfig] = None,
) -> str:
    return LensExplainer(lens, config).consensus_narrative(analysis)
