"""Pydantic models produced by the scoring engine.

Inputs (responses) are plain mappings; everything the engine returns is one
of the models below. Reference data models are re-exported from
``lens_catalog.schema``.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# Re-export catalog models for convenience
from lens_catalog.schema import (
    CUSTOM_ARCHETYPE_ID,
    Archetype,
    ConsensusBand,
    ConsensusState,
    ConsensusThresholds,
    LensDefinition,
    LensVersion,
    PolicyImpactScores,
    PolicyModifier,
    PolicyVariant,
)


# =============================================================================
# Factor-indexed values
# =============================================================================


class FactorScores(BaseModel):
    """Raw aggregated score per factor, total over the lens factor set."""
    model_config = ConfigDict(frozen=True)

    lens: LensVersion
    scores: dict[str, float]

    def get(self, factor_id: str) -> float:
        return self.scores[factor_id]


class WeightProfile(BaseModel):
    """Normalized weight per factor in [-1, 1].

    Only comparable with profiles, archetypes and policies of the same lens.
    """
    model_config = ConfigDict(frozen=True)

    lens: LensVersion
    weights: dict[str, float]

    def get(self, factor_id: str) -> float:
        return self.weights[factor_id]

    def replace(self, factor_id: str, value: float) -> "WeightProfile":
        """Return a copy with one factor's weight swapped out."""
        weights = dict(self.weights)
        weights[factor_id] = value
        return WeightProfile(lens=self.lens, weights=weights)

    def top_factors(self, count: int = 3) -> list[str]:
        """Factors with the highest weights, ties in factor order."""
        ranked = sorted(enumerate(self.weights.items()), key=lambda item: (-item[1][1], item[0]))
        return [factor_id for _, (factor_id, _) in ranked[:count]]


class FactorBounds(BaseModel):
    """Theoretical raw-score range of one factor."""
    model_config = ConfigDict(frozen=True)

    factor: str
    minimum: float
    maximum: float

    @property
    def span(self) -> float:
        return self.maximum - self.minimum


class LensBounds(BaseModel):
    """Per-factor theoretical bounds derived from a lens's loading table."""
    model_config = ConfigDict(frozen=True)

    lens: LensVersion
    factors: dict[str, FactorBounds]


# =============================================================================
# Archetype matching
# =============================================================================


class ArchetypeCandidate(BaseModel):
    """One archetype's similarity to a profile."""
    archetype_id: str
    name: str
    similarity: float = Field(..., ge=-1.0, le=1.0)


class ArchetypeMatch(BaseModel):
    """Best-matching archetype, or the custom sentinel, plus the full ranking."""
    lens: LensVersion
    archetype_id: str
    name: str
    similarity: float
    candidates: list[ArchetypeCandidate] = Field(default_factory=list)
    shared_priorities: list[str] = Field(
        default_factory=list,
        description="Top factors the profile shares with the best candidate",
    )
    explanation: str = ""

    @property
    def is_custom(self) -> bool:
        return self.archetype_id == CUSTOM_ARCHETYPE_ID


class LensProfile(BaseModel):
    """Everything derived from one questionnaire submission."""
    lens: LensVersion
    answered: int
    factor_scores: FactorScores
    profile: WeightProfile
    match: ArchetypeMatch


# =============================================================================
# Policy scoring
# =============================================================================


class FiredModifier(BaseModel):
    """A modifier that fired, with the running score around it."""
    modifier_id: str
    name: str
    score_before: float
    score_after: float


class ModifierOutcome(BaseModel):
    """Result of running a modifier list over one score."""
    score: float
    fired: list[FiredModifier] = Field(default_factory=list)


class ImpactScore(BaseModel):
    """A policy scored against one profile."""
    policy_id: str
    lens: LensVersion
    raw_score: float = Field(..., description="Dot product before scaling and modifiers")
    base_score: float = Field(..., description="Display-scaled projection before modifiers")
    score: float = Field(..., description="Final display score")
    fired_modifiers: list[FiredModifier] = Field(default_factory=list)
    variants: list[str] = Field(default_factory=list)


# =============================================================================
# Consensus and divergence
# =============================================================================


class DivergenceDriver(BaseModel):
    """A factor's signed share of the gap between individual and baseline."""
    factor: str
    label: str
    contribution: float


class DivergenceReport(BaseModel):
    """Drivers plus how well they account for the whole gap."""
    policy_id: str
    lens: LensVersion
    individual_score: float
    baseline_score: float
    total_gap: float
    attributed_gap: float
    residual: float
    exact: bool = Field(..., description="True when no modifier fired on either side")
    drivers: list[DivergenceDriver] = Field(default_factory=list)


class PolicyExplanation(BaseModel):
    """Individual score, baseline score and why they differ."""
    policy_id: str
    lens: LensVersion
    title: str
    individual: ImpactScore
    baseline: ImpactScore
    consensus: ConsensusState
    divergence: DivergenceReport
    insight: Optional[str] = None


class PanelState(str, Enum):
    """How the archetype panel as a whole views a policy."""
    SUPER_CONSENSUS = "super_consensus"
    HIDDEN_AGREEMENT = "hidden_agreement"
    BATTLEGROUND = "battleground"
    UNIVERSAL_REJECT = "universal_reject"
    MIXED = "mixed"


class PanelMember(BaseModel):
    archetype_id: str
    name: str
    score: float


class PanelDriver(BaseModel):
    """A factor whose contribution varies most across the archetype panel."""
    factor: str
    label: str
    variance: float = Field(..., description="Population variance of per-archetype contributions")
    spread: float = Field(..., description="Highest minus lowest contribution, display units")
    narrative: str


class PanelAnalysis(BaseModel):
    """Every archetype's score for one policy and the resulting panel state."""
    policy_id: str
    lens: LensVersion
    members: list[PanelMember] = Field(default_factory=list)
    mean: float
    std_dev: float
    state: PanelState
    drivers: list[PanelDriver] = Field(default_factory=list)
    narrative: str = ""

    @property
    def champion(self) -> Optional[PanelMember]:
        if not self.members:
            return None
        return max(self.members, key=lambda m: m.score)

    @property
    def skeptic(self) -> Optional[PanelMember]:
        if not self.members:
            return None
        return min(self.members, key=lambda m: m.score)
