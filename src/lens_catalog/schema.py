"""Pydantic models for lens definitions and policy impact datasets.

Everything here is static reference data: it is loaded once from the YAML
files under ``lens_catalog/data`` and never mutated afterwards.
"""

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Every weight profile, archetype reference and policy impact lives in this range
NORMALIZED_MIN = -1.0
NORMALIZED_MAX = 1.0

CUSTOM_ARCHETYPE_ID = "custom"


class LensVersion(str, Enum):
    """Coexisting scoring lenses."""
    V1 = "v1"  # Impact
    V2 = "v2"  # Economics
    V3 = "v3"  # Needs
    V4 = "v4"  # Unified


# =============================================================================
# Factors and questions
# =============================================================================


class FactorInfo(BaseModel):
    """One scoring dimension of a lens."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Factor identifier, unique within the lens")
    label: str = Field(..., description="Short display label")
    description: str = Field(default="", description="What the factor measures")
    low_anchor: str = Field(default="", description="Meaning of the low end")
    high_anchor: str = Field(default="", description="Meaning of the high end")
    group: Optional[str] = Field(None, description="Factor family within the lens")
    thinker: Optional[str] = Field(None, description="Associated thinker, if any")


class LikertScale(BaseModel):
    """Symmetric integer response scale with a zero midpoint."""
    model_config = ConfigDict(frozen=True)

    minimum: int = Field(default=-2)
    maximum: int = Field(default=2)
    labels: dict[int, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_symmetric(self) -> "LikertScale":
        if self.maximum <= 0 or self.minimum != -self.maximum:
            raise ValueError(
                f"Likert scale must be symmetric around 0, got {self.minimum}..{self.maximum}"
            )
        for point in self.labels:
            if not self.contains(point):
                raise ValueError(f"Label for {point} is outside the scale")
        return self

    def contains(self, value: int) -> bool:
        return self.minimum <= value <= self.maximum


class Question(BaseModel):
    """A questionnaire item and the factors it loads onto.

    Reverse-phrased items carry negative loadings, so agreeing with them
    lowers the factor.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    explanation: str = ""
    low_label: str = "Strongly disagree"
    high_label: str = "Strongly agree"
    tier: int = Field(default=1, ge=1, le=2, description="1 = quick, 2 = detailed")
    loadings: dict[str, float] = Field(..., min_length=1)


class Archetype(BaseModel):
    """Named reference profile that users are matched against."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    philosopher: str = ""
    philosophy_name: str = ""
    description: str = ""
    short_description: str = ""
    weights: dict[str, float] = Field(..., description="Reference weights in [-1, 1]")


# =============================================================================
# Policy modifiers
# =============================================================================


class ComparisonOperator(str, Enum):
    """Comparison used by modifier conditions."""
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"

    def compare(self, left: float, right: float) -> bool:
        if self is ComparisonOperator.GT:
            return left > right
        if self is ComparisonOperator.GTE:
            return left >= right
        if self is ComparisonOperator.LT:
            return left < right
        return left <= right


class ConditionSource(str, Enum):
    """Which per-user value a factor condition reads."""
    WEIGHT = "weight"  # normalized WeightProfile
    SCORE = "score"  # raw FactorScores


class FactorCondition(BaseModel):
    """Compare one factor's weight or raw score against a constant."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["factor"] = "factor"
    factor: str
    source: ConditionSource = ConditionSource.WEIGHT
    op: ComparisonOperator
    value: float

    def describe(self) -> str:
        return f"{self.source.value}[{self.factor}] {self.op.value} {self.value:g}"


class RunningScoreCondition(BaseModel):
    """Compare the score as adjusted so far against a constant."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["running_score"] = "running_score"
    op: ComparisonOperator
    value: float

    def describe(self) -> str:
        return f"score {self.op.value} {self.value:g}"


class FiredCondition(BaseModel):
    """True when an earlier modifier in the list has fired."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["fired"] = "fired"
    modifier: str

    def describe(self) -> str:
        return f"fired({self.modifier})"


ModifierCondition = Annotated[
    Union[FactorCondition, RunningScoreCondition, FiredCondition],
    Field(discriminator="kind"),
]


class ConditionMode(str, Enum):
    """How a modifier combines its conditions."""
    ALL = "all"
    ANY = "any"


class AdjustmentKind(str, Enum):
    ADD = "add"
    MULTIPLY = "multiply"


class Adjustment(BaseModel):
    """Change applied to the running score when a modifier fires."""
    model_config = ConfigDict(frozen=True)

    kind: AdjustmentKind
    value: float

    def apply(self, score: float) -> float:
        if self.kind is AdjustmentKind.ADD:
            return score + self.value
        return score * self.value


class PolicyModifier(BaseModel):
    """Rule-based adjustment layered on top of the linear projection.

    Modifiers are evaluated in list order and operate in display units.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    conditions: list[ModifierCondition] = Field(..., min_length=1)
    match: ConditionMode = ConditionMode.ALL
    adjustment: Adjustment
    policies: Optional[list[str]] = Field(
        None,
        description="Policy ids this modifier is scoped to; None means every policy",
    )

    def applies_to(self, policy_id: Optional[str]) -> bool:
        """Unscoped modifiers apply everywhere; scoped ones only to a named policy in scope."""
        if self.policies is None:
            return True
        return policy_id is not None and policy_id in self.policies


# =============================================================================
# Consensus thresholds
# =============================================================================


class ConsensusState(str, Enum):
    """Relationship between an individual's score and the baseline score."""
    STRONGLY_ALIGNED = "strongly_aligned"
    MILDLY_ALIGNED = "mildly_aligned"
    NEUTRAL = "neutral"
    MILDLY_DIVERGENT = "mildly_divergent"
    STRONGLY_DIVERGENT = "strongly_divergent"
    POLARIZED = "polarized"


class ConsensusBand(BaseModel):
    """Gap band; ``max_gap`` of None marks the open-ended last band."""
    model_config = ConfigDict(frozen=True)

    state: ConsensusState
    max_gap: Optional[float] = Field(None, ge=0.0)


def _default_bands() -> list[ConsensusBand]:
    return [
        ConsensusBand(state=ConsensusState.STRONGLY_ALIGNED, max_gap=10.0),
        ConsensusBand(state=ConsensusState.MILDLY_ALIGNED, max_gap=25.0),
        ConsensusBand(state=ConsensusState.NEUTRAL, max_gap=40.0),
        ConsensusBand(state=ConsensusState.MILDLY_DIVERGENT, max_gap=60.0),
        ConsensusBand(state=ConsensusState.STRONGLY_DIVERGENT, max_gap=None),
    ]


class ConsensusThresholds(BaseModel):
    """Ordered gap bands plus the floor for calling two scores polarized.

    Values are expressed in display units.
    """
    model_config = ConfigDict(frozen=True)

    bands: list[ConsensusBand] = Field(default_factory=_default_bands, min_length=1)
    polarization_floor: float = Field(default=25.0, ge=0.0)

    @field_validator("bands")
    @classmethod
    def _check_bands(cls, bands: list[ConsensusBand]) -> list[ConsensusBand]:
        for band in bands[:-1]:
            if band.max_gap is None:
                raise ValueError("Only the last consensus band may be open-ended")
        if bands[-1].max_gap is not None:
            raise ValueError("The last consensus band must be open-ended (max_gap: null)")
        gaps = [band.max_gap for band in bands[:-1]]
        if any(b <= a for a, b in zip(gaps, gaps[1:])):
            raise ValueError("Consensus band max_gap values must be strictly increasing")
        if any(band.state is ConsensusState.POLARIZED for band in bands):
            raise ValueError("'polarized' is decided by polarization_floor, not by a band")
        return bands

    def band_for(self, gap: float) -> ConsensusState:
        """Return the first band whose max_gap covers the absolute gap."""
        gap = abs(gap)
        for band in self.bands:
            if band.max_gap is None or gap <= band.max_gap:
                return band.state
        return self.bands[-1].state


# =============================================================================
# Lens definition
# =============================================================================


class LensDefinition(BaseModel):
    """Complete static description of one lens version."""
    model_config = ConfigDict(frozen=True)

    version: LensVersion
    name: str
    description: str = ""
    scale: LikertScale = Field(default_factory=LikertScale)
    factors: list[FactorInfo] = Field(..., min_length=1)
    questions: list[Question] = Field(..., min_length=1)
    archetypes: list[Archetype] = Field(default_factory=list)
    modifiers: list[PolicyModifier] = Field(default_factory=list)
    consensus: ConsensusThresholds = Field(default_factory=ConsensusThresholds)
    match_threshold: float = Field(default=0.6, ge=-1.0, le=1.0)
    baseline: Optional[dict[str, float]] = Field(
        None,
        description="Population/model baseline weights; zero everywhere when omitted",
    )

    @model_validator(mode="after")
    def _check_references(self) -> "LensDefinition":
        factor_ids = self.factor_ids
        known = set(factor_ids)
        if len(known) != len(factor_ids):
            raise ValueError("Duplicate factor id in lens definition")

        _check_unique("question", [q.id for q in self.questions])
        for question in self.questions:
            unknown = set(question.loadings) - known
            if unknown:
                raise ValueError(
                    f"Question {question.id} loads unknown factors: {sorted(unknown)}"
                )

        _check_unique("archetype", [a.id for a in self.archetypes])
        for archetype in self.archetypes:
            if archetype.id == CUSTOM_ARCHETYPE_ID:
                raise ValueError(f"'{CUSTOM_ARCHETYPE_ID}' is reserved for unmatched profiles")
            _check_profile(f"Archetype {archetype.id}", archetype.weights, factor_ids)

        if self.baseline is not None:
            _check_profile("Baseline", self.baseline, factor_ids)

        seen: set[str] = set()
        for modifier in self.modifiers:
            if modifier.id in seen:
                raise ValueError(f"Duplicate modifier id: {modifier.id}")
            for condition in modifier.conditions:
                if isinstance(condition, FactorCondition) and condition.factor not in known:
                    raise ValueError(
                        f"Modifier {modifier.id} references unknown factor {condition.factor}"
                    )
                if isinstance(condition, FiredCondition) and condition.modifier not in seen:
                    raise ValueError(
                        f"Modifier {modifier.id} depends on {condition.modifier}, "
                        "which is not an earlier modifier"
                    )
            seen.add(modifier.id)
        return self

    @property
    def factor_ids(self) -> list[str]:
        return [factor.id for factor in self.factors]

    def get_factor(self, factor_id: str) -> Optional[FactorInfo]:
        for factor in self.factors:
            if factor.id == factor_id:
                return factor
        return None

    def factor_label(self, factor_id: str) -> str:
        factor = self.get_factor(factor_id)
        return factor.label if factor else factor_id

    def get_question(self, question_id: str) -> Optional[Question]:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None

    def get_archetype(self, archetype_id: str) -> Optional[Archetype]:
        for archetype in self.archetypes:
            if archetype.id == archetype_id:
                return archetype
        return None

    def baseline_weights(self) -> dict[str, float]:
        """Baseline weights in factor order, zeros when none are declared."""
        if self.baseline is None:
            return {factor_id: 0.0 for factor_id in self.factor_ids}
        return {factor_id: self.baseline[factor_id] for factor_id in self.factor_ids}


def _check_unique(kind: str, ids: list[str]) -> None:
    seen: set[str] = set()
    for item in ids:
        if item in seen:
            raise ValueError(f"Duplicate {kind} id: {item}")
        seen.add(item)


def _check_profile(owner: str, weights: dict[str, float], factor_ids: list[str]) -> None:
    if set(weights) != set(factor_ids):
        missing = sorted(set(factor_ids) - set(weights))
        extra = sorted(set(weights) - set(factor_ids))
        raise ValueError(f"{owner} weights must cover every factor (missing={missing}, extra={extra})")
    for factor_id, value in weights.items():
        if not NORMALIZED_MIN <= value <= NORMALIZED_MAX:
            raise ValueError(f"{owner} weight for {factor_id} is outside [-1, 1]: {value}")


# =============================================================================
# Policies
# =============================================================================


class PolicyImpactScores(BaseModel):
    """How strongly a policy advances (+) or sets back (-) each factor."""
    model_config = ConfigDict(frozen=True)

    policy_id: str
    lens: LensVersion
    title: str
    impacts: dict[str, float]
    rationale: str = ""

    @field_validator("impacts")
    @classmethod
    def _check_impacts(cls, impacts: dict[str, float]) -> dict[str, float]:
        for factor_id, value in impacts.items():
            if not NORMALIZED_MIN <= value <= NORMALIZED_MAX:
                raise ValueError(f"Impact for {factor_id} is outside [-1, 1]: {value}")
        return impacts


class PolicyVariant(BaseModel):
    """User-selectable design option that shifts a policy's impacts."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: str = "general"
    description: str = ""
    delta: dict[str, float] = Field(..., min_length=1)


class PolicyCatalog(BaseModel):
    """Policy impact dataset and design variants for one lens."""
    model_config = ConfigDict(frozen=True)

    lens: LensVersion
    policies: list[PolicyImpactScores] = Field(default_factory=list)
    variants: list[PolicyVariant] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _inherit_lens(cls, data):
        """Policies inherit the dataset-level ``lens`` tag unless they carry their own."""
        if not isinstance(data, dict) or data.get("lens") is None:
            return data
        policies = data.get("policies")
        if not isinstance(policies, list):
            return data
        data = dict(data)
        data["policies"] = [
            {"lens": data["lens"], **policy} if isinstance(policy, dict) else policy
            for policy in policies
        ]
        return data

    @model_validator(mode="after")
    def _check_policies(self) -> "PolicyCatalog":
        _check_unique("policy", [p.policy_id for p in self.policies])
        _check_unique("variant", [v.id for v in self.variants])
        for policy in self.policies:
            if policy.lens != self.lens:
                raise ValueError(
                    f"Policy {policy.policy_id} is tagged {policy.lens.value}, "
                    f"expected {self.lens.value}"
                )
        return self

    def get_policy(self, policy_id: str) -> Optional[PolicyImpactScores]:
        for policy in self.policies:
            if policy.policy_id == policy_id:
                return policy
        return None

    def get_variant(self, variant_id: str) -> Optional[PolicyVariant]:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None
