"""Lens Engine - orchestrates the full scoring pipeline.

Pipeline:
1. Aggregate Likert responses into raw factor scores
2. Normalize raw scores into a weight profile
3. Match the profile against the lens's archetypes
4. Project the profile onto a policy's impacts and scale for display
5. Apply the lens's policy modifiers in order
6. Compare with the baseline, classify consensus and rank divergence drivers
7. Explain the result in plain language
"""

import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Optional, Union

from lens_catalog.catalog import LensRegistry
from lens_catalog.errors import InvalidInputError, LensNotFoundError

from .aggregator import aggregate_responses
from .config import EngineConfig, get_config
from .consensus import analyze_panel, classify_consensus, explain_divergence
from .explainer import LensExplainer
from .matcher import ArchetypeMatcher
from .normalizer import compute_lens_bounds, normalize
from .projector import apply_variants, score_impact
from .schema import (
    FactorScores,
    ImpactScore,
    LensBounds,
    LensDefinition,
    LensProfile,
    LensVersion,
    PanelAnalysis,
    PolicyExplanation,
    PolicyImpactScores,
    WeightProfile,
)

logger = logging.getLogger(__name__)

LensKey = Union[LensVersion, str]
PolicyKey = Union[PolicyImpactScores, str]


class LensEngine:
    """Facade over the registry and the per-stage functions.

    Every call names its lens explicitly; the engine keeps no notion of a
    current lens. Reference data is read-only once loaded.
    """

    def __init__(
        self,
        registry: Optional[LensRegistry] = None,
        config: Optional[EngineConfig] = None,
    ):
        self._registry = registry
        self.config = config or get_config()
        self._bounds: dict[LensVersion, LensBounds] = {}

    def load_registry(self, data_dir: Optional[Union[str, Path]] = None) -> LensRegistry:
        """Load lens and policy data, replacing anything loaded before."""
        self._registry = LensRegistry.load(data_dir)
        self._bounds.clear()
        return self._registry

    @property
    def registry(self) -> LensRegistry:
        if self._registry is None:
            self.load_registry()
        return self._registry

    @property
    def display_range(self) -> tuple[float, float]:
        return self.config.display_range

    def lens(self, lens: LensKey) -> LensDefinition:
        return self.registry.lens(lens)

    def bounds(self, lens: LensKey) -> LensBounds:
        definition = self.lens(lens)
        if definition.version not in self._bounds:
            self._bounds[definition.version] = compute_lens_bounds(definition)
        return self._bounds[definition.version]

    def _policy(self, lens: LensDefinition, policy: PolicyKey) -> PolicyImpactScores:
        if isinstance(policy, PolicyImpactScores):
            return policy
        return self.registry.policy(lens.version, policy)

    # -------------------------------------------------------------------------
    # Profiles
    # -------------------------------------------------------------------------

    def build_profile(self, lens: LensKey, responses: Mapping[str, object]) -> LensProfile:
        """Aggregate, normalize and match one set of responses."""
        definition = self.lens(lens)
        factor_scores = aggregate_responses(responses, definition)
        profile = normalize(factor_scores, self.bounds(definition.version))
        matcher = ArchetypeMatcher(
            definition,
            threshold=self.config.match_threshold_for(definition),
            config=self.config,
        )
        match = matcher.match(profile)

        logger.debug(
            "Built %s profile from %d responses: %s (%.3f)",
            definition.version.value,
            len(responses),
            match.archetype_id,
            match.similarity,
        )
        return LensProfile(
            lens=definition.version,
            answered=len(responses),
            factor_scores=factor_scores,
            profile=profile,
            match=match,
        )

    def baseline_profile(self, lens: LensKey) -> WeightProfile:
        definition = self.lens(lens)
        return WeightProfile(lens=definition.version, weights=definition.baseline_weights())

    def archetype_profile(self, lens: LensKey, archetype_id: str) -> WeightProfile:
        definition = self.lens(lens)
        archetype = definition.get_archetype(archetype_id)
        if archetype is None:
            raise LensNotFoundError(f"Unknown archetype: {archetype_id}", key=archetype_id)
        return WeightProfile(lens=definition.version, weights=archetype.weights)

    # -------------------------------------------------------------------------
    # Policies
    # -------------------------------------------------------------------------

    def score_policy(
        self,
        lens: LensKey,
        profile: WeightProfile,
        policy: PolicyKey,
        factor_scores: Optional[FactorScores] = None,
        variants: Optional[list[str]] = None,
    ) -> ImpactScore:
        """Score one policy for a profile, with the lens's modifiers applied."""
        definition = self.lens(lens)
        return score_impact(
            profile,
            self._policy(definition, policy),
            definition.modifiers,
            factor_scores=factor_scores,
            display_range=self.display_range,
            variants=self.registry.variants(definition.version, variants or []),
        )

    def rank_policies(
        self,
        lens: LensKey,
        profile: WeightProfile,
        factor_scores: Optional[FactorScores] = None,
    ) -> list[ImpactScore]:
        """Score every policy of the lens, best first, ties by policy id."""
        definition = self.lens(lens)
        scores = [
            self.score_policy(definition.version, profile, policy, factor_scores)
            for policy in self.registry.policies(definition.version)
        ]
        scores.sort(key=lambda s: (-s.score, s.policy_id))
        return scores

    def explain_policy(
        self,
        lens: LensKey,
        profile: WeightProfile,
        policy: PolicyKey,
        factor_scores: Optional[FactorScores] = None,
        variants: Optional[list[str]] = None,
    ) -> PolicyExplanation:
        """Score a policy, compare it with the baseline and explain the gap."""
        definition = self.lens(lens)
        policy = self._policy(definition, policy)
        chosen = self.registry.variants(definition.version, variants or [])
        target = apply_variants(policy, chosen)
        baseline_profile = self.baseline_profile(definition.version)

        individual = score_impact(
            profile,
            policy,
            definition.modifiers,
            factor_scores=factor_scores,
            display_range=self.display_range,
            variants=chosen,
        )
        baseline = score_impact(
            baseline_profile,
            policy,
            definition.modifiers,
            display_range=self.display_range,
            variants=chosen,
        )
        consensus = classify_consensus(individual, baseline, self.config.consensus_for(definition))
        divergence = explain_divergence(
            profile,
            baseline_profile,
            target,
            definition.modifiers,
            factor_scores=factor_scores,
            display_range=self.display_range,
            lens=definition,
        )
        insight = LensExplainer(definition, self.config).score_insight(
            individual.score,
            baseline.score,
            divergence.drivers,
        )

        return PolicyExplanation(
            policy_id=target.policy_id,
            lens=definition.version,
            title=target.title,
            individual=individual,
            baseline=baseline,
            consensus=consensus,
            divergence=divergence,
            insight=insight,
        )

    def analyze_policy(self, lens: LensKey, policy: PolicyKey) -> PanelAnalysis:
        """How every archetype of the lens views one policy."""
        definition = self.lens(lens)
        return analyze_panel(
            self._policy(definition, policy),
            definition,
            definition.modifiers,
            display_range=self.display_range,
            config=self.config,
        )


def load_responses(path: Union[str, Path]) -> dict[str, object]:
    """Read a JSON object of ``{question_id: response}`` from disk.

    A top-level ``responses`` key is unwrapped if present.
    """
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if isinstance(data, dict) and isinstance(data.get("responses"), dict):
        data = data["responses"]
    if not isinstance(data, dict):
        raise InvalidInputError(f"{path} must contain a JSON object of responses")
    return data
