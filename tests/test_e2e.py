"""End-to-End Test Suite for the Civic Lens engine.

Runs the full pipeline against the lens data shipped with the package,
from questionnaire responses through to explanations.

Test Categories:
================

1. Profiles (TestProfiles)
   - Neutral answers, archetype self-matching, reverse-phrased items

2. Policy scoring (TestPolicyScoring)
   - Display bounds, ranking order, ordered modifiers

3. Explanations (TestExplanations)
   - Baseline comparison, divergence drivers, variants, panels

4. Engine contract (TestEngineContract)
   - Determinism, lens isolation, response files

Running Tests:
=============

    # Run all end-to-end tests
    pytest tests/test_e2e.py -v

    # Run specific test class
    pytest tests/test_e2e.py::TestExplanations -v
"""

import json

import pytest

from lens_catalog.errors import InvalidInputError, LensMismatchError, LensNotFoundError
from lens_scorer.config import EngineConfig
from lens_scorer.engine import LensEngine, load_responses
from lens_scorer.matcher import ArchetypeMatcher
from lens_scorer.modifiers import apply_modifiers
from lens_scorer.projector import project_impact, scale_to_display
from lens_scorer.schema import ConsensusState, LensVersion, PanelState, WeightProfile


@pytest.fixture(scope="module")
def engine():
    """Engine over the packaged lens data with default configuration."""
    engine = LensEngine(config=EngineConfig())
    engine.load_registry()
    return engine


def sign_profile(engine: LensEngine, lens: str, policy_id: str) -> WeightProfile:
    """Profile that agrees fully with every non-zero impact of a policy."""
    policy = engine.registry.policy(lens, policy_id)
    weights = {f: (1.0 if i > 0 else -1.0 if i < 0 else 0.0) for f, i in policy.impacts.items()}
    return WeightProfile(lens=policy.lens, weights=weights)


class TestProfiles:
    """Tests building profiles from questionnaire responses."""

    @pytest.mark.parametrize("lens", ["v1", "v2", "v3", "v4"])
    def test_neutral_answers_give_zero_profile(self, engine, lens):
        definition = engine.lens(lens)
        result = engine.build_profile(lens, {q.id: 0 for q in definition.questions})
        assert all(w == 0.0 for w in result.profile.weights.values())
        assert result.match.is_custom

    @pytest.mark.parametrize("lens", ["v1", "v2", "v3", "v4"])
    def test_every_archetype_matches_itself(self, engine, lens):
        definition = engine.lens(lens)
        matcher = ArchetypeMatcher(definition, config=engine.config)
        for archetype in definition.archetypes:
            match = matcher.match(engine.archetype_profile(lens, archetype.id))
            assert match.archetype_id == archetype.id
            assert match.similarity == 1.0

    @pytest.mark.parametrize("lens", ["v1", "v2", "v3", "v4"])
    def test_extreme_answers_stay_in_range(self, engine, lens):
        definition = engine.lens(lens)
        for value in (definition.scale.minimum, definition.scale.maximum):
            result = engine.build_profile(lens, {q.id: value for q in definition.questions})
            assert all(-1.0 <= w <= 1.0 for w in result.profile.weights.values())

    def test_reverse_phrased_items(self, engine):
        result = engine.build_profile("v2", {
            "v2_q_hayek": -2,
            "v2_q_olson": -2,
            "v2_q_commons": 2,
            "v2_q_sunset": 2,
        })
        weights = result.profile.weights
        assert weights["hayek"] == pytest.approx(1.0)
        assert weights["olson"] == pytest.approx(1.0)
        assert weights["ostrom"] == pytest.approx(0.5)
        assert weights["downs"] == pytest.approx(1 / 3)
        assert weights["rawls"] == 0.0
        assert result.answered == 4

    def test_advocate_answers(self, engine):
        result = engine.build_profile("v1", {
            "q_scope": -1,
            "q_money": -1,
            "q_depth": 2,
            "q_equity": 2,
            "q_systems": -1,
            "q_risk": -1,
        })
        assert result.match.archetype_id == "advocate"
        assert "The Advocate" in result.match.explanation

    def test_unknown_archetype(self, engine):
        with pytest.raises(LensNotFoundError):
            engine.archetype_profile("v1", "no-such-archetype")


class TestPolicyScoring:
    """Tests scoring packaged policies."""

    @pytest.mark.parametrize("lens", ["v1", "v2", "v3", "v4"])
    def test_archetype_scores_within_display_range(self, engine, lens):
        definition = engine.lens(lens)
        for archetype in definition.archetypes:
            profile = engine.archetype_profile(lens, archetype.id)
            for scored in engine.rank_policies(lens, profile):
                assert -100.0 <= scored.score <= 100.0

    def test_ranking_is_sorted(self, engine):
        ranked = engine.rank_policies("v1", engine.archetype_profile("v1", "futurist"))
        keys = [(-s.score, s.policy_id) for s in ranked]
        assert keys == sorted(keys)
        assert len(ranked) == len(engine.registry.policies("v1"))

    def test_fully_aligned_profile_hits_the_top(self, engine):
        profile = sign_profile(engine, "v1", "universal-pre-k")
        scored = engine.score_policy("v1", profile, "universal-pre-k")
        assert scored.base_score == pytest.approx(100.0)

    def test_modifier_chain_in_order(self, engine):
        profile = sign_profile(engine, "v2", "universal-basic-income")
        scored = engine.score_policy("v2", profile, "universal-basic-income")

        assert scored.base_score == pytest.approx(100.0)
        assert [m.modifier_id for m in scored.fired_modifiers] == [
            "capture-risk-discount",
            "strong-floor-bonus",
            "enthusiasm-dampener",
        ]
        assert scored.score == pytest.approx((100.0 * 0.85 + 8) * 0.9)

    def test_scoped_modifier_only_hits_its_policies(self, engine):
        weights = {f: 0.0 for f in engine.lens("v2").factor_ids}
        weights["george"] = 1.0
        profile = WeightProfile(lens=LensVersion.V2, weights=weights)

        ubi = engine.score_policy("v2", profile, "universal-basic-income")
        repair = engine.score_policy("v2", profile, "right-to-repair")
        assert [m.modifier_id for m in ubi.fired_modifiers] == ["rent-funding-penalty"]
        assert ubi.score == pytest.approx(ubi.base_score - 10)
        assert repair.fired_modifiers == []

    def test_scoped_modifiers_need_a_policy_id(self, engine):
        weights = {f: 0.0 for f in engine.lens("v2").factor_ids}
        weights["george"] = 1.0
        profile = WeightProfile(lens=LensVersion.V2, weights=weights)
        repair = engine.registry.policy("v2", "right-to-repair")
        base = scale_to_display(project_impact(profile, repair), repair)

        outcome = apply_modifiers(base, profile, engine.lens("v2").modifiers)
        assert "rent-funding-penalty" not in [m.modifier_id for m in outcome.fired]
        assert outcome.score == base


class TestExplanations:
    """Tests comparing individual scores with the baseline."""

    @pytest.mark.parametrize("lens", ["v1", "v2", "v3", "v4"])
    def test_baseline_agrees_with_itself(self, engine, lens):
        baseline = engine.baseline_profile(lens)
        for policy in engine.registry.policies(lens):
            explanation = engine.explain_policy(lens, baseline, policy.policy_id)
            assert explanation.consensus == ConsensusState.STRONGLY_ALIGNED
            assert explanation.divergence.total_gap == 0.0
            assert explanation.insight is None

    def test_drivers_cover_every_factor(self, engine):
        profile = engine.archetype_profile("v3", "survivalist")
        explanation = engine.explain_policy("v3", profile, "medicare-for-all")
        factors = [d.factor for d in explanation.divergence.drivers]
        assert sorted(factors) == sorted(engine.lens("v3").factor_ids)
        contributions = [abs(d.contribution) for d in explanation.divergence.drivers]
        assert contributions == sorted(contributions, reverse=True)

    def test_exact_attribution_without_modifiers(self, engine):
        weights = {f: 0.0 for f in engine.lens("v2").factor_ids}
        weights["keynes"] = 0.4
        profile = WeightProfile(lens=LensVersion.V2, weights=weights)
        explanation = engine.explain_policy("v2", profile, "right-to-repair")

        divergence = explanation.divergence
        assert divergence.exact
        assert divergence.attributed_gap == pytest.approx(divergence.total_gap)
        assert divergence.individual_score == explanation.individual.score
        assert divergence.baseline_score == explanation.baseline.score

    def test_modifiers_mark_divergence_approximate(self, engine):
        profile = sign_profile(engine, "v2", "universal-basic-income")
        explanation = engine.explain_policy("v2", profile, "universal-basic-income")
        assert not explanation.divergence.exact
        assert explanation.divergence.residual == pytest.approx(
            explanation.divergence.total_gap - explanation.divergence.attributed_gap
        )
        assert explanation.insight.startswith("Scores")

    def test_variants_apply_to_both_sides(self, engine):
        baseline = engine.baseline_profile("v2")
        plain = engine.explain_policy("v2", baseline, "universal-basic-income")
        varied = engine.explain_policy("v2", baseline, "universal-basic-income", variants=["fund-lvt"])
        assert varied.individual.variants == ["fund-lvt"]
        assert varied.baseline.variants == ["fund-lvt"]
        assert varied.baseline.score != plain.baseline.score

    def test_unknown_variant(self, engine):
        with pytest.raises(LensNotFoundError):
            engine.explain_policy("v2", engine.baseline_profile("v2"), "universal-basic-income", variants=["nope"])

    @pytest.mark.parametrize("lens", ["v1", "v2", "v3", "v4"])
    def test_panel_for_every_policy(self, engine, lens):
        definition = engine.lens(lens)
        for policy in engine.registry.policies(lens):
            analysis = engine.analyze_policy(lens, policy.policy_id)
            assert len(analysis.members) == len(definition.archetypes)
            assert isinstance(analysis.state, PanelState)
            assert analysis.narrative
            assert len(analysis.drivers) == min(3, len(definition.factor_ids))
            variances = [d.variance for d in analysis.drivers]
            assert variances == sorted(variances, reverse=True)


class TestEngineContract:
    """Tests for determinism, lens isolation and response files."""

    def test_deterministic(self, engine):
        responses = {"v2_q_rawls": -2, "v2_q_polanyi": -1, "v2_q_hayek": 1}
        first = engine.build_profile("v2", responses)
        second = LensEngine(registry=engine.registry, config=EngineConfig()).build_profile("v2", responses)
        assert first == second

        a = engine.explain_policy("v2", first.profile, "medicare-for-all", first.factor_scores)
        b = engine.explain_policy("v2", second.profile, "medicare-for-all", second.factor_scores)
        assert a == b

    def test_lenses_never_mix(self, engine):
        v1_profile = engine.archetype_profile("v1", "balanced")
        with pytest.raises(LensMismatchError):
            engine.score_policy("v2", v1_profile, "universal-basic-income")

    def test_responses_for_another_lens(self, engine):
        with pytest.raises(InvalidInputError):
            engine.build_profile("v1", {"v2_q_hayek": 1})

    def test_load_responses(self, tmp_path):
        flat = tmp_path / "flat.json"
        flat.write_text(json.dumps({"q_scope": 1}), encoding="utf-8")
        wrapped = tmp_path / "wrapped.json"
        wrapped.write_text(json.dumps({"responses": {"q_scope": 1}}), encoding="utf-8")
        assert load_responses(flat) == load_responses(wrapped) == {"q_scope": 1}

    def test_load_responses_rejects_lists(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text(json.dumps([1, 2]), encoding="utf-8")
        with pytest.raises(InvalidInputError):
            load_responses(path)
