"""Values scoring and consensus engine.

Turns questionnaire responses into lens profiles, scores policies against
them and explains where a view diverges from the baseline.
"""

from lens_catalog.errors import (
    DegenerateFactorError,
    InvalidInputError,
    LensDataError,
    LensEngineError,
    LensMismatchError,
    LensNotFoundError,
)

from .aggregator import aggregate_responses
from .consensus import (
    analyze_panel,
    classify_consensus,
    explain_divergence,
    find_panel_drivers,
    rank_divergence_drivers,
)
from .engine import LensEngine
from .matcher import match_archetype
from .modifiers import apply_modifiers
from .normalizer import compute_lens_bounds, normalize
from .projector import apply_variants, project_impact, scale_to_display, score_impact

__version__ = "1.0.0"

__all__ = [
    "DegenerateFactorError",
    "InvalidInputError",
    "LensDataError",
    "LensEngine",
    "LensEngineError",
    "LensMismatchError",
    "LensNotFoundError",
    "aggregate_responses",
    "analyze_panel",
    "apply_modifiers",
    "apply_variants",
    "classify_consensus",
    "compute_lens_bounds",
    "explain_divergence",
    "find_panel_drivers",
    "match_archetype",
    "normalize",
    "project_impact",
    "rank_divergence_drivers",
    "scale_to_display",
    "score_impact",
]
