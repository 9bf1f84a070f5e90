"""Configuration for the lens scoring engine.

Lens data carries its own thresholds; this file only overrides them and
tunes how results are displayed and explained.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from lens_catalog.schema import ConsensusThresholds, LensDefinition, LensVersion

CONFIG_ENV_VAR = "CIVIC_LENS_CONFIG"


class MatchingConfig(BaseModel):
    """Configuration for archetype matching."""
    threshold_override: Optional[float] = Field(
        None,
        ge=-1.0,
        le=1.0,
        description="Similarity below which a profile is 'custom'; None uses each lens's own value"
    )
    shared_priority_count: int = Field(
        3,
        ge=1,
        description="How many top factors to compare when listing shared priorities"
    )


class DisplayConfig(BaseModel):
    """Configuration for display scaling."""
    score_range: list[float] = Field(
        default_factory=lambda: [-100.0, 100.0],
        description="Display range [low, high] that projections are mapped onto"
    )
    decimals: int = Field(
        1,
        ge=0,
        description="Decimal places shown by the CLI"
    )

    @field_validator("score_range")
    @classmethod
    def _check_range(cls, value: list[float]) -> list[float]:
        if len(value) != 2 or value[0] >= value[1]:
            raise ValueError("score_range must be [low, high] with low < high")
        return value


class ExplanationConfig(BaseModel):
    """Configuration for divergence explanations."""
    insight_min_gap: float = Field(
        3.0,
        ge=0.0,
        description="Gaps smaller than this (display points) produce no insight text"
    )
    max_drivers: int = Field(
        3,
        ge=1,
        description="Maximum number of divergence drivers named in explanations"
    )


class PanelConfig(BaseModel):
    """Archetype panel thresholds, on a 0-100 scale.

    Display scores are rescaled onto 0-100 before these are applied.
    """
    consensus_min_score: float = Field(70.0, description="Every archetype above this for super consensus")
    consensus_max_std_dev: float = Field(10.0, description="Spread below this for super consensus")
    reject_max_score: float = Field(40.0, description="Every archetype below this for universal reject")
    hidden_min_mean: float = Field(60.0, description="Mean above this for hidden agreement")
    hidden_max_std_dev: float = Field(20.0, description="Spread below this for hidden agreement")
    battleground_min_std_dev: float = Field(20.0, description="Spread at or above this is a battleground")
    driver_count: int = Field(3, ge=0, description="How many divergence drivers a panel reports")
    driver_min_spread: float = Field(5.0, description="Contribution spread above which a driver names the archetypes")


class LensOverride(BaseModel):
    """Per-lens overrides of values carried in the lens data."""
    match_threshold: Optional[float] = Field(None, ge=-1.0, le=1.0)
    consensus: Optional[ConsensusThresholds] = None


class EngineConfig(BaseModel):
    """Complete configuration for the lens scoring engine."""
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    display: DisplayConfig = Field(default_factory=DisplayConfig)
    explanation: ExplanationConfig = Field(default_factory=ExplanationConfig)
    panel: PanelConfig = Field(default_factory=PanelConfig)
    lenses: dict[LensVersion, LensOverride] = Field(default_factory=dict)

    def match_threshold_for(self, lens: LensDefinition) -> float:
        override = self.lenses.get(lens.version)
        if override is not None and override.match_threshold is not None:
            return override.match_threshold
        if self.matching.threshold_override is not None:
            return self.matching.threshold_override
        return lens.match_threshold

    def consensus_for(self, lens: LensDefinition) -> ConsensusThresholds:
        override = self.lenses.get(lens.version)
        if override is not None and override.consensus is not None:
            return override.consensus
        return lens.consensus

    @property
    def display_range(self) -> tuple[float, float]:
        low, high = self.display.score_range
        return low, high


# Global config instance
_config: Optional[EngineConfig] = None


def get_config() -> EngineConfig:
    """Get the current configuration.

    Returns the global config, initializing with defaults if not yet loaded.
    """
    global _config
    if _config is None:
        _config = EngineConfig()
    return _config


def load_config(path: Path) -> EngineConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        The loaded EngineConfig.
    """
    global _config

    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f)

    _config = EngineConfig.model_validate(data or {})
    return _config


def reset_config() -> None:
    """Reset configuration to defaults."""
    global _config
    _config = EngineConfig()


def find_config_file() -> Optional[Path]:
    """Find an engine configuration file.

    Looks in (order of priority):
    1. CIVIC_LENS_CONFIG environment variable
    2. ./lens-config.yaml
    3. ./lens-config.yml
    4. ~/.config/civic-lens/config.yaml
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        path = Path(env_path)
        if path.exists():
            return path

    for name in ["lens-config.yaml", "lens-config.yml"]:
        path = Path(name)
        if path.exists():
            return path

    user_config = Path.home() / ".config" / "civic-lens" / "config.yaml"
    if user_config.exists():
        return user_config

    return None


def save_default_config(path: Path) -> None:
    """Save the default configuration to a YAML file.

    Args:
        path: Path where to save the configuration.
    """
    config = EngineConfig()
    data = config.model_dump(mode="json")

    yaml_content = """# Civic Lens Engine Configuration
# ==============================
#
# Overrides for archetype matching, display scaling, divergence
# explanations and the archetype panel. Per-lens overrides go under
# `lenses`, keyed by lens version (v1, v2, v3, v4).
#
# Copy this file to one of these locations:
#   - ./lens-config.yaml (current directory)
#   - ~/.config/civic-lens/config.yaml (user config)
#
# Or set the CIVIC_LENS_CONFIG environment variable.

"""
    yaml_content += yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(yaml_content)
