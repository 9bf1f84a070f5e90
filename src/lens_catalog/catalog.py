"""Loading and validation of lens and policy data files.

Lens definitions live in ``data/lenses/<version>.yaml`` and policy impact
datasets in ``data/policies/<version>.yaml``. The whole set is read once into
a :class:`LensRegistry`, whose contents are frozen pydantic models.
"""

import logging
import math
import os
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import ValidationError

from .errors import LensDataError, LensNotFoundError
from .schema import (
    LensDefinition,
    LensVersion,
    PolicyCatalog,
    PolicyImpactScores,
    PolicyVariant,
)

logger = logging.getLogger(__name__)

DATA_DIR_ENV_VAR = "CIVIC_LENS_DATA_DIR"
PACKAGE_DATA_DIR = Path(__file__).parent / "data"


def default_data_dir() -> Path:
    """Directory holding ``lenses/`` and ``policies/``.

    ``CIVIC_LENS_DATA_DIR`` overrides the data shipped with the package.
    """
    override = os.environ.get(DATA_DIR_ENV_VAR)
    if override:
        return Path(override)
    return PACKAGE_DATA_DIR


def _read_yaml(path: Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise LensDataError(f"Cannot read {path}: {e}", path=str(path)) from e
    except yaml.YAMLError as e:
        raise LensDataError(f"Invalid YAML in {path}: {e}", path=str(path)) from e

    if not isinstance(data, dict):
        raise LensDataError(f"{path} must contain a mapping at the top level", path=str(path))
    return data


def load_lens_file(path: Union[str, Path]) -> LensDefinition:
    """Load and validate a single lens definition file."""
    path = Path(path)
    data = _read_yaml(path)
    try:
        return LensDefinition.model_validate(data)
    except ValidationError as e:
        raise LensDataError(f"Lens definition {path} failed validation:\n{e}", path=str(path)) from e


def load_policy_file(path: Union[str, Path]) -> PolicyCatalog:
    """Load and validate a policy dataset."""
    path = Path(path)
    data = _read_yaml(path)
    try:
        return PolicyCatalog.model_validate(data)
    except ValidationError as e:
        raise LensDataError(f"Policy dataset {path} failed validation:\n{e}", path=str(path)) from e


class LensRegistry:
    """Read-only collection of every loaded lens and its policy dataset."""

    def __init__(
        self,
        lenses: dict[LensVersion, LensDefinition],
        policies: Optional[dict[LensVersion, PolicyCatalog]] = None,
    ):
        self._lenses = dict(lenses)
        self._policies = dict(policies or {})

        for version, catalog in self._policies.items():
            if version not in self._lenses:
                raise LensDataError(f"Policy dataset for {version.value} has no lens definition")
            _check_policy_factors(self._lenses[version], catalog)

    @classmethod
    def load(cls, data_dir: Optional[Union[str, Path]] = None) -> "LensRegistry":
        """Load every lens file found under ``data_dir``."""
        root = Path(data_dir) if data_dir else default_data_dir()
        lens_dir = root / "lenses"
        policy_dir = root / "policies"

        if not lens_dir.is_dir():
            raise LensDataError(f"Lens directory not found: {lens_dir}", path=str(lens_dir))

        lenses: dict[LensVersion, LensDefinition] = {}
        for path in sorted(lens_dir.glob("*.yaml")):
            lens = load_lens_file(path)
            if lens.version in lenses:
                raise LensDataError(f"Lens {lens.version.value} defined twice", path=str(path))
            lenses[lens.version] = lens
            logger.debug("Loaded lens %s from %s", lens.version.value, path)

        policies: dict[LensVersion, PolicyCatalog] = {}
        if policy_dir.is_dir():
            for path in sorted(policy_dir.glob("*.yaml")):
                catalog = load_policy_file(path)
                if catalog.lens in policies:
                    raise LensDataError(
                        f"Policy dataset for {catalog.lens.value} defined twice", path=str(path)
                    )
                policies[catalog.lens] = catalog

        registry = cls(lenses, policies)
        logger.info(
            "Loaded %d lenses and %d policies from %s",
            len(lenses),
            sum(len(c.policies) for c in policies.values()),
            root,
        )
        return registry

    @property
    def versions(self) -> list[LensVersion]:
        return [v for v in LensVersion if v in self._lenses]

    def lens(self, version: Union[LensVersion, str]) -> LensDefinition:
        version = _coerce_version(version)
        try:
            return self._lenses[version]
        except KeyError:
            raise LensNotFoundError(f"Lens {version.value} is not loaded", key=version.value) from None

    def policy_catalog(self, version: Union[LensVersion, str]) -> PolicyCatalog:
        version = _coerce_version(version)
        self.lens(version)
        return self._policies.get(version) or PolicyCatalog(lens=version)

    def policies(self, version: Union[LensVersion, str]) -> list[PolicyImpactScores]:
        return list(self.policy_catalog(version).policies)

    def policy(self, version: Union[LensVersion, str], policy_id: str) -> PolicyImpactScores:
        policy = self.policy_catalog(version).get_policy(policy_id)
        if policy is None:
            raise LensNotFoundError(
                f"Policy {policy_id} is not scored under lens {_coerce_version(version).value}",
                key=policy_id,
            )
        return policy

    def variants(self, version: Union[LensVersion, str], variant_ids: list[str]) -> list[PolicyVariant]:
        """Resolve variant ids in the order given."""
        catalog = self.policy_catalog(version)
        resolved = []
        for variant_id in variant_ids:
            variant = catalog.get_variant(variant_id)
            if variant is None:
                raise LensNotFoundError(f"Unknown policy variant: {variant_id}", key=variant_id)
            resolved.append(variant)
        return resolved


def _coerce_version(version: Union[LensVersion, str]) -> LensVersion:
    if isinstance(version, LensVersion):
        return version
    try:
        return LensVersion(version)
    except ValueError:
        raise LensNotFoundError(f"Unknown lens version: {version}", key=str(version)) from None


def _check_policy_factors(lens: LensDefinition, catalog: PolicyCatalog) -> None:
    expected = set(lens.factor_ids)
    for policy in catalog.policies:
        if set(policy.impacts) != expected:
            missing = sorted(expected - set(policy.impacts))
            extra = sorted(set(policy.impacts) - expected)
            raise LensDataError(
                f"Policy {policy.policy_id} does not match the {lens.version.value} factor set "
                f"(missing={missing}, extra={extra})"
            )
    for variant in catalog.variants:
        unknown = set(variant.delta) - expected
        if unknown:
            raise LensDataError(
                f"Variant {variant.id} shifts unknown factors: {sorted(unknown)}"
            )


class LensValidator:
    """Reports authoring problems that schema validation cannot catch."""

    def validate(self, lens: LensDefinition, policies: Optional[PolicyCatalog] = None) -> list[str]:
        """Validate one lens and its policies, returning a list of issues."""
        issues = []
        prefix = f"[{lens.version.value}]"

        loaded = {factor_id: False for factor_id in lens.factor_ids}
        for question in lens.questions:
            for factor_id, loading in question.loadings.items():
                if loading != 0:
                    loaded[factor_id] = True
        for factor_id, has_loading in loaded.items():
            if not has_loading:
                issues.append(f"{prefix} Factor {factor_id} has no non-zero loading (degenerate range)")

        for factor in lens.factors:
            if not factor.label:
                issues.append(f"{prefix} Factor {factor.id} is missing a label")

        if not lens.archetypes:
            issues.append(f"{prefix} No archetypes defined; every profile will be custom")
        for archetype in lens.archetypes:
            if not any(archetype.weights.values()):
                issues.append(f"{prefix} Archetype {archetype.id} has a zero reference profile")

        # An archetype only self-matches at 1.0 if no other one shares its direction
        for i, first in enumerate(lens.archetypes):
            for second in lens.archetypes[i + 1:]:
                if _same_direction(first.weights, second.weights, lens.factor_ids):
                    issues.append(
                        f"{prefix} Archetypes {first.id} and {second.id} point in the same direction"
                    )

        policy_ids = set()
        if policies is not None:
            policy_ids = {p.policy_id for p in policies.policies}
            for policy in policies.policies:
                if not any(policy.impacts.values()):
                    issues.append(f"{prefix} Policy {policy.policy_id} has all-zero impacts")
                if not policy.rationale:
                    issues.append(f"{prefix} Policy {policy.policy_id} has no rationale")

        for modifier in lens.modifiers:
            for policy_id in modifier.policies or []:
                if policies is not None and policy_id not in policy_ids:
                    issues.append(
                        f"{prefix} Modifier {modifier.id} is scoped to unknown policy {policy_id}"
                    )

        return issues


def _same_direction(a: dict[str, float], b: dict[str, float], factor_ids: list[str]) -> bool:
    dot = sum(a[f] * b[f] for f in factor_ids)
    norm = math.sqrt(sum(a[f] ** 2 for f in factor_ids)) * math.sqrt(sum(b[f] ** 2 for f in factor_ids))
    if norm == 0:
        return False
    return round(dot / norm, 12) >= 1.0


def validate_lens_data(
    data_dir: Optional[Union[str, Path]] = None,
) -> tuple[LensRegistry, list[str]]:
    """Load the registry and validate every lens in it.

    Returns the registry and a list of validation issues.
    """
    registry = LensRegistry.load(data_dir)
    validator = LensValidator()
    issues = []
    for version in registry.versions:
        issues.extend(validator.validate(registry.lens(version), registry.policy_catalog(version)))
    return registry, issues
