"""CLI for the Civic Lens scoring engine.

Provides a command-line interface for building profiles from questionnaire
responses and scoring policies against them.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from lens_catalog.catalog import validate_lens_data
from lens_catalog.errors import LensEngineError

from .config import find_config_file, load_config
from .engine import LensEngine, load_responses
from .explainer import describe_consensus
from .matcher import ArchetypeMatcher
from .schema import (
    ConsensusState,
    LensProfile,
    PanelAnalysis,
    PolicyExplanation,
    WeightProfile,
)

console = Console()

CONSENSUS_STYLES = {
    ConsensusState.STRONGLY_ALIGNED: "green",
    ConsensusState.MILDLY_ALIGNED: "green",
    ConsensusState.NEUTRAL: "yellow",
    ConsensusState.MILDLY_DIVERGENT: "yellow",
    ConsensusState.STRONGLY_DIVERGENT: "red",
    ConsensusState.POLARIZED: "red",
}


@click.group()
@click.version_option(version="1.0.0", prog_name="civic-lens")
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True),
    help="Path to lens-config.yaml (default: search the usual locations)"
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Enable debug logging"
)
def main(config_path: Optional[str], verbose: bool):
    """Civic Lens values scoring and consensus engine.

    Turns questionnaire responses into a values profile, scores policies
    against it and explains where the result departs from the baseline.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    path = Path(config_path) if config_path else find_config_file()
    if path is not None:
        try:
            load_config(path)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            console.print(f"[red]Error loading config {path}: {escape(str(e))}[/red]")
            sys.exit(1)


def _engine(data_dir: Optional[str]) -> LensEngine:
    engine = LensEngine()
    engine.load_registry(data_dir)
    return engine


def _fmt(value: float, engine: LensEngine) -> str:
    return f"{value:+.{engine.config.display.decimals}f}"


data_dir_option = click.option(
    "--data-dir", "-d",
    type=click.Path(exists=True, file_okay=False),
    help="Directory containing lenses/ and policies/ (default: packaged data)"
)


@main.command("validate")
@data_dir_option
def validate_cmd(data_dir: Optional[str]):
    """Validate lens definitions and policy datasets.

    Checks schema validity, degenerate factors and that every archetype
    matches itself.

    Examples:
        civic-lens validate
        civic-lens validate -d ./my-lens-data
    """
    try:
        registry, issues = validate_lens_data(data_dir)
    except LensEngineError as e:
        console.print(f"[red]✗ Lens data invalid: {escape(str(e))}[/red]")
        sys.exit(1)

    for version in registry.versions:
        lens = registry.lens(version)
        matcher = ArchetypeMatcher(lens)
        for archetype in lens.archetypes:
            if not any(archetype.weights.values()):
                continue
            profile = WeightProfile(lens=version, weights=archetype.weights)
            match = matcher.match(profile)
            if match.archetype_id != archetype.id or match.similarity != 1.0:
                issues.append(
                    f"[{version.value}] Archetype {archetype.id} matches "
                    f"{match.archetype_id} ({match.similarity:.3f}) instead of itself"
                )

    if issues:
        console.print(f"[red]✗ Lens data invalid ({len(issues)} issues)[/red]")
        for issue in issues:
            console.print(f"  - {escape(issue)}")
    else:
        summary = ", ".join(
            f"{v.value} ({len(registry.policies(v))} policies)" for v in registry.versions
        )
        console.print(f"[green]✓ Lens data valid: {summary}[/green]")

    sys.exit(0 if not issues else 1)


@main.command("inspect")
@click.argument("lens")
@data_dir_option
def inspect_cmd(lens: str, data_dir: Optional[str]):
    """Inspect a lens: factors, archetypes, modifiers and policies.

    Example:
        civic-lens inspect v2
    """
    try:
        engine = _engine(data_dir)
        definition = engine.lens(lens)
        bounds = engine.bounds(definition.version)

        console.print(f"\n[bold blue]{definition.name}[/bold blue] ({definition.version.value})")
        if definition.description:
            console.print(definition.description)
        console.print(
            f"Questions: {len(definition.questions)}  "
            f"Scale: {definition.scale.minimum}..{definition.scale.maximum}  "
            f"Match threshold: {engine.config.match_threshold_for(definition):.2f}"
        )
        console.print()

        table = Table(title="Factors", show_header=True, header_style="bold")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Label")
        table.add_column("Range", justify="right")
        table.add_column("Baseline", justify="right")
        baseline = definition.baseline_weights()
        for factor in definition.factors:
            factor_bounds = bounds.factors[factor.id]
            table.add_row(
                factor.id,
                factor.label,
                f"{factor_bounds.minimum:g}..{factor_bounds.maximum:g}",
                f"{baseline[factor.id]:+.2f}",
            )
        console.print(table)

        if definition.archetypes:
            table = Table(title="Archetypes", show_header=True, header_style="bold")
            table.add_column("ID", style="cyan", no_wrap=True)
            table.add_column("Name")
            table.add_column("Top priorities")
            for archetype in definition.archetypes:
                reference = WeightProfile(lens=definition.version, weights=archetype.weights)
                table.add_row(
                    archetype.id,
                    archetype.name,
                    ", ".join(definition.factor_label(f) for f in reference.top_factors(3)),
                )
            console.print(table)

        if definition.modifiers:
            table = Table(title="Modifiers (in evaluation order)", show_header=True, header_style="bold")
            table.add_column("ID", style="cyan", no_wrap=True)
            table.add_column("When")
            table.add_column("Adjustment")
            table.add_column("Scope")
            for modifier in definition.modifiers:
                joiner = " and " if modifier.match.value == "all" else " or "
                table.add_row(
                    modifier.id,
                    escape(joiner.join(c.describe() for c in modifier.conditions)),
                    f"{modifier.adjustment.kind.value} {modifier.adjustment.value:g}",
                    ", ".join(modifier.policies) if modifier.policies else "all policies",
                )
            console.print(table)

        policies = engine.registry.policies(definition.version)
        console.print(f"\nPolicies: {len(policies)}")
        for policy in policies:
            console.print(f"  - [cyan]{policy.policy_id}[/cyan]: {policy.title}")

    except LensEngineError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)


@main.command("questions")
@click.argument("lens")
@click.option(
    "--tier", "-t",
    type=click.IntRange(1, 2),
    help="Only show questions of this tier"
)
@data_dir_option
def questions_cmd(lens: str, tier: Optional[int], data_dir: Optional[str]):
    """List the questionnaire items of a lens."""
    try:
        engine = _engine(data_dir)
        definition = engine.lens(lens)
        scale = definition.scale

        questions = [q for q in definition.questions if tier is None or q.tier == tier]
        console.print(
            f"\n[bold]{definition.name} questions ({len(questions)}), "
            f"answer {scale.minimum}..{scale.maximum}:[/bold]\n"
        )
        for i, question in enumerate(questions, 1):
            console.print(f"[bold cyan]{i}. {question.text}[/bold cyan]")
            console.print(f"   ID: {question.id}  (tier {question.tier})")
            console.print(f"   {scale.minimum} = {question.low_label}, {scale.maximum} = {question.high_label}")
            console.print()

    except LensEngineError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)


@main.command("profile")
@click.argument("lens")
@click.argument("responses", type=click.Path(exists=True))
@click.option(
    "--out", "-o",
    type=click.Path(),
    help="Also write the profile as JSON to this file"
)
@click.option(
    "--json-output", "-j",
    is_flag=True,
    help="Output raw JSON instead of formatted text"
)
@data_dir_option
def profile_cmd(lens: str, responses: str, out: Optional[str], json_output: bool, data_dir: Optional[str]):
    """Build a values profile from a JSON file of responses.

    Examples:
        civic-lens profile v2 answers.json
        civic-lens profile v1 answers.json -j
    """
    try:
        engine = _engine(data_dir)
        result = engine.build_profile(lens, load_responses(responses))

        if json_output:
            output_json(result.model_dump(mode="json"), out)
            return

        display_profile(result, engine)
        if out:
            output_json(result.model_dump(mode="json"), out)
            console.print(f"\n[green]Profile saved to {out}[/green]")

    except (LensEngineError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)


@main.command("score")
@click.argument("lens")
@click.argument("responses", type=click.Path(exists=True))
@click.option(
    "--max-policies", "-n",
    default=10,
    type=int,
    help="Maximum number of policies to show"
)
@data_dir_option
def score_cmd(lens: str, responses: str, max_policies: int, data_dir: Optional[str]):
    """Rank every policy of a lens for a set of responses.

    Example:
        civic-lens score v2 answers.json -n 5
    """
    try:
        engine = _engine(data_dir)
        result = engine.build_profile(lens, load_responses(responses))
        baseline_profile = engine.baseline_profile(lens)
        ranked = engine.rank_policies(lens, result.profile, result.factor_scores)

        console.print(f"\n[bold blue]Policy ranking[/bold blue] ({result.lens.value}, {result.match.name})\n")

        table = Table(show_header=True, header_style="bold")
        table.add_column("#", style="dim", width=3)
        table.add_column("Policy", style="cyan")
        table.add_column("Score", justify="right")
        table.add_column("Baseline", justify="right")
        table.add_column("Modifiers")

        for i, scored in enumerate(ranked[:max_policies], 1):
            baseline = engine.score_policy(lens, baseline_profile, scored.policy_id)
            table.add_row(
                str(i),
                scored.policy_id,
                _fmt(scored.score, engine),
                _fmt(baseline.score, engine),
                ", ".join(m.modifier_id for m in scored.fired_modifiers) or "-",
            )
        console.print(table)

    except (LensEngineError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)


@main.command("explain")
@click.argument("lens")
@click.argument("responses", type=click.Path(exists=True))
@click.argument("policy")
@click.option(
    "--variant", "-V",
    multiple=True,
    help="Policy design variant to apply (repeatable, applied in order)"
)
@click.option(
    "--json-output", "-j",
    is_flag=True,
    help="Output raw JSON instead of formatted text"
)
@data_dir_option
def explain_cmd(
    lens: str,
    responses: str,
    policy: str,
    variant: tuple,
    json_output: bool,
    data_dir: Optional[str],
):
    """Explain how a profile scores one policy versus the baseline.

    Examples:
        civic-lens explain v2 answers.json universal-basic-income
        civic-lens explain v2 answers.json universal-basic-income -V fund-lvt
    """
    try:
        engine = _engine(data_dir)
        result = engine.build_profile(lens, load_responses(responses))
        explanation = engine.explain_policy(
            lens,
            result.profile,
            policy,
            factor_scores=result.factor_scores,
            variants=list(variant),
        )

        if json_output:
            output_json(explanation.model_dump(mode="json"), None)
            return

        display_explanation(explanation, engine)
        display_panel(engine.analyze_policy(lens, policy), engine)

    except (LensEngineError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)


@main.command("panel")
@click.argument("lens")
@click.argument("policy")
@data_dir_option
def panel_cmd(lens: str, policy: str, data_dir: Optional[str]):
    """Show how every archetype of a lens views one policy."""
    try:
        engine = _engine(data_dir)
        display_panel(engine.analyze_policy(lens, policy), engine)
    except LensEngineError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)


def display_profile(result: LensProfile, engine: LensEngine) -> None:
    """Display a profile with rich formatting."""
    definition = engine.lens(result.lens)
    match = result.match

    console.print(Panel(
        match.explanation,
        title=f"[bold]{match.name}[/bold]",
        subtitle=f"{result.answered}/{len(definition.questions)} questions answered",
    ))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Factor", style="cyan")
    table.add_column("Raw", justify="right")
    table.add_column("Weight", justify="right")
    for factor in definition.factors:
        weight = result.profile.get(factor.id)
        style = "green" if weight > 0 else "red" if weight < 0 else "dim"
        table.add_row(
            factor.label,
            f"{result.factor_scores.get(factor.id):g}",
            f"[{style}]{weight:+.2f}[/{style}]",
        )
    console.print(table)

    if match.candidates:
        console.print("\n[bold]Archetype similarity:[/bold]")
        for candidate in match.candidates:
            console.print(f"  {candidate.name:<30} {candidate.similarity:+.3f}")


def display_explanation(explanation: PolicyExplanation, engine: LensEngine) -> None:
    """Display a policy explanation with rich formatting."""
    style = CONSENSUS_STYLES[explanation.consensus]
    console.print(f"\n[bold blue]{explanation.title}[/bold blue] ({explanation.policy_id})")
    if explanation.individual.variants:
        console.print(f"Variants: {', '.join(explanation.individual.variants)}")
    console.print(f"  Your score:     {_fmt(explanation.individual.score, engine)}")
    console.print(f"  Baseline score: {_fmt(explanation.baseline.score, engine)}")
    console.print(
        f"  Consensus:      [{style}]{explanation.consensus.value}[/{style}] "
        f"- {describe_consensus(explanation.consensus)}"
    )

    for fired in explanation.individual.fired_modifiers:
        console.print(
            f"  [dim]Modifier {fired.name}: "
            f"{_fmt(fired.score_before, engine)} -> {_fmt(fired.score_after, engine)}[/dim]"
        )

    divergence = explanation.divergence
    max_drivers = engine.config.explanation.max_drivers
    if divergence.drivers:
        console.print("\n[bold]Divergence drivers:[/bold]")
        for driver in divergence.drivers[:max_drivers]:
            console.print(f"  {driver.label:<30} {_fmt(driver.contribution, engine)}")
        if not divergence.exact:
            console.print(
                f"  [dim]Modifiers fired; {_fmt(divergence.residual, engine)} "
                "of the gap is not attributed to a single factor[/dim]"
            )

    if explanation.insight:
        console.print(f"\n[italic]{explanation.insight}[/italic]")


def display_panel(analysis: PanelAnalysis, engine: LensEngine) -> None:
    """Display an archetype panel analysis."""
    console.print(f"\n[bold]Archetype panel[/bold] ({analysis.state.value})")
    for member in sorted(analysis.members, key=lambda m: -m.score):
        console.print(f"  {member.name:<30} {_fmt(member.score, engine)}")
    console.print(f"  [dim]mean {_fmt(analysis.mean, engine)}, sd {analysis.std_dev:.1f}[/dim]")
    if analysis.drivers:
        console.print("\n[bold]Panel drivers:[/bold]")
        for driver in analysis.drivers:
            console.print(f"  • {escape(driver.narrative)} [dim](variance {driver.variance:.1f})[/dim]")
    if analysis.narrative:
        console.print(f"\n{escape(analysis.narrative)}")


def output_json(data: dict, out_path: Optional[str]) -> None:
    """Write JSON to a file, or stdout when no file is given."""
    json_str = json.dumps(data, indent=2)
    if out_path:
        with open(out_path, 'w', encoding='utf-8') as f:
            f.write(json_str)
    else:
        print(json_str)


@main.command("init-config")
@click.option(
    "--out", "-o",
    type=click.Path(),
    default="lens-config.yaml",
    help="Output path for the configuration file"
)
@click.option(
    "--force", "-f",
    is_flag=True,
    help="Overwrite existing config file"
)
def init_config_cmd(out: str, force: bool):
    """Generate a default engine configuration file.

    Example:
        civic-lens init-config --out my-config.yaml
    """
    from .config import save_default_config

    out_path = Path(out)
    if out_path.exists() and not force:
        console.print(f"[red]Error:[/red] Config file already exists: {out}")
        console.print("Use --force to overwrite")
        sys.exit(1)

    try:
        save_default_config(out_path)
        console.print(f"[green]✓[/green] Config file created: {out}")
        console.print("\nThis file configures:")
        console.print("  • matching - Archetype similarity threshold and shared priorities")
        console.print("  • display - Display score range and rounding")
        console.print("  • explanation - When insights are written and how many drivers they name")
        console.print("  • panel - Archetype panel thresholds")
        console.print("  • lenses - Per-lens match threshold and consensus band overrides")
        console.print("\nThe engine will look for config in this order:")
        console.print("  1. CIVIC_LENS_CONFIG environment variable")
        console.print("  2. ./lens-config.yaml (current directory)")
        console.print("  3. ~/.config/civic-lens/config.yaml")
    except OSError as e:
        console.print(f"[red]Error creating config:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
