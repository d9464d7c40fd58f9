"""
Command-line interface for lousy-agents.
"""

import asyncio
import json
import logging
import sys
from typing import List, Optional

import click

from .discovery import (
    InvalidTargetDirectoryError,
    analyze_instruction_quality,
    validate_instruction_coverage,
)
from .formatters import FORMAT_CHOICES, create_formatter
from .github import GitHubCliError, review_ruleset
from .lint_rules import LintConfigError, filter_suggestions, load_lint_config
from .linting import has_errors, run_lint
from .models import InstructionCoverageResult, InstructionQualityResult, LintTarget
from .scaffold import create_agent, create_skill
from .settings import LOG_LEVELS, Settings, load_settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    """Send log records to stderr; stdout carries command output."""
    logging.basicConfig(level=getattr(logging, level), format=LOG_FORMAT, stream=sys.stderr, force=True)


def _fail(message: str) -> None:
    click.echo(message, err=True)
    sys.exit(1)


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Logging level (overrides LOUSY_AGENTS_LOG_LEVEL and the settings file)",
)
@click.option("--verbose", "-v", is_flag=True, help="Shortcut for --log-level DEBUG")
@click.pass_context
def main(ctx: click.Context, log_level: Optional[str], verbose: bool):
    """lousy-agents - lint and score AI coding-agent instructions."""
    settings = load_settings()
    if verbose:
        settings.log_level = "DEBUG"
    elif log_level:
        settings.log_level = log_level.upper()
    configure_logging(settings.log_level)
    ctx.obj = settings


@main.command()
@click.argument("target_dir", default=".", type=click.Path(file_okay=False))
@click.option("--skills", is_flag=True, help="Lint agent skills")
@click.option("--agents", is_flag=True, help="Lint custom agents")
@click.option("--instructions", is_flag=True, help="Lint instruction-file quality")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(FORMAT_CHOICES),
    default=None,
    help="Output format (default from settings, else human)",
)
@click.pass_obj
def lint(
    settings: Settings,
    target_dir: str,
    skills: bool,
    agents: bool,
    instructions: bool,
    output_format: Optional[str],
):
    """Lint skills, custom agents and instruction files.

    Exits with status 1 when any error-severity diagnostic remains.
    """
    targets: List[LintTarget] = []
    if skills:
        targets.append(LintTarget.SKILL)
    if agents:
        targets.append(LintTarget.AGENT)
    if instructions:
        targets.append(LintTarget.INSTRUCTION)

    try:
        outputs = asyncio.run(run_lint(target_dir, targets))
    except (InvalidTargetDirectoryError, LintConfigError) as e:
        _fail(f"Error: {e}")
        return

    fmt = output_format or settings.default_format
    text = create_formatter(fmt).format(outputs)
    if text:
        click.echo(text)
    if fmt == "human":
        errors = sum(o.summary.total_errors for o in outputs)
        warnings = sum(o.summary.total_warnings for o in outputs)
        files = sum(o.summary.total_files for o in outputs)
        click.echo(f"\n{files} file(s) checked: {errors} error(s), {warnings} warning(s)")

    if has_errors(outputs):
        sys.exit(1)


def _print_quality(result: InstructionQualityResult) -> None:
    click.echo(f"Instruction quality score: {result.overall_quality_score}/100")

    click.echo(f"\nInstruction files ({len(result.discovered_files)}):")
    for f in result.discovered_files:
        click.echo(f"  - {f.file_path} ({f.format.value})")

    if result.command_scores:
        click.echo("\nCommands:")
        for s in result.command_scores:
            source = f" [{s.best_source_file}]" if s.best_source_file else ""
            click.echo(
                f"  {s.command_name}: {s.composite_score:.2f} "
                f"(structure {s.structural_context}, code block {s.execution_clarity}, "
                f"error handling {s.loop_completeness}){source}"
            )

    if result.parsing_errors:
        click.echo("\nParsing errors:")
        for e in result.parsing_errors:
            click.echo(f"  - {e.file_path}: {e.error}")

    if result.suggestions:
        click.echo("\nSuggestions:")
        for s in result.suggestions:
            click.echo(f"  - {s.message}")


def _print_coverage(coverage: InstructionCoverageResult) -> None:
    click.echo(
        f"\nCoverage: {coverage.coverage_percentage}% "
        f"({coverage.total_documented}/{coverage.total_mandatory} mandatory scripts documented)"
    )
    for suggestion in coverage.suggestions:
        click.echo(suggestion)


@main.command()
@click.argument("target_dir", default=".", type=click.Path(file_okay=False))
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["human", "json"]),
    default="human",
    help="Output format",
)
@click.option("--coverage", is_flag=True, help="Also check mandatory script coverage")
def analyze(target_dir: str, output_format: str, coverage: bool):
    """Score how well instruction files document the feedback loop."""

    async def _analyze():
        analysis = await analyze_instruction_quality(target_dir)
        coverage_result = await validate_instruction_coverage(target_dir) if coverage else None
        return analysis.result, coverage_result

    try:
        rules = load_lint_config(target_dir)
        result, coverage_result = asyncio.run(_analyze())
    except (InvalidTargetDirectoryError, LintConfigError) as e:
        _fail(f"Error: {e}")
        return

    result.suggestions = filter_suggestions(result.suggestions, rules)

    if output_format == "json":
        payload = result.to_wire()
        if coverage_result is not None:
            payload["coverage"] = coverage_result.to_wire()
        click.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    _print_quality(result)
    if coverage_result is not None:
        _print_coverage(coverage_result)


@main.group()
def new():
    """Scaffold skills and custom agents."""


@new.command("skill")
@click.argument("name")
@click.option("--target-dir", default=".", type=click.Path(file_okay=False), help="Repository root")
def new_skill(name: str, target_dir: str):
    """Create .github/skills/NAME/SKILL.md."""
    try:
        path = create_skill(target_dir, name)
    except (ValueError, FileExistsError) as e:
        _fail(f"Error: {e}")
        return
    click.echo(f"Created skill: {path}")


@new.command("agent")
@click.argument("name")
@click.option("--target-dir", default=".", type=click.Path(file_okay=False), help="Repository root")
def new_agent(name: str, target_dir: str):
    """Create .github/agents/NAME.md."""
    try:
        path = create_agent(target_dir, name)
    except (ValueError, FileExistsError) as e:
        _fail(f"Error: {e}")
        return
    click.echo(f"Created agent: {path}")


@main.command("review-ruleset")
@click.argument("target_dir", default=".", type=click.Path(file_okay=False))
@click.option("--create", is_flag=True, help="Create the ruleset when it is missing")
@click.pass_obj
def review_ruleset_cmd(settings: Settings, target_dir: str, create: bool):
    """Check that the repository has an active Copilot code review ruleset."""
    try:
        status = asyncio.run(review_ruleset(target_dir, token=settings.github_token or None, create=create))
    except GitHubCliError as e:
        _fail(f"Error: {e}")
        return

    if status.error:
        _fail(f"Error: {status.error}")
        return
    if status.has_ruleset:
        click.echo(f"✔ Copilot code review ruleset found: {status.ruleset_name}")
    else:
        click.echo("✖ No active Copilot code review ruleset. Run with --create to add one.")


@main.command()
def serve():
    """Start the lousy-agents MCP server over stdio."""
    from .server import run_stdio_server

    run_stdio_server()


if __name__ == "__main__":
    main()
