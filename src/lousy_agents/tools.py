"""
FastMCP tools exposing instruction analysis and linting.

Every tool takes an optional ``target_dir`` (default: the server's working
directory) and returns JSON text with a ``success`` flag.
"""

import asyncio
import concurrent.futures
import os
from typing import List, Optional

from .discovery import (
    InvalidTargetDirectoryError,
    analyze_instruction_quality,
    validate_instruction_coverage,
    validate_target_dir,
)
from .feedback_loops import discover_feedback_loops
from .formatters import FORMAT_CHOICES, create_formatter
from .lint_rules import LintConfigError
from .linting import has_errors, run_lint
from .models import LintTarget
from .tools_base import Tool, error_response, success_response


def run_async_safely(coro):
    """
    Run an async coroutine safely, handling existing event loop conflicts.

    Args:
        coro: The coroutine to run

    Returns:
        The result of the coroutine
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No event loop running, we can run directly
        return asyncio.run(coro)
    # Already inside an event loop: run in a worker thread with its own loop
    with concurrent.futures.ThreadPoolExecutor() as executor:
        return executor.submit(asyncio.run, coro).result()


def _resolve_dir(target_dir: Optional[str]) -> str:
    return target_dir or os.getcwd()


class AnalyzeInstructionQualityTool(Tool):
    """Score how well instruction files document the mandatory commands."""

    def apply(self, target_dir: Optional[str] = None) -> str:
        """
        Analyze the structural quality of feedback-loop documentation in agent
        instruction files (structural context, execution clarity and loop
        completeness per mandatory command).

        Args:
            target_dir: Repository root to analyze (defaults to the working directory)

        Returns:
            JSON with discovered files, per-command scores, the overall score,
            suggestions, parsing errors and diagnostics.
        """
        directory = _resolve_dir(target_dir)
        try:
            analysis = run_async_safely(analyze_instruction_quality(directory))
        except (InvalidTargetDirectoryError, OSError) as e:
            return error_response(f"Failed to analyze instruction quality: {e}")

        payload = analysis.result.to_wire()
        payload["diagnostics"] = [d.to_wire() for d in analysis.diagnostics]
        return success_response(payload)


class ValidateInstructionCoverageTool(Tool):
    """Check which mandatory scripts are documented in instruction files."""

    def apply(self, target_dir: Optional[str] = None) -> str:
        """
        Check that the mandatory feedback-loop scripts (test, build, lint,
        format) of package.json are mentioned in the instruction files.

        Args:
            target_dir: Repository root to check (defaults to the working directory)

        Returns:
            JSON with missing and documented scripts, references, the coverage
            percentage and suggestions.
        """
        directory = _resolve_dir(target_dir)
        try:
            coverage = run_async_safely(validate_instruction_coverage(directory))
        except (InvalidTargetDirectoryError, OSError) as e:
            return error_response(f"Failed to validate instruction coverage: {e}")
        return success_response(coverage.to_wire())


class DiscoverFeedbackLoopsTool(Tool):
    """List package.json scripts grouped by SDLC phase."""

    def apply(self, target_dir: Optional[str] = None) -> str:
        """
        Discover package.json scripts and map them to feedback-loop phases
        (test, build, lint, format, security, deploy, install, dev).

        Args:
            target_dir: Repository root to inspect (defaults to the working directory)

        Returns:
            JSON with the scripts, scripts grouped by phase, the package
            manager and a summary.
        """
        directory = _resolve_dir(target_dir)
        try:
            validate_target_dir(directory)
        except InvalidTargetDirectoryError as e:
            return error_response(f"Failed to discover feedback loops: {e}")
        return success_response(run_async_safely(discover_feedback_loops(directory)))


class LintRepositoryTool(Tool):
    """Lint skills, agents and instruction files."""

    def apply(
        self,
        target_dir: Optional[str] = None,
        targets: Optional[List[str]] = None,
        format: str = "json",
    ) -> str:
        """
        Lint skill and agent frontmatter and instruction-file quality, applying
        the repository's lint rule configuration.

        Args:
            target_dir: Repository root to lint (defaults to the working directory)
            targets: Any of "skill", "agent", "instruction" (all when omitted)
            format: Rendering of the "formatted" field: human, json or rdjsonl

        Returns:
            JSON with per-target outputs, the formatted report and whether any
            error-severity diagnostic remains.
        """
        if format not in FORMAT_CHOICES:
            return error_response(f"Invalid format '{format}'. Valid formats: {list(FORMAT_CHOICES)}")
        try:
            selected = [LintTarget(t) for t in targets or []]
        except ValueError:
            return error_response(
                f"Invalid targets {targets}. Valid targets: {[t.value for t in LintTarget]}"
            )

        directory = _resolve_dir(target_dir)
        try:
            outputs = run_async_safely(run_lint(directory, selected))
        except (InvalidTargetDirectoryError, LintConfigError) as e:
            return error_response(f"Failed to lint repository: {e}")

        return success_response(
            {
                "outputs": [o.to_wire() for o in outputs],
                "formatted": create_formatter(format).format(outputs),
                "hasErrors": has_errors(outputs),
            }
        )


ALL_TOOLS = (
    AnalyzeInstructionQualityTool,
    ValidateInstructionCoverageTool,
    DiscoverFeedbackLoopsTool,
    LintRepositoryTool,
)
