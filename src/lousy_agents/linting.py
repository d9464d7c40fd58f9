"""
Frontmatter lint engines for skills and custom agents, and the three lint
entry points (skills, agents, instructions) that produce a ``LintOutput``.

Diagnostics are raw: they carry the default severity of their rule and are
passed through :func:`lousy_agents.lint_rules.apply_severity_filter` by the
caller.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ValidationError

from .discovery import (
    FileSystemReader,
    analyze_instruction_quality,
    find_agent_files,
    find_skill_files,
    read_files,
    validate_target_dir,
)
from .frontmatter import FrontmatterError, parse_frontmatter
from .lint_rules import apply_severity_filter, load_lint_config, summarize
from .models import (
    AgentFrontmatter,
    LintDiagnostic,
    LintOutput,
    LintRulesConfig,
    LintSeverity,
    LintTarget,
    ParsedFrontmatter,
    SkillFrontmatter,
)

logger = logging.getLogger(__name__)

NAME_FORMAT_MESSAGE = (
    "Name must contain only lowercase letters, numbers, and hyphens. "
    "It cannot start/end with a hyphen or contain consecutive hyphens."
)

# pydantic error types meaning "absent or unusable" rather than "malformed"
_MISSING_ERROR_TYPES = frozenset({"missing", "string_type", "string_too_short"})


class FrontmatterLinter:
    """Validates one kind of frontmatter against its pydantic schema.

    Required fields (``name``, ``description``) map to ``missing-*`` /
    ``invalid-*`` rules; any other schema violation is ``invalid-field``.
    """

    def __init__(
        self,
        target: LintTarget,
        schema: Type[BaseModel],
        expected_name_label: str,
        recommended_fields: Sequence[str] = (),
    ):
        self.target = target
        self.schema = schema
        self.prefix = target.value
        self.expected_name_label = expected_name_label
        self.recommended_fields = tuple(recommended_fields)

    def _diagnostic(
        self,
        file_path: str,
        line: int,
        rule: str,
        message: str,
        field: Optional[str] = None,
        severity: LintSeverity = LintSeverity.ERROR,
    ) -> LintDiagnostic:
        return LintDiagnostic(
            file_path=file_path,
            line=line,
            severity=severity,
            message=message,
            rule_id=f"{self.prefix}/{rule}",
            field=field,
            target=self.target,
        )

    def _classify(self, field: Optional[str], error: Dict[str, Any]) -> Tuple[str, str, LintSeverity]:
        """Rule name, message and severity for one schema error."""
        kind = error.get("type", "")
        # `name:` with no value loads as None
        wrong_type = kind == "string_type" and error.get("input") is not None
        if field == "name":
            if kind in _MISSING_ERROR_TYPES:
                message = "Name must be a string" if wrong_type else "Name is required"
                return "missing-name", message, LintSeverity.ERROR
            if kind == "string_too_long":
                return "invalid-name-format", "Name must be 64 characters or fewer", LintSeverity.ERROR
            return "invalid-name-format", NAME_FORMAT_MESSAGE, LintSeverity.ERROR
        if field == "description":
            if kind in _MISSING_ERROR_TYPES:
                message = (
                    "Description must be a string" if wrong_type else "Description is required"
                )
                return "missing-description", message, LintSeverity.ERROR
            if kind == "string_too_long":
                return (
                    "invalid-description",
                    "Description must be 1024 characters or fewer",
                    LintSeverity.ERROR,
                )
            return "invalid-description", "Description cannot be empty or whitespace-only", LintSeverity.ERROR
        return "invalid-field", f"Invalid value for '{field}': {error.get('msg', 'invalid')}", LintSeverity.WARNING

    def lint(self, file_path: str, expected_name: str, content: str) -> List[LintDiagnostic]:
        """Diagnostics for one file's *content*."""
        try:
            parsed = parse_frontmatter(content)
        except FrontmatterError as exc:
            return [self._diagnostic(file_path, 1, "invalid-frontmatter", str(exc))]

        if parsed is None:
            kind = "Skill" if self.target == LintTarget.SKILL else "Agent"
            return [
                self._diagnostic(
                    file_path,
                    1,
                    "missing-frontmatter",
                    f"Missing YAML frontmatter. {kind} files must begin with --- delimited YAML frontmatter.",
                )
            ]

        return self._validate(file_path, expected_name, parsed)

    def _validate(
        self, file_path: str, expected_name: str, parsed: ParsedFrontmatter
    ) -> List[LintDiagnostic]:
        diagnostics: List[LintDiagnostic] = []
        model: Optional[BaseModel] = None
        try:
            model = self.schema.model_validate(parsed.data)
        except ValidationError as exc:
            seen = set()
            for error in exc.errors():
                loc = error.get("loc") or ()
                field = str(loc[0]) if loc else None
                rule, message, severity = self._classify(field, error)
                # union fields report one error per member type
                if (rule, field) in seen:
                    continue
                seen.add((rule, field))
                diagnostics.append(
                    self._diagnostic(
                        file_path, parsed.line_for(field), rule, message, field, severity
                    )
                )

        required_ok = not any(d.severity == LintSeverity.ERROR for d in diagnostics)
        name = model.name if model is not None else parsed.data.get("name")
        if required_ok and isinstance(name, str) and name != expected_name:
            diagnostics.append(
                self._diagnostic(
                    file_path,
                    parsed.line_for("name"),
                    "name-mismatch",
                    f"Frontmatter name '{name}' must match {self.expected_name_label} '{expected_name}'",
                    "name",
                )
            )

        for field in self.recommended_fields:
            if field not in parsed.data:
                diagnostics.append(
                    self._diagnostic(
                        file_path,
                        parsed.frontmatter_start_line,
                        f"missing-{field}",
                        f"Recommended field '{field}' is missing",
                        field,
                        LintSeverity.WARNING,
                    )
                )
        return diagnostics


SKILL_LINTER = FrontmatterLinter(
    LintTarget.SKILL,
    SkillFrontmatter,
    expected_name_label="parent directory name",
    recommended_fields=("allowed-tools",),
)
AGENT_LINTER = FrontmatterLinter(
    LintTarget.AGENT, AgentFrontmatter, expected_name_label="filename"
)


def lint_skill_content(file_path: str, skill_name: str, content: str) -> List[LintDiagnostic]:
    return SKILL_LINTER.lint(file_path, skill_name, content)


def lint_agent_content(file_path: str, agent_name: str, content: str) -> List[LintDiagnostic]:
    return AGENT_LINTER.lint(file_path, agent_name, content)


def _unreadable(file_path: str, target: LintTarget, exc: BaseException) -> LintDiagnostic:
    return LintDiagnostic(
        file_path=file_path,
        line=1,
        severity=LintSeverity.ERROR,
        message=f"Could not read file: {exc}",
        target=target,
    )


def _output(target: LintTarget, files: List[str], diagnostics: List[LintDiagnostic]) -> LintOutput:
    output = LintOutput(diagnostics=diagnostics, target=target, files_analyzed=files)
    output.summary = summarize(output)
    return output


async def _lint_files(
    target_dir: str,
    target: LintTarget,
    linter: FrontmatterLinter,
    entries: Sequence[Tuple[str, str]],
) -> LintOutput:
    paths = [path for path, _ in entries]
    contents = await read_files(target_dir, paths, FileSystemReader())

    diagnostics: List[LintDiagnostic] = []
    for (path, expected_name), content in zip(entries, contents):
        if isinstance(content, BaseException):
            logger.warning("Cannot read %s: %s", path, content)
            diagnostics.append(_unreadable(path, target, content))
            continue
        diagnostics.extend(linter.lint(path, expected_name, content))
    return _output(target, paths, diagnostics)


async def lint_skills(target_dir: str) -> LintOutput:
    """Lint every discovered ``SKILL.md``."""
    validate_target_dir(target_dir)
    skills = find_skill_files(target_dir)
    logger.debug("Linting %d skill file(s)", len(skills))
    return await _lint_files(
        target_dir, LintTarget.SKILL, SKILL_LINTER, [(s.file_path, s.skill_name) for s in skills]
    )


async def lint_agents(target_dir: str) -> LintOutput:
    """Lint every custom agent definition."""
    validate_target_dir(target_dir)
    agents = find_agent_files(target_dir)
    logger.debug("Linting %d agent file(s)", len(agents))
    return await _lint_files(
        target_dir, LintTarget.AGENT, AGENT_LINTER, [(a.file_path, a.agent_name) for a in agents]
    )


async def lint_instructions(target_dir: str) -> LintOutput:
    """Instruction-quality diagnostics as a ``LintOutput``."""
    analysis = await analyze_instruction_quality(target_dir)
    files = [f.file_path for f in analysis.result.discovered_files]
    return _output(LintTarget.INSTRUCTION, files, analysis.diagnostics)


LINTERS = {
    LintTarget.SKILL: lint_skills,
    LintTarget.AGENT: lint_agents,
    LintTarget.INSTRUCTION: lint_instructions,
}


async def run_lint(
    target_dir: str,
    targets: Optional[Sequence[LintTarget]] = None,
    rules: Optional[LintRulesConfig] = None,
) -> List[LintOutput]:
    """Lint the selected targets (all when none given) and apply *rules*.

    The rules config is loaded from *target_dir* when not supplied, so a
    :class:`~.lint_rules.LintConfigError` is raised before any file is read.
    """
    validate_target_dir(target_dir)
    if rules is None:
        rules = load_lint_config(target_dir)
    selected = list(targets) if targets else list(LINTERS)
    outputs = await asyncio.gather(*(LINTERS[t](target_dir) for t in selected))
    return [apply_severity_filter(output, rules) for output in outputs]


def has_errors(outputs: Sequence[LintOutput]) -> bool:
    return any(o.summary.total_errors > 0 for o in outputs)
