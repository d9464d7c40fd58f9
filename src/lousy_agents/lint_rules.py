"""
Lint rule registry, per-repository rule configuration and the severity filter.

Configuration lives in the target directory, in the first file found of
``CONFIG_FILE_NAMES``::

    lint:
      rules:
        skills:
          skill/missing-allowed-tools: "off"
        instructions:
          instruction/missing-error-handling: error

User overrides are merged over ``DEFAULT_LINT_RULES``; rule ids that are not
part of the registry are discarded.
"""

import json
import logging
import tomllib
from pathlib import Path
from typing import Annotated, Any, Dict, Iterable, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, StringConstraints, ValidationError, field_validator

from .models import (
    LintOutput,
    LintRulesConfig,
    LintSeverity,
    LintSummary,
    QualitySuggestion,
    RuleSeverity,
)

logger = logging.getLogger(__name__)

RULE_ID_PATTERN = r"^[a-z]+/[a-z]+(-[a-z]+)*$"

CONFIG_FILE_NAMES = (
    "lousy-agents.config.yaml",
    "lousy-agents.config.yml",
    "lousy-agents.config.json",
    "lousy-agents.config.toml",
    ".lousy-agentsrc",
)

_E = RuleSeverity.ERROR
_W = RuleSeverity.WARN

DEFAULT_LINT_RULES = LintRulesConfig(
    agents={
        "agent/missing-frontmatter": _E,
        "agent/invalid-frontmatter": _E,
        "agent/missing-name": _E,
        "agent/invalid-name-format": _E,
        "agent/name-mismatch": _E,
        "agent/missing-description": _E,
        "agent/invalid-description": _E,
        "agent/invalid-field": _W,
    },
    instructions={
        "instruction/parse-error": _W,
        "instruction/command-not-in-code-block": _W,
        "instruction/command-outside-section": _W,
        "instruction/missing-error-handling": _W,
        "instruction/command-not-documented": _W,
    },
    skills={
        "skill/invalid-frontmatter": _E,
        "skill/missing-frontmatter": _E,
        "skill/missing-name": _E,
        "skill/invalid-name-format": _E,
        "skill/name-mismatch": _E,
        "skill/missing-description": _E,
        "skill/invalid-description": _E,
        "skill/invalid-field": _W,
        "skill/missing-allowed-tools": _W,
    },
)


class LintConfigError(Exception):
    """The lint rules configuration could not be loaded."""


RuleId = Annotated[str, StringConstraints(pattern=RULE_ID_PATTERN)]


class _RulesSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    agents: Optional[Dict[RuleId, RuleSeverity]] = None
    instructions: Optional[Dict[RuleId, RuleSeverity]] = None
    skills: Optional[Dict[RuleId, RuleSeverity]] = None

    @field_validator("agents", "instructions", "skills", mode="before")
    @classmethod
    def _unquoted_off(cls, value: Any) -> Any:
        # YAML 1.1 loads a bare `off` as False
        if isinstance(value, dict):
            return {k: ("off" if v is False else v) for k, v in value.items()}
        return value


class _LintSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rules: Optional[_RulesSection] = None


class _ConfigFile(BaseModel):
    """Top level of the config document; sections other than ``lint`` are ignored."""

    lint: Optional[_LintSection] = None


def find_config_file(target_dir: str) -> Optional[Path]:
    root = Path(target_dir)
    for name in CONFIG_FILE_NAMES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


def _read_config(path: Path) -> Any:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise LintConfigError(f"Cannot read lint config {path}: {exc}") from exc

    try:
        if path.suffix == ".json":
            return json.loads(text)
        if path.suffix == ".toml":
            return tomllib.loads(text)
        # YAML is a superset of JSON, which covers .lousy-agentsrc too
        return yaml.safe_load(text)
    except (ValueError, yaml.YAMLError) as exc:
        raise LintConfigError(f"Invalid lint config {path}: {exc}") from exc


def _merge(
    defaults: Mapping[str, RuleSeverity], overrides: Optional[Mapping[str, RuleSeverity]]
) -> Dict[str, RuleSeverity]:
    merged = dict(defaults)
    for rule_id, severity in (overrides or {}).items():
        if rule_id in defaults:
            merged[rule_id] = severity
        else:
            logger.debug("Ignoring unknown lint rule %s", rule_id)
    return merged


def parse_lint_config(raw: Any, source: str = "<config>") -> LintRulesConfig:
    """Validate a raw config document and merge it over the defaults."""
    if raw is None:
        return DEFAULT_LINT_RULES.model_copy(deep=True)
    if not isinstance(raw, dict):
        raise LintConfigError(f"Invalid lint config {source}: expected a mapping")

    try:
        parsed = _ConfigFile.model_validate(raw)
    except ValidationError as exc:
        raise LintConfigError(f"Invalid lint config {source}: {exc}") from exc

    rules = parsed.lint.rules if parsed.lint else None
    if rules is None:
        return DEFAULT_LINT_RULES.model_copy(deep=True)
    return LintRulesConfig(
        agents=_merge(DEFAULT_LINT_RULES.agents, rules.agents),
        instructions=_merge(DEFAULT_LINT_RULES.instructions, rules.instructions),
        skills=_merge(DEFAULT_LINT_RULES.skills, rules.skills),
    )


def load_lint_config(target_dir: str) -> LintRulesConfig:
    """Load the rules config of *target_dir*, or the defaults when there is none.

    Raises :class:`LintConfigError` on unreadable or invalid files.
    """
    path = find_config_file(target_dir)
    if path is None:
        return DEFAULT_LINT_RULES.model_copy(deep=True)
    logger.info("Loading lint config from %s", path)
    return parse_lint_config(_read_config(path), str(path))


_SEVERITY_FOR_RULE = {
    RuleSeverity.ERROR: LintSeverity.ERROR,
    RuleSeverity.WARN: LintSeverity.WARNING,
}


def summarize(output: LintOutput) -> LintSummary:
    counts = {severity: 0 for severity in LintSeverity}
    for diagnostic in output.diagnostics:
        counts[diagnostic.severity] += 1
    return LintSummary(
        total_files=len(output.files_analyzed),
        total_errors=counts[LintSeverity.ERROR],
        total_warnings=counts[LintSeverity.WARNING],
        total_infos=counts[LintSeverity.INFO],
    )


def apply_severity_filter(output: LintOutput, rules: LintRulesConfig) -> LintOutput:
    """Apply configured severities to *output* and recompute its summary.

    ``off`` drops a diagnostic, ``warn``/``error`` set its severity, and
    diagnostics without a configured rule id pass through unchanged.
    """
    configured = rules.for_target(output.target)
    kept = []
    for diagnostic in output.diagnostics:
        severity = configured.get(diagnostic.rule_id) if diagnostic.rule_id else None
        if severity is None:
            kept.append(diagnostic)
        elif severity != RuleSeverity.OFF:
            kept.append(diagnostic.model_copy(update={"severity": _SEVERITY_FOR_RULE[severity]}))

    filtered = output.model_copy(update={"diagnostics": kept})
    filtered.summary = summarize(filtered)
    return filtered


def filter_suggestions(
    suggestions: Iterable[QualitySuggestion], rules: LintRulesConfig
) -> List[QualitySuggestion]:
    """Drop suggestions whose rule id is configured ``off``."""
    return [
        s
        for s in suggestions
        if not s.rule_id or rules.instructions.get(s.rule_id) != RuleSeverity.OFF
    ]
