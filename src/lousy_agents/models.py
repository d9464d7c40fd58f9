"""
Data models for lousy-agents.

Serialized field names (JSON output, MCP responses) use the camelCase names
consumed by downstream tools, so every wire model is built on ``_WireModel``
which derives aliases from the snake_case attribute names.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Base for models serialized with camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        """Dump with camelCase aliases, dropping unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ─── Instruction quality ─────────────────────────────────────────────────────


class InstructionFileFormat(str, Enum):
    """Kinds of agent instruction files."""

    COPILOT_INSTRUCTIONS = "copilot-instructions"  # .github/copilot-instructions.md
    COPILOT_SCOPED = "copilot-scoped"  # .github/instructions/*.md
    COPILOT_AGENT = "copilot-agent"  # .github/agents/*.md
    AGENTS_MD = "agents-md"  # AGENTS.md
    CLAUDE_MD = "claude-md"  # CLAUDE.md


class DiscoveredInstructionFile(_WireModel):
    """An instruction file found during discovery."""

    model_config = ConfigDict(frozen=True)

    file_path: str = Field(description="Path relative to the target directory")
    format: InstructionFileFormat = Field(description="Instruction file kind")


class ParsingError(_WireModel):
    """A file that could not be read or parsed."""

    file_path: str = Field(description="Path of the file")
    error: str = Field(description="Why the file was skipped")


class CommandQualityScores(_WireModel):
    """Best per-command scores across all discovered files."""

    command_name: str = Field(description="Mandatory command name")
    structural_context: int = Field(0, ge=0, le=1)
    execution_clarity: int = Field(0, ge=0, le=1)
    loop_completeness: int = Field(0, ge=0, le=1)
    composite_score: float = Field(0.0, ge=0.0, le=1.0)
    best_source_file: Optional[str] = Field(
        None, description="File that produced the best composite score"
    )


class QualitySuggestion(_WireModel):
    """Human-readable improvement hint."""

    message: str = Field(description="Actionable suggestion")
    rule_id: Optional[str] = Field(
        None, description="Rule id used for severity-override filtering"
    )


class InstructionQualityResult(_WireModel):
    """Result of analyzing instruction quality for a repository."""

    discovered_files: List[DiscoveredInstructionFile] = Field(default_factory=list)
    command_scores: List[CommandQualityScores] = Field(default_factory=list)
    overall_quality_score: int = Field(100, ge=0, le=100)
    suggestions: List[QualitySuggestion] = Field(default_factory=list)
    parsing_errors: List[ParsingError] = Field(default_factory=list)


# ─── Lint diagnostics ────────────────────────────────────────────────────────


class LintSeverity(str, Enum):
    """Severity of a lint diagnostic."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class LintTarget(str, Enum):
    """Lint target category."""

    SKILL = "skill"
    AGENT = "agent"
    INSTRUCTION = "instruction"


class LintDiagnostic(_WireModel):
    """A single target-agnostic lint finding."""

    file_path: str = Field(description="File the diagnostic points at")
    line: int = Field(1, ge=1, description="1-indexed line")
    column: Optional[int] = None
    end_line: Optional[int] = None
    end_column: Optional[int] = None
    severity: LintSeverity = Field(description="Diagnostic severity")
    message: str = Field(description="Diagnostic message")
    rule_id: Optional[str] = Field(None, description="<target>/<rule-name>")
    field: Optional[str] = Field(None, description="Frontmatter field, if any")
    target: LintTarget = Field(description="Lint target that produced it")


class LintSummary(_WireModel):
    """Counts over the diagnostics of one LintOutput."""

    total_files: int = 0
    total_errors: int = 0
    total_warnings: int = 0
    total_infos: int = 0


class LintOutput(_WireModel):
    """Lint results for one target."""

    diagnostics: List[LintDiagnostic] = Field(default_factory=list)
    target: LintTarget
    files_analyzed: List[str] = Field(default_factory=list)
    summary: LintSummary = Field(default_factory=LintSummary)


class RuleSeverity(str, Enum):
    """Configured severity for a lint rule."""

    ERROR = "error"
    WARN = "warn"
    OFF = "off"


class LintRulesConfig(BaseModel):
    """Rule id -> configured severity, per lint target."""

    agents: Dict[str, RuleSeverity] = Field(default_factory=dict)
    instructions: Dict[str, RuleSeverity] = Field(default_factory=dict)
    skills: Dict[str, RuleSeverity] = Field(default_factory=dict)

    def for_target(self, target: LintTarget) -> Dict[str, RuleSeverity]:
        """Return the rule map that applies to *target*."""
        if target == LintTarget.AGENT:
            return self.agents
        if target == LintTarget.SKILL:
            return self.skills
        return self.instructions


# ─── Frontmatter ─────────────────────────────────────────────────────────────


class ParsedFrontmatter(BaseModel):
    """A parsed leading ``---`` block."""

    data: Dict[str, Any] = Field(default_factory=dict)
    field_lines: Dict[str, int] = Field(
        default_factory=dict, description="Top-level key -> 1-indexed line"
    )
    frontmatter_start_line: int = 1

    def line_for(self, field_name: Optional[str]) -> int:
        """Line of *field_name*, falling back to the start of the block."""
        if field_name and field_name in self.field_lines:
            return self.field_lines[field_name]
        return self.frontmatter_start_line


NAME_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


class _NamedFrontmatter(BaseModel):
    """Fields shared by skill and agent frontmatter."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str = Field(min_length=1, max_length=64, pattern=NAME_PATTERN)
    description: str = Field(min_length=1, max_length=1024)

    @field_validator("description")
    @classmethod
    def _description_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Description cannot be empty or whitespace-only")
        return value


class SkillFrontmatter(_NamedFrontmatter):
    """Frontmatter of an agent skill (SKILL.md)."""

    license: Optional[str] = None
    compatibility: Optional[str] = Field(None, max_length=500)
    metadata: Optional[Dict[str, str]] = None
    allowed_tools: Optional[Union[str, List[str]]] = Field(
        None, alias="allowed-tools"
    )


class AgentFrontmatter(_NamedFrontmatter):
    """Frontmatter of a custom agent definition file."""

    tools: Optional[Union[str, List[str]]] = None
    model: Optional[str] = None
    target: Optional[str] = None


class DiscoveredSkillFile(BaseModel):
    """A SKILL.md file inside a skill directory."""

    file_path: str
    skill_name: str = Field(description="Name of the parent directory")


class DiscoveredAgentFile(BaseModel):
    """A custom agent definition file."""

    file_path: str
    agent_name: str = Field(description="Filename without the markdown suffix")


# ─── Feedback loops ──────────────────────────────────────────────────────────


class FeedbackLoopPhase(str, Enum):
    """SDLC phase a script supports."""

    BUILD = "build"
    TEST = "test"
    LINT = "lint"
    FORMAT = "format"
    SECURITY = "security"
    DEPLOY = "deploy"
    INSTALL = "install"
    DEV = "dev"
    UNKNOWN = "unknown"


class DiscoveredScript(_WireModel):
    """A script from the project manifest."""

    name: str
    command: str
    phase: FeedbackLoopPhase
    is_mandatory: bool


class InstructionReference(_WireModel):
    """A line of an instruction file that mentions a script."""

    target: str
    file: str
    line: int
    context: str


class InstructionCoverageResult(_WireModel):
    """Which mandatory scripts are mentioned in instruction files."""

    missing_in_instructions: List[DiscoveredScript] = Field(default_factory=list)
    documented_in_instructions: List[DiscoveredScript] = Field(default_factory=list)
    references: List[InstructionReference] = Field(default_factory=list)
    total_mandatory: int = 0
    total_documented: int = 0
    coverage_percentage: float = 100.0
    has_full_coverage: bool = True
    suggestions: List[str] = Field(default_factory=list)


# ─── GitHub rulesets ─────────────────────────────────────────────────────────


class RulesetRule(BaseModel):
    """A rule inside a repository ruleset."""

    type: str
    parameters: Optional[Dict[str, Any]] = None


class Ruleset(BaseModel):
    """A repository ruleset as returned by the GitHub REST API."""

    id: int
    name: str
    enforcement: str
    rules: Optional[List[RulesetRule]] = None


class CopilotReviewStatus(_WireModel):
    """Whether a repository has an active Copilot review ruleset."""

    has_ruleset: bool
    ruleset_name: Optional[str] = None
    error: Optional[str] = None
