"""
Instruction quality scoring.

For every mandatory feedback-loop command the analyzer looks at each
discovered instruction file and scores three binary dimensions:

* **structural context**: a code occurrence of the command sits under a
  heading such as ``## Validation`` (see :mod:`lousy_agents.markdown`);
* **execution clarity**: the command appears in a code block or inline code;
* **loop completeness**: a conditional/failure keyword appears within
  ``LOOP_KEYWORD_WINDOW`` lines of a code occurrence.

The file with the best composite wins for each command.  The analyzer only
talks to its collaborators through the port classes below, so it has no
filesystem access of its own.
"""

import asyncio
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .markdown import MarkdownDocument, parse_markdown
from .models import (
    CommandQualityScores,
    DiscoveredInstructionFile,
    DiscoveredScript,
    InstructionCoverageResult,
    InstructionQualityResult,
    InstructionReference,
    LintDiagnostic,
    LintSeverity,
    LintTarget,
    ParsingError,
    QualitySuggestion,
)

logger = logging.getLogger(__name__)

CONDITIONAL_KEYWORDS: Tuple[str, ...] = (
    "if",
    "fail",
    "fails",
    "failure",
    "error",
    "retry",
    "revert",
    "fix",
    "resolve",
    "broken",
    "red",
)

# Lines searched on each side of a code occurrence for a conditional keyword.
LOOP_KEYWORD_WINDOW = 3

SUPPORTED_INSTRUCTION_LOCATIONS = (
    ".github/copilot-instructions.md",
    ".github/instructions/*.md",
    ".github/agents/*.md",
    "AGENTS.md",
    "CLAUDE.md",
)

RULE_PARSE_ERROR = "instruction/parse-error"
RULE_OUTSIDE_SECTION = "instruction/command-outside-section"
RULE_NOT_IN_CODE_BLOCK = "instruction/command-not-in-code-block"
RULE_MISSING_ERROR_HANDLING = "instruction/missing-error-handling"
RULE_NOT_DOCUMENTED = "instruction/command-not-documented"

_KEYWORD_RE = re.compile(
    r"\b(?:" + "|".join(CONDITIONAL_KEYWORDS) + r")\b", re.IGNORECASE
)


# ─── Ports ───────────────────────────────────────────────────────────────────


class InstructionDiscoveryPort(ABC):
    """Finds instruction files below a target directory."""

    @abstractmethod
    async def discover_instruction_files(
        self, target_dir: str
    ) -> List[DiscoveredInstructionFile]:
        ...


class MandatoryCommandsPort(ABC):
    """Supplies the command names a project treats as mandatory."""

    @abstractmethod
    async def get_mandatory_commands(self, target_dir: str) -> List[str]:
        ...


class ScriptDiscoveryPort(ABC):
    """Supplies every script of the project manifest."""

    @abstractmethod
    async def discover_scripts(self, target_dir: str) -> List[DiscoveredScript]:
        ...


class FileReaderPort(ABC):
    """Reads a discovered file; *file_path* is relative to *target_dir*."""

    @abstractmethod
    async def read_file(self, target_dir: str, file_path: str) -> str:
        ...


# ─── Scoring ─────────────────────────────────────────────────────────────────


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round halves away from zero for non-negative values."""
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def command_pattern(command: str, ignore_case: bool = False) -> "re.Pattern[str]":
    """Regex matching *command* as a whole token.

    ``test`` matches ``npm test`` and ``npm run test`` but not ``pytest``,
    ``test:unit`` or ``test-all``.
    """
    flags = re.IGNORECASE if ignore_case else 0
    return re.compile(r"(?<![\w:.-])" + re.escape(command) + r"(?![\w:-])", flags)


@dataclass(frozen=True)
class CodeOccurrence:
    """A command occurrence inside a code block or inline code span."""

    line: int
    start_line: int
    end_line: int
    has_context: bool


@dataclass
class FileCommandScore:
    """Dimension scores of one command in one file."""

    file_path: str
    structural_context: int = 0
    execution_clarity: int = 0
    loop_completeness: int = 0
    mention_line: int = 1
    code_line: Optional[int] = None
    loop_line: Optional[int] = None

    @property
    def composite(self) -> float:
        total = self.structural_context + self.execution_clarity + self.loop_completeness
        return round_half_up(total / 3, 2)


def find_code_occurrences(doc: MarkdownDocument, command: str) -> List[CodeOccurrence]:
    """Code-block and inline-code occurrences of *command*, in line order."""
    pattern = command_pattern(command)
    found: List[CodeOccurrence] = []

    for block in doc.code_blocks:
        offset = 1 if block.fenced else 0
        for idx, code_line in enumerate(block.content.split("\n")):
            if pattern.search(code_line):
                found.append(
                    CodeOccurrence(
                        line=block.start_line + offset + idx,
                        start_line=block.start_line,
                        end_line=block.end_line,
                        has_context=block.context is not None,
                    )
                )
                break

    for span in doc.inline_codes:
        if pattern.search(span.content):
            found.append(
                CodeOccurrence(
                    line=span.line,
                    start_line=span.line,
                    end_line=span.line,
                    has_context=span.context is not None,
                )
            )

    found.sort(key=lambda occ: (occ.start_line, occ.line))
    return found


def keyword_window(
    doc: MarkdownDocument, start_line: int, end_line: int, width: int = LOOP_KEYWORD_WINDOW
) -> List[int]:
    """Line numbers of a symmetric window around ``start_line..end_line``.

    Heading lines are skipped and do not count towards *width*.
    """
    headings = doc.heading_lines
    first = doc.body_start_line
    last = len(doc.lines)

    before: List[int] = []
    line = start_line - 1
    while line >= first and len(before) < width:
        if line not in headings:
            before.append(line)
        line -= 1

    after: List[int] = []
    line = end_line + 1
    while line <= last and len(after) < width:
        if line not in headings:
            after.append(line)
        line += 1

    inner = [n for n in range(start_line, end_line + 1) if n not in headings]
    return sorted(before) + inner + after


def has_conditional_keyword(
    doc: MarkdownDocument, occurrence: CodeOccurrence, width: int = LOOP_KEYWORD_WINDOW
) -> bool:
    for line in keyword_window(doc, occurrence.start_line, occurrence.end_line, width):
        if _KEYWORD_RE.search(doc.line_text(line)):
            return True
    return False


def first_mention_line(doc: MarkdownDocument, command: str) -> Optional[int]:
    """First body line mentioning *command* anywhere (prose, heading or code)."""
    pattern = command_pattern(command)
    for idx in range(doc.body_start_line - 1, len(doc.lines)):
        if pattern.search(doc.lines[idx]):
            return idx + 1
    return None


def score_command(
    doc: MarkdownDocument,
    command: str,
    file_path: str,
    window: int = LOOP_KEYWORD_WINDOW,
) -> Optional[FileCommandScore]:
    """Score *command* in one document, or ``None`` when it is not mentioned."""
    mention = first_mention_line(doc, command)
    if mention is None:
        return None

    score = FileCommandScore(file_path=file_path, mention_line=mention)
    occurrences = find_code_occurrences(doc, command)
    if not occurrences:
        return score

    score.execution_clarity = 1
    score.code_line = occurrences[0].line
    if any(occ.has_context for occ in occurrences):
        score.structural_context = 1
    for occ in occurrences:
        if has_conditional_keyword(doc, occ, window):
            score.loop_completeness = 1
            score.loop_line = occ.line
            break
    return score


# ─── Analysis ────────────────────────────────────────────────────────────────


@dataclass
class InstructionQualityAnalysis:
    """Quality result plus the diagnostics derived from it."""

    result: InstructionQualityResult
    diagnostics: List[LintDiagnostic] = field(default_factory=list)


def _warning(file_path: str, line: int, message: str, rule_id: str) -> LintDiagnostic:
    return LintDiagnostic(
        file_path=file_path,
        line=max(line, 1),
        severity=LintSeverity.WARNING,
        message=message,
        rule_id=rule_id,
        target=LintTarget.INSTRUCTION,
    )


def diagnostics_for(command: str, best: FileCommandScore) -> List[LintDiagnostic]:
    """Warnings for each zero dimension of the winning file."""
    diagnostics: List[LintDiagnostic] = []
    code_line = best.code_line or best.mention_line

    if not best.execution_clarity:
        diagnostics.append(
            _warning(
                best.file_path,
                best.mention_line,
                f"Command '{command}' appears only in prose, not in a code block",
                RULE_NOT_IN_CODE_BLOCK,
            )
        )
    if not best.structural_context:
        diagnostics.append(
            _warning(
                best.file_path,
                code_line,
                f"Command '{command}' is not under a dedicated feedback loop section",
                RULE_OUTSIDE_SECTION,
            )
        )
    if not best.loop_completeness:
        if best.execution_clarity:
            message = f"Command '{command}' has no error handling guidance near its code"
        else:
            message = f"Command '{command}' has no error handling guidance (not in a code block)"
        diagnostics.append(
            _warning(best.file_path, code_line, message, RULE_MISSING_ERROR_HANDLING)
        )
    return diagnostics


def suggestions_for(score: CommandQualityScores) -> List[QualitySuggestion]:
    """One actionable suggestion per zero dimension of *score*."""
    command = score.command_name
    if not score.best_source_file:
        return [
            QualitySuggestion(
                message=(
                    f"`{command}` is not mentioned in any instruction file. "
                    f"Document it in a code block under a Validation heading."
                ),
                rule_id=RULE_NOT_DOCUMENTED,
            )
        ]

    suggestions: List[QualitySuggestion] = []
    if not score.structural_context:
        suggestions.append(
            QualitySuggestion(
                message=(
                    f"Document `{command}` under a Validation/Verification heading "
                    f"(e.g. \"## Validation\") in {score.best_source_file}."
                ),
                rule_id=RULE_OUTSIDE_SECTION,
            )
        )
    if not score.execution_clarity:
        suggestions.append(
            QualitySuggestion(
                message=f"Wrap `{command}` in a code block in {score.best_source_file}.",
                rule_id=RULE_NOT_IN_CODE_BLOCK,
            )
        )
    if not score.loop_completeness:
        suggestions.append(
            QualitySuggestion(
                message=(
                    f"Describe what to do if `{command}` fails "
                    f"(e.g. \"If this fails, fix the errors and retry\")."
                ),
                rule_id=RULE_MISSING_ERROR_HANDLING,
            )
        )
    return suggestions


class InstructionQualityAnalyzer:
    """Scores how well instruction files document the mandatory commands."""

    def __init__(
        self,
        discovery: InstructionDiscoveryPort,
        commands: MandatoryCommandsPort,
        reader: FileReaderPort,
        heading_patterns: Optional[Sequence[str]] = None,
        window: int = LOOP_KEYWORD_WINDOW,
    ):
        self.discovery = discovery
        self.commands = commands
        self.reader = reader
        self.heading_patterns = heading_patterns
        self.window = window

    async def _load_documents(
        self, target_dir: str, files: Sequence[DiscoveredInstructionFile]
    ) -> Tuple[Dict[str, MarkdownDocument], List[ParsingError]]:
        contents = await asyncio.gather(
            *(self.reader.read_file(target_dir, f.file_path) for f in files),
            return_exceptions=True,
        )

        documents: Dict[str, MarkdownDocument] = {}
        errors: List[ParsingError] = []
        for discovered, content in zip(files, contents):
            if isinstance(content, BaseException):
                logger.warning("Skipping %s: %s", discovered.file_path, content)
                errors.append(ParsingError(file_path=discovered.file_path, error=str(content)))
                continue
            try:
                documents[discovered.file_path] = parse_markdown(content, self.heading_patterns)
            except Exception as exc:
                logger.warning("Could not parse %s: %s", discovered.file_path, exc)
                errors.append(ParsingError(file_path=discovered.file_path, error=str(exc)))

        errors.sort(key=lambda e: e.file_path)
        return documents, errors

    def _best_score(
        self,
        command: str,
        files: Sequence[DiscoveredInstructionFile],
        documents: Dict[str, MarkdownDocument],
    ) -> Optional[FileCommandScore]:
        best: Optional[FileCommandScore] = None
        for discovered in files:
            doc = documents.get(discovered.file_path)
            if doc is None:
                continue
            score = score_command(doc, command, discovered.file_path, self.window)
            # strict comparison keeps the first file on ties
            if score is not None and (best is None or score.composite > best.composite):
                best = score
        return best

    async def analyze(self, target_dir: str) -> InstructionQualityAnalysis:
        files, commands = await asyncio.gather(
            self.discovery.discover_instruction_files(target_dir),
            self.commands.get_mandatory_commands(target_dir),
        )
        logger.debug(
            "Analyzing %d instruction file(s) for %d command(s)", len(files), len(commands)
        )

        documents, parsing_errors = await self._load_documents(target_dir, files)
        diagnostics = [
            _warning(pe.file_path, 1, f"Failed to parse file: {pe.error}", RULE_PARSE_ERROR)
            for pe in parsing_errors
        ]

        command_scores: List[CommandQualityScores] = []
        suggestions: List[QualitySuggestion] = []
        for command in commands:
            best = self._best_score(command, files, documents)
            if best is None:
                scores = CommandQualityScores(command_name=command)
            else:
                scores = CommandQualityScores(
                    command_name=command,
                    structural_context=best.structural_context,
                    execution_clarity=best.execution_clarity,
                    loop_completeness=best.loop_completeness,
                    composite_score=best.composite,
                    best_source_file=best.file_path,
                )
                diagnostics.extend(diagnostics_for(command, best))
            command_scores.append(scores)
            if files:
                suggestions.extend(suggestions_for(scores))

        if command_scores:
            mean = sum(s.composite_score for s in command_scores) / len(command_scores)
            overall = int(round_half_up(mean * 100))
        else:
            overall = 100

        if parsing_errors:
            skipped = ", ".join(pe.file_path for pe in parsing_errors)
            suggestions.append(
                QualitySuggestion(
                    message=(
                        f"{len(parsing_errors)} file(s) could not be parsed and were "
                        f"skipped: {skipped}. Analysis may be incomplete."
                    )
                )
            )
        if commands and not files:
            suggestions.append(
                QualitySuggestion(
                    message=(
                        "No agent instruction files found. Supported locations: "
                        + ", ".join(SUPPORTED_INSTRUCTION_LOCATIONS)
                    )
                )
            )

        result = InstructionQualityResult(
            discovered_files=list(files),
            command_scores=command_scores,
            overall_quality_score=overall,
            suggestions=suggestions,
            parsing_errors=parsing_errors,
        )
        return InstructionQualityAnalysis(result=result, diagnostics=diagnostics)


# ─── Coverage ────────────────────────────────────────────────────────────────


def find_references(
    target: str, file_path: str, content: str
) -> List[InstructionReference]:
    """One reference per line mentioning *target*, with a line of context each side."""
    pattern = command_pattern(target, ignore_case=True)
    lines = content.replace("\r\n", "\n").split("\n")
    references = []
    for idx, line in enumerate(lines):
        if not pattern.search(line):
            continue
        context = lines[max(idx - 1, 0) : idx + 2]
        references.append(
            InstructionReference(
                target=target, file=file_path, line=idx + 1, context="\n".join(context)
            )
        )
    return references


def coverage_suggestions(missing: Sequence[DiscoveredScript]) -> List[str]:
    if not missing:
        return ["All mandatory feedback loops are documented in instructions"]

    suggestions = [f"{len(missing)} mandatory feedback loop(s) are not documented:", ""]
    by_phase: Dict[str, List[DiscoveredScript]] = {}
    for script in missing:
        by_phase.setdefault(script.phase.value, []).append(script)
    for phase, scripts in by_phase.items():
        suggestions.append(f"{phase.upper()} phase:")
        for script in scripts:
            suggestions.append(f'  - Document "npm run {script.name}" (runs: {script.command})')
        suggestions.append("")
    suggestions.append("Consider adding these to .github/copilot-instructions.md")
    suggestions.append("or creating dedicated instruction files in .github/instructions/")
    return suggestions


class InstructionCoverageValidator:
    """Checks which mandatory scripts are mentioned in instruction files at all."""

    def __init__(
        self,
        discovery: InstructionDiscoveryPort,
        scripts: ScriptDiscoveryPort,
        reader: FileReaderPort,
    ):
        self.discovery = discovery
        self.scripts = scripts
        self.reader = reader

    async def validate(self, target_dir: str) -> InstructionCoverageResult:
        files, scripts = await asyncio.gather(
            self.discovery.discover_instruction_files(target_dir),
            self.scripts.discover_scripts(target_dir),
        )
        contents = await asyncio.gather(
            *(self.reader.read_file(target_dir, f.file_path) for f in files),
            return_exceptions=True,
        )

        references: List[InstructionReference] = []
        documented = set()
        for discovered, content in zip(files, contents):
            if isinstance(content, BaseException):
                logger.warning("Skipping %s: %s", discovered.file_path, content)
                continue
            for script in scripts:
                found = find_references(script.name, discovered.file_path, content)
                if found:
                    references.extend(found)
                    documented.add(script.name)

        mandatory = [s for s in scripts if s.is_mandatory]
        missing = [s for s in mandatory if s.name not in documented]
        present = [s for s in mandatory if s.name in documented]
        if mandatory:
            percentage = round_half_up(len(present) / len(mandatory) * 100, 2)
        else:
            percentage = 100.0

        return InstructionCoverageResult(
            missing_in_instructions=missing,
            documented_in_instructions=present,
            references=references,
            total_mandatory=len(mandatory),
            total_documented=len(present),
            coverage_percentage=percentage,
            has_full_coverage=percentage == 100,
            suggestions=coverage_suggestions(missing),
        )
