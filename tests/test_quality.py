"""Tests for instruction quality scoring, aggregation and coverage."""

from typing import Dict, List

import pytest

from lousy_agents.markdown import parse_markdown
from lousy_agents.models import (
    DiscoveredInstructionFile,
    DiscoveredScript,
    FeedbackLoopPhase,
    InstructionFileFormat,
    LintSeverity,
)
from lousy_agents.quality import (
    RULE_MISSING_ERROR_HANDLING,
    RULE_NOT_DOCUMENTED,
    RULE_NOT_IN_CODE_BLOCK,
    RULE_OUTSIDE_SECTION,
    RULE_PARSE_ERROR,
    FileReaderPort,
    InstructionCoverageValidator,
    InstructionDiscoveryPort,
    InstructionQualityAnalyzer,
    MandatoryCommandsPort,
    ScriptDiscoveryPort,
    command_pattern,
    coverage_suggestions,
    find_references,
    keyword_window,
    round_half_up,
    score_command,
)

FULL = """\
## Validation

```bash
npm test
```

If it fails, fix the errors and run it again.
"""

PROSE_ONLY = "# Notes\n\nRemember to run npm test sometimes.\n"


# -- Fakes ------------------------------------------------------------------


class FakeDiscovery(InstructionDiscoveryPort):
    def __init__(self, paths: List[str]):
        self.files = [
            DiscoveredInstructionFile(file_path=p, format=InstructionFileFormat.AGENTS_MD)
            for p in paths
        ]

    async def discover_instruction_files(self, target_dir):
        return list(self.files)


class FakeCommands(MandatoryCommandsPort):
    def __init__(self, commands: List[str]):
        self.commands = commands

    async def get_mandatory_commands(self, target_dir):
        return list(self.commands)


class FakeScripts(ScriptDiscoveryPort):
    def __init__(self, scripts: List[DiscoveredScript]):
        self.scripts = scripts

    async def discover_scripts(self, target_dir):
        return list(self.scripts)


class FakeReader(FileReaderPort):
    def __init__(self, contents: Dict[str, str]):
        self.contents = contents

    async def read_file(self, target_dir, file_path):
        if file_path not in self.contents:
            raise FileNotFoundError(file_path)
        return self.contents[file_path]


def make_analyzer(contents: Dict[str, str], commands: List[str], paths=None):
    return InstructionQualityAnalyzer(
        discovery=FakeDiscovery(list(contents) if paths is None else paths),
        commands=FakeCommands(commands),
        reader=FakeReader(contents),
    )


def script(name, command, phase, mandatory=True):
    return DiscoveredScript(name=name, command=command, phase=phase, is_mandatory=mandatory)


# -- Helpers ----------------------------------------------------------------


class TestHelpers:
    def test_round_half_up(self):
        assert round_half_up(0.125, 2) == 0.13
        assert round_half_up(2 / 3, 2) == 0.67
        assert round_half_up(1 / 3, 2) == 0.33
        assert round_half_up(66.5) == 67

    @pytest.mark.parametrize(
        "text", ["npm test", "npm run test", "`test`", "run test.", "yarn test && done"]
    )
    def test_command_pattern_matches_token(self, text):
        assert command_pattern("test").search(text)

    @pytest.mark.parametrize("text", ["pytest", "npm run test:unit", "test-all", "latest"])
    def test_command_pattern_rejects_glued_text(self, text):
        assert command_pattern("test").search(text) is None

    def test_command_pattern_case(self):
        assert command_pattern("test").search("npm TEST") is None
        assert command_pattern("test", ignore_case=True).search("npm TEST")

    def test_keyword_window_skips_headings(self):
        doc = parse_markdown("a\n## H\nb\nc\n`x`\nd\n### I\ne\nf\ng\n")
        # occurrence on line 5; headings on lines 2 and 7 do not count
        assert keyword_window(doc, 5, 5) == [1, 3, 4, 5, 6, 8, 9]


# -- Per-command scoring ----------------------------------------------------


class TestScoreCommand:
    def test_full_score(self):
        score = score_command(parse_markdown(FULL), "test", "AGENTS.md")
        assert (score.structural_context, score.execution_clarity, score.loop_completeness) == (1, 1, 1)
        assert score.composite == 1.0

    def test_compact_validation_section(self):
        content = "## Validation\n```\nnpm test\n```\nIf this fails, fix it and retry."
        score = score_command(parse_markdown(content), "test", "AGENTS.md")
        assert (score.structural_context, score.execution_clarity, score.loop_completeness) == (1, 1, 1)
        assert score.composite == 1.0

    def test_prose_only(self):
        score = score_command(parse_markdown(PROSE_ONLY), "test", "AGENTS.md")
        assert (score.structural_context, score.execution_clarity, score.loop_completeness) == (0, 0, 0)
        assert score.mention_line == 3

    def test_not_mentioned(self):
        assert score_command(parse_markdown("# Nothing\n"), "build", "AGENTS.md") is None

    def test_substring_is_not_a_mention(self):
        assert score_command(parse_markdown("```\npytest\n```\n"), "test", "AGENTS.md") is None

    def test_code_outside_section(self):
        content = "## Setup\n\n```\nnpm test\n```\n\nIf it fails, retry.\n"
        score = score_command(parse_markdown(content), "test", "AGENTS.md")
        assert score.structural_context == 0
        assert score.execution_clarity == 1
        assert score.loop_completeness == 1

    def test_keyword_outside_window(self):
        content = "## Validation\n\n`npm test`\na\nb\nc\nIf it fails, fix it.\n"
        score = score_command(parse_markdown(content), "test", "AGENTS.md")
        assert score.loop_completeness == 0

    def test_keyword_inside_window(self):
        content = "## Validation\n\n`npm test`\na\nb\nIf it fails, fix it.\n"
        score = score_command(parse_markdown(content), "test", "AGENTS.md")
        assert score.loop_completeness == 1
        assert score.loop_line == 3

    def test_heading_does_not_shift_window(self):
        content = "## Validation\n\n`npm test`\na\n### Notes\nb\nIf it fails, fix it.\n"
        score = score_command(parse_markdown(content), "test", "AGENTS.md")
        assert score.loop_completeness == 1

    def test_adding_matching_heading_never_lowers_scores(self):
        base = "# Guide\n\n```\nnpm test\n```\n\nIf it fails, fix it.\n"
        improved = "# Guide\n\n## Validation\n\n```\nnpm test\n```\n\nIf it fails, fix it.\n"
        before = score_command(parse_markdown(base), "test", "f.md")
        after = score_command(parse_markdown(improved), "test", "f.md")
        assert after.structural_context >= before.structural_context
        assert after.execution_clarity >= before.execution_clarity
        assert after.loop_completeness >= before.loop_completeness
        assert after.structural_context == 1

    @pytest.mark.parametrize(
        "block",
        ["```bash\nnpm test\n```\n", "    npm test\n"],
        ids=["fenced", "indented"],
    )
    def test_heading_directly_above_block_never_lowers_scores(self, block):
        base = "Run checks:\n\n" + block + "\nIf it fails, fix it.\n"
        improved = "Run checks:\n\n## Validation\n" + block + "\nIf it fails, fix it.\n"
        before = score_command(parse_markdown(base), "test", "f.md")
        after = score_command(parse_markdown(improved), "test", "f.md")
        assert (before.structural_context, before.execution_clarity, before.loop_completeness) == (0, 1, 1)
        assert (after.structural_context, after.execution_clarity, after.loop_completeness) == (1, 1, 1)
        assert after.composite >= before.composite

    @pytest.mark.parametrize(
        "content",
        [
            "## Validation\n\n- Run:\n\n    ```bash\n    npm test\n    ```\n\nIf it fails, fix it.\n",
            "## Validation\n\n> ```bash\n> npm test\n> ```\n>\n> If it fails, fix it.\n",
            "## Validation\n\n- run it\n---\n\n```bash\nnpm test\n```\n\nIf it fails, fix it.\n",
        ],
        ids=["list-item", "blockquote", "after-list"],
    )
    def test_code_in_containers_scores_fully(self, content):
        score = score_command(parse_markdown(content), "test", "AGENTS.md")
        assert (score.structural_context, score.execution_clarity, score.loop_completeness) == (1, 1, 1)


# -- Aggregation ------------------------------------------------------------


class TestInstructionQualityAnalyzer:
    @pytest.mark.asyncio
    async def test_fully_documented_command(self):
        analysis = await make_analyzer({"AGENTS.md": FULL}, ["test"]).analyze("/repo")
        result = analysis.result
        assert result.overall_quality_score == 100
        assert result.command_scores[0].composite_score == 1.0
        assert result.command_scores[0].best_source_file == "AGENTS.md"
        assert result.suggestions == []
        assert analysis.diagnostics == []

    @pytest.mark.asyncio
    async def test_prose_only_command(self):
        analysis = await make_analyzer({"AGENTS.md": PROSE_ONLY}, ["test"]).analyze("/repo")
        result = analysis.result
        assert result.overall_quality_score == 0
        assert {s.rule_id for s in result.suggestions} == {
            RULE_OUTSIDE_SECTION,
            RULE_NOT_IN_CODE_BLOCK,
            RULE_MISSING_ERROR_HANDLING,
        }
        assert len(analysis.diagnostics) == 3
        assert all(d.severity == LintSeverity.WARNING for d in analysis.diagnostics)
        assert all(d.line == 3 for d in analysis.diagnostics)
        prose = next(d for d in analysis.diagnostics if d.rule_id == RULE_NOT_IN_CODE_BLOCK)
        assert prose.message == "Command 'test' appears only in prose, not in a code block"

    @pytest.mark.asyncio
    async def test_single_prose_sentence(self):
        contents = {"AGENTS.md": "Run npm test before committing."}
        analysis = await make_analyzer(contents, ["test"]).analyze("/repo")
        scores = analysis.result.command_scores[0]
        assert (scores.structural_context, scores.execution_clarity, scores.loop_completeness) == (0, 0, 0)
        assert scores.composite_score == 0
        assert analysis.result.suggestions
        assert all("`test`" in s.message for s in analysis.result.suggestions)

    @pytest.mark.asyncio
    async def test_undocumented_command(self):
        analysis = await make_analyzer({"AGENTS.md": FULL}, ["test", "build"]).analyze("/repo")
        result = analysis.result
        build = result.command_scores[1]
        assert build.command_name == "build"
        assert build.composite_score == 0.0
        assert build.best_source_file is None
        assert [s.rule_id for s in result.suggestions] == [RULE_NOT_DOCUMENTED]
        assert result.overall_quality_score == 50
        assert analysis.diagnostics == []

    @pytest.mark.asyncio
    async def test_partial_score(self):
        content = "## Validation\n\n`npm test`\n"
        analysis = await make_analyzer({"AGENTS.md": content}, ["test"]).analyze("/repo")
        assert analysis.result.command_scores[0].composite_score == 0.67
        assert analysis.result.overall_quality_score == 67
        assert [d.rule_id for d in analysis.diagnostics] == [RULE_MISSING_ERROR_HANDLING]

    @pytest.mark.asyncio
    async def test_no_commands_scores_100(self):
        analysis = await make_analyzer({"AGENTS.md": PROSE_ONLY}, []).analyze("/repo")
        assert analysis.result.overall_quality_score == 100
        assert analysis.result.command_scores == []
        assert analysis.result.suggestions == []

    @pytest.mark.asyncio
    async def test_no_instruction_files(self):
        analysis = await make_analyzer({}, ["test"]).analyze("/repo")
        result = analysis.result
        assert result.discovered_files == []
        assert result.overall_quality_score == 0
        assert len(result.suggestions) == 1
        assert result.suggestions[0].rule_id is None
        assert "No agent instruction files found" in result.suggestions[0].message
        assert "CLAUDE.md" in result.suggestions[0].message

    @pytest.mark.asyncio
    async def test_best_file_wins_and_ties_keep_first(self):
        contents = {"CLAUDE.md": PROSE_ONLY, "AGENTS.md": FULL, "OTHER.md": FULL}
        analyzer = make_analyzer(contents, ["test"], paths=["CLAUDE.md", "AGENTS.md", "OTHER.md"])
        analysis = await analyzer.analyze("/repo")
        assert analysis.result.command_scores[0].best_source_file == "AGENTS.md"

    @pytest.mark.asyncio
    async def test_unreadable_file_becomes_parsing_error(self):
        analyzer = make_analyzer({"AGENTS.md": FULL}, ["test"], paths=["AGENTS.md", "missing.md"])
        analysis = await analyzer.analyze("/repo")
        result = analysis.result
        assert [e.file_path for e in result.parsing_errors] == ["missing.md"]
        assert result.overall_quality_score == 100
        parse_diags = [d for d in analysis.diagnostics if d.rule_id == RULE_PARSE_ERROR]
        assert len(parse_diags) == 1
        assert parse_diags[0].file_path == "missing.md"
        assert parse_diags[0].message.startswith("Failed to parse file:")
        assert any("could not be parsed" in s.message for s in result.suggestions)

    @pytest.mark.asyncio
    async def test_analysis_is_idempotent(self):
        analyzer = make_analyzer({"AGENTS.md": PROSE_ONLY, "CLAUDE.md": FULL}, ["test", "lint"])
        first = await analyzer.analyze("/repo")
        second = await analyzer.analyze("/repo")
        assert first.result == second.result
        assert first.diagnostics == second.diagnostics

    @pytest.mark.asyncio
    async def test_diagnostics_only_for_best_file(self):
        content = "## Validation\n\n`npm test`\n"
        analyzer = make_analyzer({"A.md": PROSE_ONLY, "B.md": content}, ["test"])
        analysis = await analyzer.analyze("/repo")
        assert {d.file_path for d in analysis.diagnostics} == {"B.md"}


# -- Coverage ---------------------------------------------------------------


class TestCoverage:
    def test_find_references_with_context(self):
        refs = find_references("test", "AGENTS.md", "intro\nRun NPM TEST\noutro\n")
        assert len(refs) == 1
        assert refs[0].line == 2
        assert refs[0].context == "intro\nRun NPM TEST\noutro"

    def test_coverage_suggestions_grouped_by_phase(self):
        missing = [
            script("build", "tsc", FeedbackLoopPhase.BUILD),
            script("lint", "eslint .", FeedbackLoopPhase.LINT),
        ]
        suggestions = coverage_suggestions(missing)
        assert suggestions[0] == "2 mandatory feedback loop(s) are not documented:"
        assert "BUILD phase:" in suggestions
        assert '  - Document "npm run build" (runs: tsc)' in suggestions
        assert "LINT phase:" in suggestions

    def test_coverage_suggestions_when_complete(self):
        assert coverage_suggestions([]) == [
            "All mandatory feedback loops are documented in instructions"
        ]

    @pytest.mark.asyncio
    async def test_partial_coverage(self):
        scripts = [
            script("test", "vitest", FeedbackLoopPhase.TEST),
            script("build", "tsc", FeedbackLoopPhase.BUILD),
            script("dev", "vite", FeedbackLoopPhase.DEV, mandatory=False),
        ]
        validator = InstructionCoverageValidator(
            discovery=FakeDiscovery(["AGENTS.md"]),
            scripts=FakeScripts(scripts),
            reader=FakeReader({"AGENTS.md": "Run `npm test`.\nStart with npm run dev.\n"}),
        )
        result = await validator.validate("/repo")
        assert [s.name for s in result.documented_in_instructions] == ["test"]
        assert [s.name for s in result.missing_in_instructions] == ["build"]
        assert result.total_mandatory == 2
        assert result.total_documented == 1
        assert result.coverage_percentage == 50.0
        assert result.has_full_coverage is False
        assert {r.target for r in result.references} == {"test", "dev"}

    @pytest.mark.asyncio
    async def test_nothing_mandatory_is_full_coverage(self):
        validator = InstructionCoverageValidator(
            discovery=FakeDiscovery([]),
            scripts=FakeScripts([script("dev", "vite", FeedbackLoopPhase.DEV, mandatory=False)]),
            reader=FakeReader({}),
        )
        result = await validator.validate("/repo")
        assert result.coverage_percentage == 100.0
        assert result.has_full_coverage is True
