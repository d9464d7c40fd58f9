"""Tests for the rule registry, config loading and severity filter."""

import json

import pytest

from lousy_agents.lint_rules import (
    DEFAULT_LINT_RULES,
    LintConfigError,
    apply_severity_filter,
    filter_suggestions,
    find_config_file,
    load_lint_config,
    parse_lint_config,
)
from lousy_agents.models import (
    LintDiagnostic,
    LintOutput,
    LintRulesConfig,
    LintSeverity,
    LintTarget,
    QualitySuggestion,
    RuleSeverity,
)


def diag(rule_id=None, severity=LintSeverity.WARNING, line=1):
    return LintDiagnostic(
        file_path=".github/skills/foo/SKILL.md",
        line=line,
        severity=severity,
        message="m",
        rule_id=rule_id,
        target=LintTarget.SKILL,
    )


class TestDefaults:
    def test_every_default_rule_id_is_prefixed_by_target(self):
        for prefix, section in (
            ("agent/", DEFAULT_LINT_RULES.agents),
            ("instruction/", DEFAULT_LINT_RULES.instructions),
            ("skill/", DEFAULT_LINT_RULES.skills),
        ):
            assert section
            assert all(rule_id.startswith(prefix) for rule_id in section)

    def test_missing_allowed_tools_defaults_to_warn(self):
        assert DEFAULT_LINT_RULES.skills["skill/missing-allowed-tools"] == RuleSeverity.WARN


class TestParseLintConfig:
    def test_none_gives_defaults(self):
        assert parse_lint_config(None) == DEFAULT_LINT_RULES

    def test_override_merges_over_defaults(self):
        config = parse_lint_config(
            {"lint": {"rules": {"skills": {"skill/missing-allowed-tools": "off"}}}}
        )
        assert config.skills["skill/missing-allowed-tools"] == RuleSeverity.OFF
        assert config.skills["skill/missing-name"] == RuleSeverity.ERROR
        assert config.agents == DEFAULT_LINT_RULES.agents

    def test_unknown_well_formed_rule_is_discarded(self):
        config = parse_lint_config({"lint": {"rules": {"skills": {"skill/made-up": "error"}}}})
        assert "skill/made-up" not in config.skills

    def test_unknown_top_level_section_is_ignored(self):
        assert parse_lint_config({"other": {"x": 1}}) == DEFAULT_LINT_RULES

    def test_unquoted_yaml_off(self):
        config = parse_lint_config({"lint": {"rules": {"skills": {"skill/name-mismatch": False}}}})
        assert config.skills["skill/name-mismatch"] == RuleSeverity.OFF

    @pytest.mark.parametrize(
        "raw",
        [
            {"lint": {"rules": {"skills": {"Skill/Bad": "off"}}}},
            {"lint": {"rules": {"skills": {"skill/missing-name": "fatal"}}}},
            {"lint": {"rules": {"widgets": {}}}},
            {"lint": {"unknown": True}},
            ["not", "a", "mapping"],
        ],
    )
    def test_invalid_config_raises(self, raw):
        with pytest.raises(LintConfigError):
            parse_lint_config(raw)


class TestLoadLintConfig:
    def test_no_file_gives_defaults(self, temp_dir):
        assert load_lint_config(str(temp_dir)) == DEFAULT_LINT_RULES

    def test_first_config_file_wins(self, temp_dir):
        (temp_dir / "lousy-agents.config.json").write_text(
            json.dumps({"lint": {"rules": {"agents": {"agent/invalid-field": "error"}}}}),
            encoding="utf-8",
        )
        (temp_dir / "lousy-agents.config.yaml").write_text(
            "lint:\n  rules:\n    agents:\n      agent/invalid-field: 'off'\n",
            encoding="utf-8",
        )
        assert find_config_file(str(temp_dir)).name == "lousy-agents.config.yaml"
        assert load_lint_config(str(temp_dir)).agents["agent/invalid-field"] == RuleSeverity.OFF

    def test_toml_config(self, temp_dir):
        (temp_dir / "lousy-agents.config.toml").write_text(
            '[lint.rules.instructions]\n"instruction/parse-error" = "error"\n',
            encoding="utf-8",
        )
        config = load_lint_config(str(temp_dir))
        assert config.instructions["instruction/parse-error"] == RuleSeverity.ERROR

    def test_rc_file_accepts_yaml(self, temp_dir):
        (temp_dir / ".lousy-agentsrc").write_text(
            "lint:\n  rules:\n    skills:\n      skill/invalid-field: off\n", encoding="utf-8"
        )
        assert load_lint_config(str(temp_dir)).skills["skill/invalid-field"] == RuleSeverity.OFF

    def test_malformed_file_raises(self, temp_dir):
        (temp_dir / "lousy-agents.config.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(LintConfigError):
            load_lint_config(str(temp_dir))


class TestSeverityFilter:
    def _output(self, *diagnostics):
        return LintOutput(
            diagnostics=list(diagnostics),
            target=LintTarget.SKILL,
            files_analyzed=[".github/skills/foo/SKILL.md"],
        )

    def test_off_drops_and_summary_is_recomputed(self):
        rules = LintRulesConfig(skills={"skill/missing-allowed-tools": RuleSeverity.OFF})
        output = self._output(
            diag("skill/missing-allowed-tools"),
            diag("skill/missing-name", LintSeverity.ERROR),
        )
        filtered = apply_severity_filter(output, rules)
        assert [d.rule_id for d in filtered.diagnostics] == ["skill/missing-name"]
        assert filtered.summary.total_warnings == 0
        assert filtered.summary.total_errors == 1
        assert filtered.summary.total_files == 1

    def test_configured_severity_is_applied(self):
        rules = LintRulesConfig(
            skills={
                "skill/missing-allowed-tools": RuleSeverity.ERROR,
                "skill/missing-name": RuleSeverity.WARN,
            }
        )
        output = self._output(
            diag("skill/missing-allowed-tools"), diag("skill/missing-name", LintSeverity.ERROR)
        )
        filtered = apply_severity_filter(output, rules)
        assert [d.severity for d in filtered.diagnostics] == [LintSeverity.ERROR, LintSeverity.WARNING]

    def test_unconfigured_and_missing_rule_ids_pass_through(self):
        output = self._output(diag(None, line=3), diag("skill/unknown", line=5))
        filtered = apply_severity_filter(output, LintRulesConfig())
        assert filtered.diagnostics == output.diagnostics

    def test_order_is_preserved_and_input_untouched(self):
        rules = LintRulesConfig(skills={"skill/b": RuleSeverity.ERROR})
        output = self._output(diag("skill/a", line=1), diag("skill/b", line=2), diag("skill/c", line=3))
        filtered = apply_severity_filter(output, rules)
        assert [d.line for d in filtered.diagnostics] == [1, 2, 3]
        assert output.diagnostics[1].severity == LintSeverity.WARNING

    def test_filter_is_idempotent(self):
        rules = DEFAULT_LINT_RULES
        output = self._output(diag("skill/missing-allowed-tools"), diag("skill/name-mismatch"))
        once = apply_severity_filter(output, rules)
        assert apply_severity_filter(once, rules) == once

    def test_filter_suggestions(self):
        rules = LintRulesConfig(instructions={"instruction/missing-error-handling": RuleSeverity.OFF})
        suggestions = [
            QualitySuggestion(message="a", rule_id="instruction/missing-error-handling"),
            QualitySuggestion(message="b", rule_id="instruction/command-outside-section"),
            QualitySuggestion(message="c"),
        ]
        assert [s.message for s in filter_suggestions(suggestions, rules)] == ["b", "c"]
