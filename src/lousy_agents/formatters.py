"""
Lint output formatters: ``human``, ``json`` and reviewdog ``rdjsonl``.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Sequence

from .models import LintOutput, LintSeverity

FORMAT_CHOICES = ("human", "json", "rdjsonl")

SEVERITY_ICONS = {
    LintSeverity.ERROR: "✖",
    LintSeverity.WARNING: "⚠",
    LintSeverity.INFO: "ℹ",
}


class LintFormatter(ABC):
    """Renders a sequence of lint outputs as a single string."""

    @abstractmethod
    def format(self, outputs: Sequence[LintOutput]) -> str:
        ...


class HumanFormatter(LintFormatter):
    """``✔ path: OK`` for clean files, then one line per diagnostic."""

    def format(self, outputs: Sequence[LintOutput]) -> str:
        lines: List[str] = []
        for output in outputs:
            if output.summary.total_files == 0:
                continue

            flagged = {d.file_path for d in output.diagnostics}
            for file_path in output.files_analyzed:
                if file_path not in flagged:
                    lines.append(f"✔ {file_path}: OK")

            for d in output.diagnostics:
                field_info = f" [{d.field}]" if d.field else ""
                lines.append(
                    f"{SEVERITY_ICONS[d.severity]} {d.file_path}:{d.line}{field_info}: {d.message}"
                )
        return "\n".join(lines)


class JsonFormatter(LintFormatter):
    """All diagnostics as one flat JSON array."""

    def format(self, outputs: Sequence[LintOutput]) -> str:
        diagnostics = [d.to_wire() for output in outputs for d in output.diagnostics]
        return json.dumps(diagnostics, indent=2, ensure_ascii=False)


class RdjsonlFormatter(LintFormatter):
    """One reviewdog diagnostic object per line."""

    def format(self, outputs: Sequence[LintOutput]) -> str:
        lines = []
        for output in outputs:
            for d in output.diagnostics:
                start: Dict[str, Any] = {"line": d.line}
                if d.column is not None:
                    start["column"] = d.column
                range_: Dict[str, Any] = {"start": start}
                if d.end_line is not None:
                    end: Dict[str, Any] = {"line": d.end_line}
                    if d.end_column is not None:
                        end["column"] = d.end_column
                    range_["end"] = end

                entry: Dict[str, Any] = {
                    "message": d.message,
                    "location": {"path": d.file_path, "range": range_},
                    "severity": d.severity.value.upper(),
                }
                if d.rule_id:
                    entry["code"] = {"value": d.rule_id}
                lines.append(json.dumps(entry, separators=(",", ":"), ensure_ascii=False))
        return "\n".join(lines)


def create_formatter(fmt: str) -> LintFormatter:
    """Formatter for *fmt*; unknown names fall back to ``human``."""
    if fmt == "json":
        return JsonFormatter()
    if fmt == "rdjsonl":
        return RdjsonlFormatter()
    return HumanFormatter()
