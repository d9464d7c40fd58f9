"""
Feedback-loop discovery from the project manifest (``package.json``).

Each script is mapped to the SDLC phase it serves; scripts in the test,
build, lint and format phases are the project's mandatory commands.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .models import DiscoveredScript, FeedbackLoopPhase
from .quality import MandatoryCommandsPort, ScriptDiscoveryPort

logger = logging.getLogger(__name__)

Phase = FeedbackLoopPhase

SCRIPT_PHASE_MAPPING: Dict[str, FeedbackLoopPhase] = {
    "test": Phase.TEST,
    "test:unit": Phase.TEST,
    "test:integration": Phase.TEST,
    "test:e2e": Phase.TEST,
    "test:watch": Phase.TEST,
    "build": Phase.BUILD,
    "compile": Phase.BUILD,
    "bundle": Phase.BUILD,
    "lint": Phase.LINT,
    "lint:fix": Phase.LINT,
    "lint:check": Phase.LINT,
    "lint:workflows": Phase.LINT,
    "lint:yaml": Phase.LINT,
    "format": Phase.FORMAT,
    "format:check": Phase.FORMAT,
    "format:fix": Phase.FORMAT,
    "prettier": Phase.FORMAT,
    "prettier:check": Phase.FORMAT,
    "prettier:fix": Phase.FORMAT,
    "audit": Phase.SECURITY,
    "audit:fix": Phase.SECURITY,
    "security": Phase.SECURITY,
    "deploy": Phase.DEPLOY,
    "publish": Phase.DEPLOY,
    "release": Phase.DEPLOY,
    "install": Phase.INSTALL,
    "ci": Phase.INSTALL,
    "dev": Phase.DEV,
    "start": Phase.DEV,
    "serve": Phase.DEV,
}

# Substrings of the script body hinting at a phase, checked in order.
COMMAND_PHASE_HINTS = (
    (Phase.TEST, ("test", "vitest", "jest", "mocha", "ava")),
    (Phase.BUILD, ("build", "compile", "webpack", "rspack", "rollup", "vite build")),
    (Phase.LINT, ("lint", "eslint", "biome", "tslint", "actionlint", "yamllint")),
    (Phase.FORMAT, ("prettier", "format")),
    (Phase.SECURITY, ("audit", "snyk", "npm-audit")),
)

MANDATORY_PHASES = frozenset({Phase.TEST, Phase.BUILD, Phase.LINT, Phase.FORMAT})

PHASE_ORDER = (
    Phase.TEST,
    Phase.LINT,
    Phase.FORMAT,
    Phase.BUILD,
    Phase.SECURITY,
    Phase.INSTALL,
    Phase.DEV,
    Phase.DEPLOY,
    Phase.UNKNOWN,
)

LOCKFILE_PACKAGE_MANAGERS = (
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("bun.lockb", "bun"),
    ("package-lock.json", "npm"),
)


def determine_script_phase(name: str, command: str) -> FeedbackLoopPhase:
    """Map a script to its phase by exact name, ``name:`` prefix, then command body."""
    if name in SCRIPT_PHASE_MAPPING:
        return SCRIPT_PHASE_MAPPING[name]

    for pattern, phase in SCRIPT_PHASE_MAPPING.items():
        if not name.startswith(pattern):
            continue
        # "test:unit:watch" counts as test, "test-utils" does not
        if pattern.endswith(":") or name[len(pattern) : len(pattern) + 1] == ":":
            return phase

    lowered = command.lower()
    for phase, hints in COMMAND_PHASE_HINTS:
        if any(hint in lowered for hint in hints):
            return phase
    return Phase.UNKNOWN


def is_mandatory_phase(phase: FeedbackLoopPhase) -> bool:
    return phase in MANDATORY_PHASES


def sort_by_phase(scripts: Sequence[DiscoveredScript]) -> List[DiscoveredScript]:
    """Stable sort by phase priority (test first, unknown last)."""
    return sorted(scripts, key=lambda s: PHASE_ORDER.index(s.phase))


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    """Read and parse a JSON object, returning ``None`` on any failure."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except Exception as exc:
        logger.debug("Could not parse JSON %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None


def scripts_from_manifest(manifest: Dict[str, Any]) -> List[DiscoveredScript]:
    """Build :class:`DiscoveredScript` entries from a parsed ``package.json``."""
    raw = manifest.get("scripts")
    if not isinstance(raw, dict):
        return []

    scripts = []
    for name, command in raw.items():
        if not isinstance(command, str):
            logger.debug("Ignoring non-string script %r", name)
            continue
        phase = determine_script_phase(name, command)
        scripts.append(
            DiscoveredScript(
                name=name,
                command=command,
                phase=phase,
                is_mandatory=is_mandatory_phase(phase),
            )
        )
    return scripts


def detect_package_manager(target_dir: str) -> Optional[str]:
    """Package manager implied by the lockfile present, if any."""
    root = Path(target_dir)
    for lockfile, manager in LOCKFILE_PACKAGE_MANAGERS:
        if (root / lockfile).is_file():
            return manager
    if (root / "package.json").is_file():
        return "npm"
    return None


class PackageJsonScriptDiscovery(ScriptDiscoveryPort):
    """Reads scripts from ``package.json`` in the target directory.

    A missing or malformed manifest yields no scripts.
    """

    async def discover_scripts(self, target_dir: str) -> List[DiscoveredScript]:
        path = Path(target_dir) / "package.json"
        if not path.is_file():
            return []
        manifest = await asyncio.to_thread(_read_json, path)
        if manifest is None:
            return []
        return scripts_from_manifest(manifest)


class FeedbackLoopCommands(MandatoryCommandsPort):
    """Mandatory command names derived from discovered scripts."""

    def __init__(self, scripts: Optional[ScriptDiscoveryPort] = None):
        self.scripts = scripts or PackageJsonScriptDiscovery()

    async def get_mandatory_commands(self, target_dir: str) -> List[str]:
        scripts = await self.scripts.discover_scripts(target_dir)
        return [s.name for s in scripts if s.is_mandatory]


async def discover_feedback_loops(
    target_dir: str, scripts: Optional[ScriptDiscoveryPort] = None
) -> Dict[str, Any]:
    """Scripts grouped by phase plus the detected package manager."""
    source = scripts or PackageJsonScriptDiscovery()
    found = sort_by_phase(await source.discover_scripts(target_dir))

    by_phase: Dict[str, List[Dict[str, Any]]] = {}
    for script in found:
        by_phase.setdefault(script.phase.value, []).append(
            {"name": script.name, "command": script.command, "mandatory": script.is_mandatory}
        )

    return {
        "scripts": [s.to_wire() for s in found],
        "scriptsByPhase": by_phase,
        "packageManager": detect_package_manager(target_dir),
        "summary": {
            "totalScripts": len(found),
            "mandatoryScripts": sum(1 for s in found if s.is_mandatory),
        },
    }
