"""
Filesystem gateways: instruction, skill and agent file discovery plus the
size-limited file reader used by the quality analyzer and the linters.

All discovered paths are POSIX paths relative to the target directory.  A
missing target directory, or a missing ``.github/skills`` /
``.github/agents`` folder, simply yields nothing.
"""

import asyncio
import logging
from pathlib import Path, PurePath
from typing import List, Optional, Sequence

from .feedback_loops import FeedbackLoopCommands, PackageJsonScriptDiscovery
from .models import (
    DiscoveredAgentFile,
    DiscoveredInstructionFile,
    DiscoveredSkillFile,
    InstructionCoverageResult,
    InstructionFileFormat,
)
from .quality import (
    FileReaderPort,
    InstructionCoverageValidator,
    InstructionDiscoveryPort,
    InstructionQualityAnalysis,
    InstructionQualityAnalyzer,
)

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 1024 * 1024

SKILL_FILE_NAME = "SKILL.md"
SKILL_DIRECTORIES = (".github/skills", ".claude/skills")
AGENTS_DIRECTORY = ".github/agents"


class InvalidTargetDirectoryError(ValueError):
    """The target directory path is unsafe to use."""


def validate_target_dir(target_dir: str) -> Path:
    """Reject NUL characters and ``..`` components; return the path."""
    if not target_dir:
        raise InvalidTargetDirectoryError("Target directory is required")
    if "\x00" in target_dir:
        raise InvalidTargetDirectoryError("Target directory contains a NUL character")
    if ".." in PurePath(target_dir).parts:
        raise InvalidTargetDirectoryError(
            f"Target directory must not contain '..' components: {target_dir}"
        )
    return Path(target_dir)


def _relative(path: Path, root: Path) -> str:
    return path.relative_to(root).as_posix()


def _markdown_files(directory: Path) -> List[Path]:
    """``*.md`` files directly inside *directory*, sorted by name."""
    if not directory.is_dir():
        return []
    try:
        entries = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as exc:
        logger.warning("Cannot list %s: %s", directory, exc)
        return []
    return [p for p in entries if p.suffix == ".md" and p.is_file()]


def find_instruction_files(target_dir: str) -> List[DiscoveredInstructionFile]:
    """Instruction files in the fixed discovery order."""
    root = Path(target_dir)
    if not root.is_dir():
        return []

    found: List[DiscoveredInstructionFile] = []

    def add(path: Path, fmt: InstructionFileFormat) -> None:
        found.append(DiscoveredInstructionFile(file_path=_relative(path, root), format=fmt))

    copilot = root / ".github" / "copilot-instructions.md"
    if copilot.is_file():
        add(copilot, InstructionFileFormat.COPILOT_INSTRUCTIONS)
    for path in _markdown_files(root / ".github" / "instructions"):
        add(path, InstructionFileFormat.COPILOT_SCOPED)
    for path in _markdown_files(root / AGENTS_DIRECTORY):
        add(path, InstructionFileFormat.COPILOT_AGENT)
    if (root / "AGENTS.md").is_file():
        add(root / "AGENTS.md", InstructionFileFormat.AGENTS_MD)
    if (root / "CLAUDE.md").is_file():
        add(root / "CLAUDE.md", InstructionFileFormat.CLAUDE_MD)
    return found


def find_skill_files(target_dir: str) -> List[DiscoveredSkillFile]:
    """``SKILL.md`` files one level below each skills directory."""
    root = Path(target_dir)
    found: List[DiscoveredSkillFile] = []
    for skills_dir in SKILL_DIRECTORIES:
        base = root / skills_dir
        if not base.is_dir():
            continue
        for skill_dir in sorted(base.iterdir(), key=lambda p: p.name):
            skill_file = skill_dir / SKILL_FILE_NAME
            if skill_dir.is_dir() and skill_file.is_file():
                found.append(
                    DiscoveredSkillFile(
                        file_path=_relative(skill_file, root), skill_name=skill_dir.name
                    )
                )
    return found


def agent_name_from_filename(filename: str) -> str:
    for suffix in (".agent.md", ".md"):
        if filename.endswith(suffix):
            return filename[: -len(suffix)]
    return filename


def find_agent_files(target_dir: str) -> List[DiscoveredAgentFile]:
    """Custom agent definitions in ``.github/agents``."""
    root = Path(target_dir)
    return [
        DiscoveredAgentFile(
            file_path=_relative(path, root), agent_name=agent_name_from_filename(path.name)
        )
        for path in _markdown_files(root / AGENTS_DIRECTORY)
    ]


def read_text_file(path: Path, max_bytes: int = MAX_FILE_BYTES) -> str:
    """Read UTF-8 text, refusing files larger than *max_bytes*."""
    size = path.stat().st_size
    if size > max_bytes:
        raise ValueError(f"File is too large to analyze ({size} bytes > {max_bytes} bytes)")
    return path.read_text(encoding="utf-8")


class FileSystemInstructionDiscovery(InstructionDiscoveryPort):
    async def discover_instruction_files(
        self, target_dir: str
    ) -> List[DiscoveredInstructionFile]:
        return await asyncio.to_thread(find_instruction_files, target_dir)


class FileSystemReader(FileReaderPort):
    """Reads files relative to the target directory off the event loop."""

    def __init__(self, max_bytes: int = MAX_FILE_BYTES):
        self.max_bytes = max_bytes

    async def read_file(self, target_dir: str, file_path: str) -> str:
        return await asyncio.to_thread(
            read_text_file, Path(target_dir) / file_path, self.max_bytes
        )


async def read_files(
    target_dir: str, file_paths: Sequence[str], reader: Optional[FileReaderPort] = None
) -> List[object]:
    """Read *file_paths* concurrently; failures come back as exception objects."""
    reader = reader or FileSystemReader()
    return await asyncio.gather(
        *(reader.read_file(target_dir, p) for p in file_paths), return_exceptions=True
    )


async def analyze_instruction_quality(
    target_dir: str, heading_patterns: Optional[Sequence[str]] = None
) -> InstructionQualityAnalysis:
    """Run the quality analyzer with the filesystem gateways."""
    validate_target_dir(target_dir)
    analyzer = InstructionQualityAnalyzer(
        discovery=FileSystemInstructionDiscovery(),
        commands=FeedbackLoopCommands(),
        reader=FileSystemReader(),
        heading_patterns=heading_patterns,
    )
    return await analyzer.analyze(target_dir)


async def validate_instruction_coverage(target_dir: str) -> InstructionCoverageResult:
    """Run the coverage validator with the filesystem gateways."""
    validate_target_dir(target_dir)
    validator = InstructionCoverageValidator(
        discovery=FileSystemInstructionDiscovery(),
        scripts=PackageJsonScriptDiscovery(),
        reader=FileSystemReader(),
    )
    return await validator.validate(target_dir)
