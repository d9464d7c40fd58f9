"""
Leading ``---`` frontmatter extraction shared by the skill and agent linters.
"""

import re
from typing import Any, Dict, List, Optional

import yaml

from .models import ParsedFrontmatter

FRONTMATTER_DELIMITER = "---"

# Top-level ``key:`` lines; indented lines and list items are nested values.
_FIELD_LINE_RE = re.compile(r"^([^\s:#-][^:]*?):(?:\s|$)")


class FrontmatterError(ValueError):
    """Delimiters were found but the block is not a YAML mapping."""


def _split_lines(content: str) -> List[str]:
    return content.replace("\r\n", "\n").replace("\r", "\n").split("\n")


def _closing_index(lines: List[str]) -> Optional[int]:
    if not lines or lines[0].strip() != FRONTMATTER_DELIMITER:
        return None
    for idx in range(1, len(lines)):
        if lines[idx].strip() == FRONTMATTER_DELIMITER:
            return idx
    return None


def parse_frontmatter(content: str) -> Optional[ParsedFrontmatter]:
    """Parse the leading frontmatter block of *content*.

    Returns ``None`` when there is no ``---`` delimited block.  Raises
    :class:`FrontmatterError` when the block exists but does not contain a
    YAML mapping.  An empty block yields an empty mapping.
    """
    lines = _split_lines(content)
    end = _closing_index(lines)
    if end is None:
        return None

    block = lines[1:end]
    try:
        data = yaml.safe_load("\n".join(block))
    except yaml.YAMLError as exc:
        raise FrontmatterError(f"Invalid YAML frontmatter: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FrontmatterError(
            f"Frontmatter must be a mapping, got {type(data).__name__}"
        )

    field_lines: Dict[str, int] = {}
    for offset, line in enumerate(block):
        match = _FIELD_LINE_RE.match(line)
        if match:
            key = match.group(1).strip().strip("'\"")
            # line 1 is the opening delimiter
            field_lines.setdefault(key, offset + 2)

    parsed: Dict[str, Any] = {str(key): value for key, value in data.items()}
    return ParsedFrontmatter(data=parsed, field_lines=field_lines, frontmatter_start_line=1)
