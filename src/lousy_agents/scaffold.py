"""
Skill and custom agent scaffolding.

Generated files carry frontmatter that passes the lint engines; the body is
a fill-in-the-blanks template.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict

import yaml

from .discovery import AGENTS_DIRECTORY, SKILL_FILE_NAME
from .models import NAME_PATTERN

logger = logging.getLogger(__name__)

SKILLS_DIRECTORY = ".github/skills"

SKILL_BODY = """\
<!--
This is a GitHub Copilot Agent Skill for repository-level use.
Learn more: https://docs.github.com/en/copilot/concepts/agents/about-agent-skills
-->

# {name}

{{Brief description of what this skill teaches Copilot to do}}

## When to Use This Skill

Copilot should use this skill when:

- {{Trigger condition 1}}
- {{Trigger condition 2}}

## Instructions

1. {{Step 1}}
2. {{Step 2}}

## Guidelines

- {{Guideline or best practice}}

## Examples

### Example 1: {{Title}}

{{Description of the example scenario and expected behavior}}
"""

AGENT_BODY = """\
<!--
This is a custom GitHub Copilot agent for repository-level use.
Learn more: https://docs.github.com/en/copilot/how-tos/use-copilot-agents/coding-agent/create-custom-agents
-->

# {name} Agent

You are a {name} agent specialized in {{domain/responsibility}}.

## Your Role

{{Brief description of the agent's expertise and focus area}}

## Responsibilities

- {{Primary responsibility}}
- {{Secondary responsibility}}

## Guidelines

- {{Guideline or best practice}}

## Example Interactions

{{Example of how the agent should respond to typical requests}}
"""


def normalize_name(name: str) -> str:
    """Trim, lowercase and hyphenate whitespace: ``"  My  Skill "`` -> ``"my-skill"``.

    Raises ``ValueError`` for names that are empty, look like paths or do
    not satisfy the skill/agent naming rule after normalization.
    """
    normalized = re.sub(r"\s+", "-", name.strip().lower())
    if not normalized:
        raise ValueError("Name must not be empty")
    if "/" in normalized or "\\" in normalized or ".." in normalized:
        raise ValueError(f"Name must not contain path separators or '..': {name!r}")
    if len(normalized) > 64 or not re.match(NAME_PATTERN, normalized):
        raise ValueError(
            f"Name {normalized!r} must be at most 64 characters of lowercase "
            f"letters, numbers and single hyphens"
        )
    return normalized


def _generate_frontmatter(data: Dict[str, Any]) -> str:
    """Render *data* as a ``---`` delimited YAML block."""
    dumped = yaml.dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)
    return f"---\n{dumped}---\n"


def generate_skill_content(name: str) -> str:
    frontmatter = _generate_frontmatter(
        {
            "name": name,
            "description": "Brief description of what this skill does and when Copilot should use it",
        }
    )
    return f"{frontmatter}\n{SKILL_BODY.format(name=name)}"


def generate_agent_content(name: str) -> str:
    frontmatter = _generate_frontmatter(
        {"name": name, "description": "Brief description of what this agent does"}
    )
    return f"{frontmatter}\n{AGENT_BODY.format(name=name)}"


def _write_new(path: Path, content: str) -> Path:
    if path.exists():
        raise FileExistsError(f"{path} already exists")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info("Created %s", path)
    return path


def create_skill(target_dir: str, name: str) -> Path:
    """Write ``.github/skills/<name>/SKILL.md`` and return its path."""
    normalized = normalize_name(name)
    path = Path(target_dir) / SKILLS_DIRECTORY / normalized / SKILL_FILE_NAME
    return _write_new(path, generate_skill_content(normalized))


def create_agent(target_dir: str, name: str) -> Path:
    """Write ``.github/agents/<name>.md`` and return its path."""
    normalized = normalize_name(name)
    path = Path(target_dir) / AGENTS_DIRECTORY / f"{normalized}.md"
    return _write_new(path, generate_agent_content(normalized))
