"""
Pytest configuration and shared fixtures for lousy-agents tests.
"""

import json
import shutil
import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

SAMPLE_SCRIPTS = {
    "test": "vitest run",
    "build": "tsc -p .",
    "lint": "eslint .",
    "format:check": "prettier --check .",
    "dev": "vite",
}

GOOD_INSTRUCTIONS = """\
# Project Guide

Some background about the project.

## Validation

Run the full suite before every commit:

```bash
npm test
npm run build
npm run lint
npm run format:check
```

If any command fails, fix the errors and run it again.
"""

VALID_SKILL = """\
---
name: {name}
description: Helps with releases
allowed-tools: Read, Write
---

# {name}
"""

VALID_AGENT = """\
---
name: {name}
description: Reviews pull requests
---

# {name} Agent
"""


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path, ignore_errors=True)


def write_file(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def make_repo(temp_dir):
    """Factory fixture writing ``{relative_path: content}`` into the temp repo."""

    def _make(files=None, scripts=None):
        if scripts is not None:
            write_file(temp_dir, "package.json", json.dumps({"name": "sample", "scripts": scripts}))
        for relative, content in (files or {}).items():
            write_file(temp_dir, relative, content)
        return temp_dir

    return _make


@pytest.fixture
def sample_repo(make_repo):
    """A repository with well documented scripts, one skill and one agent."""
    return make_repo(
        files={
            ".github/copilot-instructions.md": GOOD_INSTRUCTIONS,
            ".github/skills/release-notes/SKILL.md": VALID_SKILL.format(name="release-notes"),
            ".github/agents/reviewer.md": VALID_AGENT.format(name="reviewer"),
        },
        scripts=SAMPLE_SCRIPTS,
    )


@pytest.fixture
def make_mock_process():
    """Factory fixture for creating mock asyncio subprocess processes."""

    def _make(returncode=0, stdout=b"", stderr=b""):
        process = MagicMock()
        process.returncode = returncode
        process.pid = 12345
        process.stdout = MagicMock()
        process.stdout.read = AsyncMock(side_effect=[stdout, b""] if stdout else [b""])
        process.stderr = MagicMock()
        process.stderr.read = AsyncMock(side_effect=[stderr, b""] if stderr else [b""])
        process.wait = AsyncMock(return_value=returncode)
        process.kill = MagicMock()
        return process

    return _make


# Pytest configuration
def pytest_configure(config):
    """Configure pytest settings."""
    config.addinivalue_line(
        "markers", "integration: tests that run several modules against a sample repository"
    )
