"""
GitHub repository ruleset checks.

The repository is derived from ``git remote get-url origin`` and the token
from the settings/environment or ``gh auth token``.  Rulesets are read and
created through the REST API with ``httpx``.  External commands run with a
timeout and a bounded output buffer; every failure surfaces as a typed error
and nothing is retried.
"""

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from pydantic import ValidationError

from .models import CopilotReviewStatus, Ruleset, RulesetRule

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
MAX_OUTPUT_BYTES = 10 * 1024 * 1024
_COMMAND_TIMEOUT = 30.0
_REQUEST_TIMEOUT = 15.0
_READ_CHUNK = 64 * 1024

_HTTPS_REMOTE_RE = re.compile(r"github\.com/([\w-]+)/([\w.-]+?)(?:\.git)?$")
_SSH_REMOTE_RE = re.compile(r"github\.com:([\w-]+)/([\w.-]+?)(?:\.git)?$")

COPILOT_RULESET_NAME = "Copilot Code Review"


class GitHubCliError(RuntimeError):
    """An external command (``gh``, ``git``) failed."""

    def __init__(self, operation: str, target: str, message: str):
        self.operation = operation
        self.target = target
        self.message = message
        super().__init__(f"{operation} failed for {target}: {message}")


class GitHubApiError(RuntimeError):
    """A GitHub REST call failed."""

    def __init__(self, operation: str, target: str, message: str):
        self.operation = operation
        self.target = target
        self.message = message
        super().__init__(f"Failed to {operation} for {target}: {message}")


class _OutputLimitExceeded(Exception):
    pass


async def _read_bounded(stream: Optional[asyncio.StreamReader], limit: int) -> bytes:
    if stream is None:
        return b""
    chunks: List[bytes] = []
    total = 0
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            raise _OutputLimitExceeded()
        chunks.append(chunk)
    return b"".join(chunks)


async def run_command(
    args: Sequence[str],
    cwd: Optional[str] = None,
    timeout: float = _COMMAND_TIMEOUT,
    max_output_bytes: int = MAX_OUTPUT_BYTES,
) -> str:
    """Run *args* and return its stripped stdout.

    Raises :class:`GitHubCliError` when the binary is missing, the process
    exits non-zero, exceeds *timeout* or writes more than *max_output_bytes*.
    """
    operation = " ".join(args)
    target = cwd or "."
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise GitHubCliError(operation, target, f"could not start process: {exc}") from exc

    async def collect() -> Tuple[bytes, bytes, int]:
        out, err = await asyncio.gather(
            _read_bounded(proc.stdout, max_output_bytes),
            _read_bounded(proc.stderr, max_output_bytes),
        )
        return out, err, await proc.wait()

    try:
        stdout, stderr, returncode = await asyncio.wait_for(collect(), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(proc)
        raise GitHubCliError(operation, target, f"timed out after {timeout:g} seconds")
    except _OutputLimitExceeded:
        await _kill(proc)
        raise GitHubCliError(operation, target, f"output exceeded {max_output_bytes} bytes")

    if returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()[:300]
        raise GitHubCliError(
            operation, target, f"exited with code {returncode}" + (f": {detail}" if detail else "")
        )
    return stdout.decode("utf-8", errors="replace").strip()


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


def parse_repo_from_remote_url(remote_url: str) -> Optional[Tuple[str, str]]:
    """``(owner, repo)`` for a GitHub HTTPS or SSH remote, else ``None``."""
    url = remote_url.strip()
    match = _HTTPS_REMOTE_RE.search(url) or _SSH_REMOTE_RE.search(url)
    if match is None:
        return None
    return match.group(1), match.group(2)


async def get_repo_info(target_dir: str) -> Optional[Tuple[str, str]]:
    """Owner and repository of the ``origin`` remote of *target_dir*."""
    remote = await run_command(["git", "remote", "get-url", "origin"], cwd=target_dir)
    return parse_repo_from_remote_url(remote)


async def get_gh_token() -> str:
    """Token of the authenticated GitHub CLI user."""
    token = await run_command(["gh", "auth", "token"])
    if not token:
        raise GitHubCliError("gh auth token", "GitHub CLI", "no authentication token available")
    return token


class GitHubRulesetClient:
    """Minimal async client for repository rulesets.

    Usage::

        async with GitHubRulesetClient(token) as client:
            rulesets = await client.list_rulesets("owner", "repo")
    """

    def __init__(
        self,
        token: str,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = GITHUB_API_URL,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=_REQUEST_TIMEOUT)
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "lousy-agents",
        }

    async def __aenter__(self) -> "GitHubRulesetClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self, method: str, path: str, operation: str, target: str, **kwargs: Any
    ) -> Any:
        try:
            resp = await self._client.request(
                method, f"{self._base_url}{path}", headers=self._headers, **kwargs
            )
            resp.raise_for_status()
            return resp.json()
        except httpx.TimeoutException as exc:
            raise GitHubApiError(operation, target, "request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise GitHubApiError(
                operation, target, f"HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise GitHubApiError(operation, target, str(exc)) from exc

    async def list_rulesets(self, owner: str, repo: str) -> List[Ruleset]:
        target = f"{owner}/{repo}"
        data = await self._request("GET", f"/repos/{target}/rulesets", "list rulesets", target)
        try:
            return [Ruleset.model_validate(item) for item in data]
        except (TypeError, ValidationError) as exc:
            raise GitHubApiError("list rulesets", target, f"unexpected response: {exc}") from exc

    async def get_ruleset(self, owner: str, repo: str, ruleset_id: int) -> Ruleset:
        target = f"{owner}/{repo}"
        data = await self._request(
            "GET", f"/repos/{target}/rulesets/{ruleset_id}", "get ruleset", target
        )
        try:
            return Ruleset.model_validate(data)
        except ValidationError as exc:
            raise GitHubApiError("get ruleset", target, f"unexpected response: {exc}") from exc

    async def create_ruleset(self, owner: str, repo: str, payload: Dict[str, Any]) -> Ruleset:
        target = f"{owner}/{repo}"
        data = await self._request(
            "POST", f"/repos/{target}/rulesets", "create ruleset", target, json=payload
        )
        try:
            return Ruleset.model_validate(data)
        except ValidationError as exc:
            raise GitHubApiError("create ruleset", target, f"unexpected response: {exc}") from exc


def is_copilot_rule(rule: RulesetRule) -> bool:
    if rule.type == "copilot_code_review":
        return True
    if rule.type != "code_scanning" or not rule.parameters:
        return False
    tools = rule.parameters.get("code_scanning_tools")
    if not isinstance(tools, list):
        return False
    return any(
        isinstance(tool, dict)
        and isinstance(tool.get("tool"), str)
        and "copilot" in tool["tool"].lower()
        for tool in tools
    )


def find_copilot_ruleset(rulesets: Sequence[Ruleset]) -> Optional[Ruleset]:
    """First active ruleset carrying a Copilot review rule."""
    for ruleset in rulesets:
        if ruleset.enforcement != "active" or not ruleset.rules:
            continue
        if any(is_copilot_rule(rule) for rule in ruleset.rules):
            return ruleset
    return None


def build_copilot_review_ruleset_payload() -> Dict[str, Any]:
    return {
        "name": COPILOT_RULESET_NAME,
        "enforcement": "active",
        "target": "branch",
        "bypass_actors": [],
        "conditions": {"ref_name": {"include": ["~DEFAULT_BRANCH"], "exclude": []}},
        "rules": [
            {
                "type": "copilot_code_review",
                "parameters": {
                    "review_on_push": True,
                    "review_draft_pull_requests": True,
                },
            },
            {
                "type": "code_scanning",
                "parameters": {
                    "code_scanning_tools": [
                        {
                            "tool": "Copilot Autofix",
                            "security_alerts_threshold": "high_or_higher",
                            "alerts_threshold": "errors",
                        }
                    ]
                },
            },
        ],
    }


async def check_copilot_review_ruleset(
    client: GitHubRulesetClient, owner: str, repo: str
) -> CopilotReviewStatus:
    """Whether *owner/repo* has an active Copilot review ruleset.

    API failures are reported in ``error`` rather than raised.  The list
    endpoint omits rules, so active rulesets are fetched individually when
    needed.
    """
    try:
        rulesets = await client.list_rulesets(owner, repo)
        detailed = []
        for ruleset in rulesets:
            if ruleset.enforcement == "active" and ruleset.rules is None:
                ruleset = await client.get_ruleset(owner, repo, ruleset.id)
            detailed.append(ruleset)
    except GitHubApiError as exc:
        logger.warning("%s", exc)
        return CopilotReviewStatus(has_ruleset=False, error=str(exc))

    found = find_copilot_ruleset(detailed)
    if found is None:
        return CopilotReviewStatus(has_ruleset=False)
    return CopilotReviewStatus(has_ruleset=True, ruleset_name=found.name)


async def review_ruleset(
    target_dir: str, token: Optional[str] = None, create: bool = False
) -> CopilotReviewStatus:
    """Check (and optionally create) the Copilot review ruleset of *target_dir*'s repository.

    Raises :class:`GitHubCliError` when the repository or token cannot be
    determined.
    """
    repo_info = await get_repo_info(target_dir)
    if repo_info is None:
        raise GitHubCliError(
            "git remote get-url origin", target_dir, "origin is not a GitHub repository"
        )
    owner, repo = repo_info
    token = token or await get_gh_token()

    async with GitHubRulesetClient(token) as client:
        status = await check_copilot_review_ruleset(client, owner, repo)
        if status.has_ruleset or status.error or not create:
            return status
        try:
            created = await client.create_ruleset(
                owner, repo, build_copilot_review_ruleset_payload()
            )
        except GitHubApiError as exc:
            return CopilotReviewStatus(has_ruleset=False, error=str(exc))
        logger.info("Created ruleset %r for %s/%s", created.name, owner, repo)
        return CopilotReviewStatus(has_ruleset=True, ruleset_name=created.name)
