# utils/github_client.py

import asyncio
import logging
from typing import List, Optional
from urllib.parse import quote

import httpx

from errors import GitHubApiError
from models import PlacementTarget, ResolvedAnchor
from utils.config import (
    COMMENT_MAX_ATTEMPTS,
    COMMENT_RETRY_BACKOFF_SECONDS,
    GITHUB_API_BASE,
    GITHUB_HTTP_TIMEOUT,
    GITHUB_TOKEN,
)

logger = logging.getLogger(__name__)

# base request headers
HEADERS = {
    "Accept": "application/vnd.github+json",
    "User-Agent": "PR-Review-Agent",
}


def build_github_client(token: Optional[str] = GITHUB_TOKEN, **kwargs) -> httpx.AsyncClient:
    """
    Authenticated client shared by every request of the service.
    Extra keyword arguments go straight to httpx.AsyncClient.
    """
    headers = dict(HEADERS)
    if token:
        headers["Authorization"] = f"Bearer {token}"
    kwargs.setdefault("base_url", GITHUB_API_BASE)
    kwargs.setdefault("timeout", GITHUB_HTTP_TIMEOUT)
    return httpx.AsyncClient(headers=headers, **kwargs)


def _repo_path(owner: str, repo: str) -> str:
    return f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"


# -----------------------------------------------------------
# PR metadata and head commit SHA
# -----------------------------------------------------------
async def fetch_pr_head_sha(http: httpx.AsyncClient, owner: str, repo: str, pr_number: int) -> str:
    """
    Returns the HEAD commit SHA of the PR. Inline comments must be anchored
    to it, an older SHA is rejected with 422.
    """
    resp = await http.get(f"{_repo_path(owner, repo)}/pulls/{pr_number}")
    resp.raise_for_status()
    return resp.json()["head"]["sha"]


async def fetch_pr_files(http: httpx.AsyncClient, owner: str, repo: str, pr_number: int) -> List[dict]:
    """
    Return PR changed files including patches, following pagination.
    """
    files: List[dict] = []
    page = 1
    while True:
        resp = await http.get(
            f"{_repo_path(owner, repo)}/pulls/{pr_number}/files",
            params={"per_page": 100, "page": page},
        )
        resp.raise_for_status()
        batch = resp.json()
        if not batch:
            break
        files.extend(batch)
        if len(batch) < 100:
            break
        page += 1
    return files


def build_diff_from_files(files: List[dict]) -> str:
    """
    Rebuild `git diff` text from GitHub's per-file patches. Files without a
    patch (binary, too large) are left out.
    """
    patches = []
    for f in files:
        patch = f.get("patch")
        filename = f.get("filename")
        if patch and filename:
            previous = f.get("previous_filename") or filename
            header = f"diff --git a/{previous} b/{filename}\n"
            patches.append(header + patch)
    return "\n".join(patches)


# -----------------------------------------------------------
# Comment posting
# -----------------------------------------------------------
class CommentClient:
    """
    Posts inline review comments and conversation comments on a pull request.

    5xx responses and network errors are retried up to `max_attempts` times
    with a fixed pause between attempts; any 4xx is returned to the caller at
    once because repeating a structurally wrong request cannot succeed.
    Failures are raised as GitHubApiError.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        max_attempts: int = COMMENT_MAX_ATTEMPTS,
        backoff_seconds: float = COMMENT_RETRY_BACKOFF_SECONDS,
    ):
        self.http = http
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds

    async def post_inline(
        self,
        target: PlacementTarget,
        anchor: ResolvedAnchor,
        body: str,
        deadline: Optional[float] = None,
    ) -> str:
        url = f"{_repo_path(target.owner, target.repo)}/pulls/{target.pr_number}/comments"
        payload = {
            "body": body,
            "commit_id": target.commit_sha,
            "path": anchor.file,
            "diff_hunk": anchor.hunk_text,
            "line": anchor.line,
            "side": anchor.side.value.lower(),
        }
        data = await self._post(url, payload, deadline)
        logger.info("Posted inline comment on %s:%d (%s): %s",
                    anchor.file, anchor.line, anchor.side.value, data.get("html_url"))
        return data.get("html_url")

    async def post_aggregate(
        self,
        target: PlacementTarget,
        body: str,
        deadline: Optional[float] = None,
    ) -> str:
        url = f"{_repo_path(target.owner, target.repo)}/issues/{target.pr_number}/comments"
        data = await self._post(url, {"body": body}, deadline)
        logger.info("Posted aggregate comment on %s/%s#%d: %s",
                    target.owner, target.repo, target.pr_number, data.get("html_url"))
        return data.get("html_url")

    async def _post(self, url: str, payload: dict, deadline: Optional[float]) -> dict:
        loop = asyncio.get_running_loop()
        error: Optional[GitHubApiError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = await self.http.post(url, json=payload)
            except httpx.TransportError as e:
                error = GitHubApiError(f"Network error posting to {url}: {e}", status=None, retryable=True)
            else:
                if resp.is_success:
                    try:
                        return resp.json()
                    except ValueError:
                        # the comment exists, only its URL is unknown
                        logger.warning("GitHub returned %d with a non-JSON body for %s", resp.status_code, url)
                        return {}
                retryable = resp.status_code >= 500
                error = GitHubApiError(
                    f"GitHub returned {resp.status_code}: {resp.text}",
                    status=resp.status_code,
                    retryable=retryable,
                )
                if not retryable:
                    raise error

            if attempt == self.max_attempts:
                break
            if deadline is not None and loop.time() >= deadline:
                logger.warning("Not retrying %s, request deadline has passed", url)
                break
            logger.warning("Attempt %d/%d for %s failed (%s), retrying in %.1fs",
                           attempt, self.max_attempts, url, error, self.backoff_seconds)
            await asyncio.sleep(self.backoff_seconds)

        raise error
