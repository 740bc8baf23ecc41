import logging
from contextlib import asynccontextmanager
from typing import List, Optional

import httpx
from fastapi import Body, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from utils.config import LOG_LEVEL, token_available

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from diff_parser import parse_unified_diff
from errors import MalformedDiffError
from models import (
    LineSuggestion,
    PlacementResponse,
    PlacementTarget,
    UnifiedDiff,
)
from placement.orchestrator import PlacementOrchestrator

from utils.github_client import (
    CommentClient,
    build_diff_from_files,
    build_github_client,
    fetch_pr_files,
    fetch_pr_head_sha,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # one connection pool for every request
    async with build_github_client() as http:
        app.state.github = http
        yield


app = FastAPI(title="PR Review Comment Placement", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class PlaceReviewInput(BaseModel):
    owner: str
    repo: str
    pr_number: int
    commit_sha: Optional[str] = None
    diff: Optional[str] = None
    suggestions: List[LineSuggestion]


async def load_diff_text(http: httpx.AsyncClient, inp: PlaceReviewInput) -> Optional[str]:
    """
    The caller's diff if it sent one, otherwise the PR's file patches.
    None when GitHub cannot provide them either.
    """
    if inp.diff:
        return inp.diff
    try:
        files = await fetch_pr_files(http, inp.owner, inp.repo, inp.pr_number)
    except httpx.HTTPError as e:
        logger.warning("Could not fetch files of %s/%s#%d: %s", inp.owner, inp.repo, inp.pr_number, e)
        return None
    return build_diff_from_files(files) or None


@app.post("/parse-diff", response_model=UnifiedDiff, summary="Parse a unified diff (plain text)")
async def parse_diff(diff_text: str = Body(..., media_type="text/plain", description="Paste the full unified diff here (plain text).")):
    try:
        return parse_unified_diff(diff_text)
    except MalformedDiffError as e:
        raise HTTPException(status_code=422, detail=str(e))


@app.post("/place-review", response_model=PlacementResponse, summary="Post line suggestions as review comments on a PR")
async def place_review(inp: PlaceReviewInput, request: Request):
    if not inp.suggestions:
        return PlacementResponse(results=[], posted=0, skipped=0, failed=0)

    http = request.app.state.github

    commit_sha = inp.commit_sha
    if not commit_sha:
        try:
            commit_sha = await fetch_pr_head_sha(http, inp.owner, inp.repo, inp.pr_number)
        except Exception as e:
            raise HTTPException(status_code=502, detail=f"Failed to fetch PR metadata from GitHub: {e}")

    diff = None
    diff_text = await load_diff_text(http, inp)
    if diff_text is not None:
        try:
            diff = parse_unified_diff(diff_text)
        except MalformedDiffError as e:
            raise HTTPException(status_code=422, detail=str(e))

    target = PlacementTarget(
        owner=inp.owner,
        repo=inp.repo,
        pr_number=inp.pr_number,
        commit_sha=commit_sha,
    )
    orchestrator = PlacementOrchestrator(CommentClient(http))
    results = await orchestrator.place(diff, inp.suggestions, target)

    statuses = [r.outcome.status for r in results]
    logger.info("Placed %d suggestions on %s/%s#%d: %d posted, %d skipped, %d failed",
                len(results), inp.owner, inp.repo, inp.pr_number,
                statuses.count("posted"), statuses.count("skipped"), statuses.count("failed"))
    return PlacementResponse(
        results=results,
        posted=statuses.count("posted"),
        skipped=statuses.count("skipped"),
        failed=statuses.count("failed"),
    )


@app.get("/")
def root():
    return {"status": "PR Review Comment Placement running", "git_integration": token_available()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
