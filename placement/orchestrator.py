"""
Places a batch of line suggestions on a pull request.

Every suggestion is resolved against the parsed diff first. If most of them
cannot be anchored the diff probably does not match the PR head, so the batch
is posted as one conversation comment instead. Otherwise each unique
(file, side, line) anchor gets exactly one inline comment carrying every
suggestion that landed on it.
"""

import asyncio
import logging
from functools import partial
from typing import Dict, List, Optional, Sequence, Tuple

from errors import GitHubApiError, InternalConsistencyError
from models import (
    Failed,
    LineSuggestion,
    PlacementResult,
    PlacementState,
    PlacementTarget,
    Posted,
    ResolvedAnchor,
    ResolvedLine,
    Side,
    Skipped,
    UnifiedDiff,
)
from placement.hunk_extractor import build_anchor
from placement.line_resolver import resolve_line
from placement.render import merge_comment_bodies, render_aggregate_comment
from placement.work_queue import KeyedWorkQueue
from utils.config import PLACEMENT_TIMEOUT_SECONDS, PLACEMENT_WORKERS
from utils.github_client import CommentClient

logger = logging.getLogger(__name__)

LINE_NOT_IN_DIFF = "line not in diff"
TIMEOUT = "timeout"

_TRANSITIONS = {
    PlacementState.PENDING: {PlacementState.RESOLVING},
    PlacementState.RESOLVING: {
        PlacementState.ANCHORED,
        PlacementState.SKIPPED_NO_ANCHOR,
        PlacementState.FAILED,
        PlacementState.POSTING,  # aggregate fallback
    },
    PlacementState.ANCHORED: {PlacementState.POSTING, PlacementState.FAILED},
    PlacementState.POSTING: {PlacementState.POSTED, PlacementState.FAILED},
}


class _Slot:
    """Tracks one suggestion through the placement state machine."""

    def __init__(self, suggestion: LineSuggestion):
        self.suggestion = suggestion
        self.state = PlacementState.PENDING
        self.resolved: Optional[ResolvedLine] = None
        self.outcome = None

    def advance(self, state: PlacementState, outcome=None) -> None:
        if state not in _TRANSITIONS.get(self.state, ()):
            raise InternalConsistencyError(
                f"illegal placement transition {self.state.value} -> {state.value}"
            )
        self.state = state
        if outcome is not None:
            self.outcome = outcome

    def result(self) -> PlacementResult:
        return PlacementResult(suggestion=self.suggestion, outcome=self.outcome)


class _AnchorGroup:
    def __init__(self, anchor: ResolvedAnchor):
        self.anchor = anchor
        self.slots: List[_Slot] = []


class PlacementOrchestrator:

    def __init__(
        self,
        client: CommentClient,
        workers: int = PLACEMENT_WORKERS,
        timeout: float = PLACEMENT_TIMEOUT_SECONDS,
    ):
        self.client = client
        self.workers = workers
        self.timeout = timeout

    async def place(
        self,
        diff: Optional[UnifiedDiff],
        suggestions: Sequence[LineSuggestion],
        target: PlacementTarget,
    ) -> List[PlacementResult]:
        """
        Post `suggestions` on the PR described by `target`.

        `diff` is None when no diff could be obtained; the batch then goes out
        as a single aggregate comment. Returns one result per suggestion, in
        input order. Posting failures are recorded per suggestion, never raised.
        """
        slots = [_Slot(s) for s in suggestions]
        if not slots:
            return []

        deadline = asyncio.get_running_loop().time() + self.timeout

        not_found = 0
        for slot in slots:
            slot.advance(PlacementState.RESOLVING)
            s = slot.suggestion
            if diff is not None:
                slot.resolved = resolve_line(diff, s.file, s.line, s.side)
            if slot.resolved is None:
                not_found += 1

        if not_found * 2 > len(slots):
            logger.warning(
                "%d of %d suggestions for %s/%s#%d are outside the diff, posting one aggregate comment",
                not_found, len(slots), target.owner, target.repo, target.pr_number,
            )
            await self._place_aggregate(slots, target, deadline)
        else:
            await self._place_inline(slots, target, deadline)

        return [slot.result() for slot in slots]

    def _group_by_anchor(self, slots: List[_Slot]) -> List[_AnchorGroup]:
        groups: Dict[Tuple[str, Side, int], _AnchorGroup] = {}
        for slot in slots:
            s = slot.suggestion
            if slot.resolved is None:
                slot.advance(PlacementState.SKIPPED_NO_ANCHOR, Skipped(reason=LINE_NOT_IN_DIFF))
                continue
            try:
                anchor = build_anchor(slot.resolved)
            except InternalConsistencyError as e:
                logger.error("Cannot anchor %s:%d: %s", s.file, s.line, e)
                slot.advance(PlacementState.FAILED, Failed(error=str(e)))
                continue

            slot.advance(PlacementState.ANCHORED)
            key = (anchor.file, anchor.side, anchor.line)
            group = groups.get(key)
            if group is None:
                group = groups[key] = _AnchorGroup(anchor)
            group.slots.append(slot)
        return list(groups.values())

    async def _place_inline(self, slots: List[_Slot], target: PlacementTarget, deadline: float) -> None:
        groups = self._group_by_anchor(slots)
        merged = sum(len(g.slots) - 1 for g in groups)
        if merged:
            logger.info("Merged %d suggestions into already used anchors", merged)

        queue = KeyedWorkQueue(self.workers, partial(self._post_group, target=target, deadline=deadline))
        for group in groups:
            # same (file, line) -> same worker, so posts to one spot never race
            queue.submit((group.anchor.file, group.anchor.line), group)
        await queue.run()

    async def _post_group(self, group: _AnchorGroup, target: PlacementTarget, deadline: float) -> None:
        anchor = group.anchor
        if asyncio.get_running_loop().time() >= deadline:
            logger.warning("Deadline passed before posting %s:%d", anchor.file, anchor.line)
            for slot in group.slots:
                slot.advance(PlacementState.FAILED, Failed(error=TIMEOUT))
            return

        for slot in group.slots:
            slot.advance(PlacementState.POSTING)
        body = merge_comment_bodies([slot.suggestion.comment for slot in group.slots])

        try:
            url = await self.client.post_inline(target, anchor, body, deadline=deadline)
        except GitHubApiError as e:
            logger.warning("Inline comment on %s:%d failed: %s", anchor.file, anchor.line, e)
            state, outcome = PlacementState.FAILED, Failed(error=str(e), http_status=e.status, retryable=e.retryable)
        except Exception as e:
            logger.exception("Unexpected error posting on %s:%d", anchor.file, anchor.line)
            state, outcome = PlacementState.FAILED, Failed(error=str(e))
        else:
            state, outcome = PlacementState.POSTED, Posted(url=url)

        for slot in group.slots:
            slot.advance(state, outcome)

    async def _place_aggregate(self, slots: List[_Slot], target: PlacementTarget, deadline: float) -> None:
        if asyncio.get_running_loop().time() >= deadline:
            for slot in slots:
                slot.advance(PlacementState.FAILED, Failed(error=TIMEOUT))
            return

        for slot in slots:
            slot.advance(PlacementState.POSTING)
        body = render_aggregate_comment([slot.suggestion for slot in slots])

        try:
            url = await self.client.post_aggregate(target, body, deadline=deadline)
        except GitHubApiError as e:
            logger.error("Aggregate comment on %s/%s#%d failed: %s", target.owner, target.repo, target.pr_number, e)
            state, outcome = PlacementState.FAILED, Failed(error=str(e), http_status=e.status, retryable=e.retryable)
        except Exception as e:
            logger.exception("Unexpected error posting aggregate comment")
            state, outcome = PlacementState.FAILED, Failed(error=str(e))
        else:
            state, outcome = PlacementState.POSTED, Posted(url=url, aggregated=True)

        for slot in slots:
            slot.advance(state, outcome)
