from enum import Enum
from typing import List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LineKind(str, Enum):
    CONTEXT = "context"
    ADDED = "added"
    REMOVED = "removed"


class Side(str, Enum):
    LEFT = "LEFT"
    RIGHT = "RIGHT"


# ---------------------------------------------------------------------------
# Parsed diff model (immutable once built)
# ---------------------------------------------------------------------------

class DiffLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: LineKind
    raw_text: str
    old_line_number: Optional[int] = None
    new_line_number: Optional[int] = None


class HunkHeader(BaseModel):
    model_config = ConfigDict(frozen=True)

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    section: str = ""


class Hunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    header: HunkHeader
    header_text: str
    lines: Tuple[DiffLine, ...] = ()
    # verbatim body, including "\ No newline at end of file" markers
    raw_lines: Tuple[str, ...] = ()

    def replay_end(self) -> Tuple[int, int]:
        """Replay the body and return the (old, new) counters it ends on."""
        old = self.header.old_start
        new = self.header.new_start
        for line in self.lines:
            if line.kind != LineKind.ADDED:
                old += 1
            if line.kind != LineKind.REMOVED:
                new += 1
        return old, new

    def is_consistent(self) -> bool:
        h = self.header
        return self.replay_end() == (h.old_start + h.old_count, h.new_start + h.new_count)


class FileDiff(BaseModel):
    model_config = ConfigDict(frozen=True)

    new_path: str
    old_path: str
    hunks: Tuple[Hunk, ...] = ()
    is_new_file: bool = False
    is_deleted_file: bool = False


class UnifiedDiff(BaseModel):
    model_config = ConfigDict(frozen=True)

    files: Tuple[FileDiff, ...] = ()

    def get_file(self, path: str) -> Optional[FileDiff]:
        for f in self.files:
            if f.new_path == path:
                return f
        return None


# ---------------------------------------------------------------------------
# Suggestions in, anchors and results out
# ---------------------------------------------------------------------------

class LineSuggestion(BaseModel):
    file: str
    line: int
    side: Optional[Side] = None
    comment: str

    @field_validator("side", mode="before")
    @classmethod
    def _upper_side(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v


class ResolvedLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    file: str
    hunk: Hunk
    diff_line: DiffLine
    side: Side
    line: int


class ResolvedAnchor(BaseModel):
    model_config = ConfigDict(frozen=True)

    file: str
    hunk: Hunk
    side: Side
    line: int
    hunk_text: str


class PlacementTarget(BaseModel):
    owner: str
    repo: str
    pr_number: int
    commit_sha: str


class Posted(BaseModel):
    status: Literal["posted"] = "posted"
    url: Optional[str] = None
    aggregated: bool = False


class Skipped(BaseModel):
    status: Literal["skipped"] = "skipped"
    reason: str


class Failed(BaseModel):
    status: Literal["failed"] = "failed"
    error: str
    http_status: Optional[int] = None
    retryable: bool = False


Outcome = Union[Posted, Skipped, Failed]


class PlacementResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    suggestion: LineSuggestion
    outcome: Outcome = Field(discriminator="status")


class PlacementState(str, Enum):
    PENDING = "pending"
    RESOLVING = "resolving"
    ANCHORED = "anchored"
    POSTING = "posting"
    POSTED = "posted"
    FAILED = "failed"
    SKIPPED_NO_ANCHOR = "skipped_no_anchor"


class PlacementResponse(BaseModel):
    results: List[PlacementResult]
    posted: int
    skipped: int
    failed: int
