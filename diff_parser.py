"""
Unified diff parsing.

Turns `git diff` text into an immutable UnifiedDiff: files, hunks and the
old/new line numbers of every body line. Hunk bodies are kept verbatim so the
exact hunk text can be handed back to GitHub as `diff_hunk`.
"""

import logging
import re
from itertools import accumulate
from typing import List, Optional, Sequence, Tuple

from unidiff.constants import (
    DEV_NULL,
    LINE_TYPE_ADDED,
    LINE_TYPE_CONTEXT,
    LINE_TYPE_NO_NEWLINE,
    LINE_TYPE_REMOVED,
    RE_HUNK_HEADER,
)

from errors import MalformedDiffError
from models import DiffLine, FileDiff, Hunk, HunkHeader, LineKind, UnifiedDiff

logger = logging.getLogger(__name__)

DIFF_GIT_PREFIX = "diff --git"

_DIFF_GIT_RE = re.compile(r"^diff --git a/(?P<old>.+?) b/(?P<new>.+?)\r?$")

_KIND_BY_PREFIX = {
    LINE_TYPE_CONTEXT: LineKind.CONTEXT,
    LINE_TYPE_ADDED: LineKind.ADDED,
    LINE_TYPE_REMOVED: LineKind.REMOVED,
}


def _fold_side(start: int, consumes: Sequence[bool]) -> List[Optional[int]]:
    """Number one side of a hunk: a line gets `start + lines consumed before it`."""
    return [
        number if consumed else None
        for consumed, number in zip(consumes, accumulate(consumes, initial=start))
    ]


def number_lines(header: HunkHeader, body: Sequence[Tuple[LineKind, str]]) -> Tuple[DiffLine, ...]:
    kinds = [kind for kind, _ in body]
    olds = _fold_side(header.old_start, [k != LineKind.ADDED for k in kinds])
    news = _fold_side(header.new_start, [k != LineKind.REMOVED for k in kinds])
    return tuple(
        DiffLine(kind=kind, raw_text=text, old_line_number=old, new_line_number=new)
        for (kind, text), old, new in zip(body, olds, news)
    )


def parse_hunk_header(line: str) -> Optional[HunkHeader]:
    m = RE_HUNK_HEADER.match(line)
    if not m:
        return None
    old_start, old_count, new_start, new_count, section = m.groups()
    return HunkHeader(
        old_start=int(old_start),
        old_count=int(old_count) if old_count is not None else 1,
        new_start=int(new_start),
        new_count=int(new_count) if new_count is not None else 1,
        section=(section or "").rstrip("\r"),
    )


def _header_path(line: str) -> str:
    # "--- a/path\t2024-01-01 ..." -> "a/path"
    return line[4:].split("\t", 1)[0].rstrip("\r")


class _HunkBuilder:
    def __init__(self, header: HunkHeader, header_text: str):
        self.header = header
        self.header_text = header_text
        self.body: List[Tuple[LineKind, str]] = []
        self.raw_lines: List[str] = []
        self.old_seen = 0
        self.new_seen = 0

    def _has_room_for(self, kind: LineKind) -> bool:
        old_left = self.old_seen < self.header.old_count
        new_left = self.new_seen < self.header.new_count
        if kind == LineKind.ADDED:
            return new_left
        if kind == LineKind.REMOVED:
            return old_left
        return old_left and new_left

    def accept(self, raw: str) -> bool:
        """
        Take `raw` as a body line if it belongs to this hunk.

        A hunk never grows past the counts in its header: once a side is used
        up, lines that would consume it close the hunk. Only a trailing
        no-newline marker is still taken.
        """
        prefix = raw[:1]
        if prefix == LINE_TYPE_NO_NEWLINE and self.raw_lines:
            self.raw_lines.append(raw)
            return True
        kind = _KIND_BY_PREFIX.get(prefix)
        if kind is None and raw.rstrip("\r") == "":
            # context line whose leading space was stripped in transit
            kind = LineKind.CONTEXT
        if kind is None or not self._has_room_for(kind):
            return False
        self.body.append((kind, raw))
        self.raw_lines.append(raw)
        if kind != LineKind.ADDED:
            self.old_seen += 1
        if kind != LineKind.REMOVED:
            self.new_seen += 1
        return True

    def build(self) -> Hunk:
        hunk = Hunk(
            header=self.header,
            header_text=self.header_text,
            lines=number_lines(self.header, self.body),
            raw_lines=tuple(self.raw_lines),
        )
        if not hunk.is_consistent():
            logger.warning(
                "Hunk %r replays to %s, header declares old=%d+%d new=%d+%d",
                self.header_text, hunk.replay_end(),
                self.header.old_start, self.header.old_count,
                self.header.new_start, self.header.new_count,
            )
        return hunk


class _FileBuilder:
    def __init__(self, git_header: str):
        m = _DIFF_GIT_RE.match(git_header)
        self.old_path = m.group("old") if m else ""
        self.new_path = m.group("new") if m else ""
        self.is_new_file = False
        self.is_deleted_file = False
        self.hunks: List[Hunk] = []

    def set_old_path(self, path: str) -> None:
        if path == DEV_NULL:
            self.is_new_file = True
        else:
            self.old_path = path[2:] if path.startswith("a/") else path

    def set_new_path(self, path: str) -> None:
        if path == DEV_NULL:
            self.is_deleted_file = True
        else:
            self.new_path = path[2:] if path.startswith("b/") else path

    def build(self) -> FileDiff:
        return FileDiff(
            new_path=self.new_path,
            old_path=self.old_path,
            hunks=tuple(self.hunks),
            is_new_file=self.is_new_file,
            is_deleted_file=self.is_deleted_file,
        )


def parse_unified_diff(diff_text: str) -> UnifiedDiff:
    """
    Parse `git diff` output into a UnifiedDiff.

    Raises MalformedDiffError only when the text holds no `diff --git` section.
    Unrecognizable hunk headers are logged and their bodies skipped. Files that
    end up without hunks (binary, mode-only, pure renames) are left out.
    """
    lines = (diff_text or "").split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    if not any(line.startswith(DIFF_GIT_PREFIX) for line in lines):
        raise MalformedDiffError("diff text contains no 'diff --git' section")

    files: List[FileDiff] = []
    current_file: Optional[_FileBuilder] = None
    current_hunk: Optional[_HunkBuilder] = None
    skipping_hunk = False

    def close_hunk():
        nonlocal current_hunk
        if current_hunk is not None and current_file is not None:
            current_file.hunks.append(current_hunk.build())
        current_hunk = None

    def close_file():
        nonlocal current_file
        close_hunk()
        if current_file is not None and current_file.hunks:
            files.append(current_file.build())
        current_file = None

    for raw in lines:
        if raw.startswith(DIFF_GIT_PREFIX):
            close_file()
            current_file = _FileBuilder(raw)
            skipping_hunk = False
            continue

        if current_file is None:
            continue

        if current_hunk is not None:
            if current_hunk.accept(raw):
                continue
            close_hunk()

        if raw.startswith("@@"):
            header = parse_hunk_header(raw)
            if header is None:
                logger.warning("Skipping unrecognized hunk header in %s: %r", current_file.new_path, raw)
                skipping_hunk = True
                continue
            current_hunk = _HunkBuilder(header, raw)
            skipping_hunk = False
            continue

        if skipping_hunk:
            continue

        if not current_file.hunks:
            if raw.startswith("--- "):
                current_file.set_old_path(_header_path(raw))
            elif raw.startswith("+++ "):
                current_file.set_new_path(_header_path(raw))

    close_file()

    logger.debug(
        "Parsed %d files, %d hunks",
        len(files), sum(len(f.hunks) for f in files),
    )
    return UnifiedDiff(files=tuple(files))
