import logging
from typing import Optional

from models import DiffLine, Hunk, ResolvedLine, Side, UnifiedDiff

logger = logging.getLogger(__name__)


def _first_match(hunk: Hunk, line: int, side: Side) -> Optional[DiffLine]:
    for dl in hunk.lines:
        number = dl.old_line_number if side == Side.LEFT else dl.new_line_number
        if number == line:
            return dl
    return None


def resolve_line(
    diff: UnifiedDiff,
    file: str,
    line: int,
    side_hint: Optional[Side] = None,
) -> Optional[ResolvedLine]:
    """
    Find the diff line a (file, line) suggestion points at.

    `line` may be an old-side or a new-side number. The first hunk, in document
    order, holding a line with that number on either side wins; later hunks are
    never consulted. When that hunk has both an old-side and a new-side match,
    the new side (RIGHT) is chosen unless `side_hint` is LEFT.

    Returns None when the file is not in the diff or no hunk holds the line.
    """
    file_diff = diff.get_file(file)
    if file_diff is None:
        logger.debug("%s is not part of the diff", file)
        return None

    for hunk in file_diff.hunks:
        left = _first_match(hunk, line, Side.LEFT)
        right = _first_match(hunk, line, Side.RIGHT)
        if left is None and right is None:
            continue

        if right is not None and (left is None or side_hint != Side.LEFT):
            side, diff_line = Side.RIGHT, right
        else:
            side, diff_line = Side.LEFT, left

        logger.debug("Resolved %s:%d to %s in hunk %r", file, line, side.value, hunk.header_text)
        return ResolvedLine(file=file, hunk=hunk, diff_line=diff_line, side=side, line=line)

    logger.debug("Line %d of %s is outside every hunk", line, file)
    return None
