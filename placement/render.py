from typing import List, Sequence

from models import LineSuggestion

AGGREGATE_HEADING = "## 🤖 AI Code Review"
AGGREGATE_FOOTER = (
    "*This review was generated automatically by AI. "
    "Please review the suggestions carefully before implementing.*"
)


def merge_comment_bodies(comments: Sequence[str]) -> str:
    """One body for several comments landing on the same anchor."""
    if len(comments) == 1:
        return comments[0]
    return "\n\n---\n\n".join(c.strip() for c in comments)


def render_aggregate_comment(suggestions: Sequence[LineSuggestion]) -> str:
    count = len(suggestions)
    plural = "s" if count != 1 else ""

    entries: List[str] = []
    for i, s in enumerate(suggestions, start=1):
        entries.append(f"**{i}. `{s.file}:{s.line}`**  \n{s.comment.strip()}")

    body_lines = [
        AGGREGATE_HEADING,
        "",
        f"I found **{count}** suggestion{plural} for improvement:",
        "",
        "---",
        "",
        "\n\n---\n\n".join(entries),
        "",
        "---",
        "",
        AGGREGATE_FOOTER,
    ]
    return "\n".join(body_lines)
