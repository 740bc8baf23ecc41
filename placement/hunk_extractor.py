from errors import InternalConsistencyError
from models import ResolvedAnchor, ResolvedLine


def extract_hunk_text(resolved: ResolvedLine) -> str:
    """
    Return the hunk holding `resolved` exactly as it appeared in the diff:
    the `@@ ... @@` header line through the last body line, no trailing newline.
    """
    hunk = resolved.hunk
    if not hunk.raw_lines:
        raise InternalConsistencyError(
            f"hunk {hunk.header_text!r} in {resolved.file} has no body lines"
        )
    return "\n".join((hunk.header_text,) + hunk.raw_lines)


def build_anchor(resolved: ResolvedLine) -> ResolvedAnchor:
    return ResolvedAnchor(
        file=resolved.file,
        hunk=resolved.hunk,
        side=resolved.side,
        line=resolved.line,
        hunk_text=extract_hunk_text(resolved),
    )
