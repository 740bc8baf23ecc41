"""Shared diffs and a recording stand-in for CommentClient."""
import asyncio

import pytest

SCENARIO_DIFF = "\n".join(
    [
        "diff --git a/a.ts b/a.ts",
        "index 1111111..2222222 100644",
        "--- a/a.ts",
        "+++ b/a.ts",
        "@@ -10,3 +10,4 @@",
        " context",
        "-old",
        "+new1",
        "+new2",
    ]
) + "\n"

MULTI_DIFF = "\n".join(
    [
        "diff --git a/src/app.py b/src/app.py",
        "index 3b18e51..a9c4f2d 100644",
        "--- a/src/app.py",
        "+++ b/src/app.py",
        "@@ -1,4 +1,5 @@",
        " import os",
        "+import sys",
        " ",
        " def main():",
        '-    print("hi")',
        '+    print("hello")',
        "@@ -20,3 +21,4 @@ def helper():",
        "     a = 1",
        "     b = 2",
        "+    c = 3",
        "     return a",
        "diff --git a/README.md b/README.md",
        "new file mode 100644",
        "index 0000000..e69de29",
        "--- /dev/null",
        "+++ b/README.md",
        "@@ -0,0 +1,2 @@",
        "+# Title",
        "+text",
        "diff --git a/old.txt b/old.txt",
        "deleted file mode 100644",
        "index e69de29..0000000",
        "--- a/old.txt",
        "+++ /dev/null",
        "@@ -1 +0,0 @@",
        "-bye",
    ]
) + "\n"


@pytest.fixture
def scenario_diff_text():
    return SCENARIO_DIFF


@pytest.fixture
def multi_diff_text():
    return MULTI_DIFF


class FakeCommentClient:
    """Records every post; raises the configured error for a (file, line) anchor."""

    def __init__(self, inline_errors=None, aggregate_error=None, delay=0.0):
        self.inline_errors = inline_errors or {}
        self.aggregate_error = aggregate_error
        self.delay = delay
        self.inline = []
        self.aggregate = []

    async def post_inline(self, target, anchor, body, deadline=None):
        self.inline.append((target, anchor, body))
        if self.delay:
            await asyncio.sleep(self.delay)
        error = self.inline_errors.get((anchor.file, anchor.line))
        if error is not None:
            raise error
        return f"https://github.com/{target.owner}/{target.repo}/pull/{target.pr_number}#discussion_r{len(self.inline)}"

    async def post_aggregate(self, target, body, deadline=None):
        self.aggregate.append((target, body))
        if self.aggregate_error is not None:
            raise self.aggregate_error
        return f"https://github.com/{target.owner}/{target.repo}/pull/{target.pr_number}#issuecomment-1"


@pytest.fixture
def fake_client():
    return FakeCommentClient()
