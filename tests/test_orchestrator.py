import asyncio
import logging

import pytest

import placement.orchestrator as orchestrator_mod
from conftest import FakeCommentClient
from diff_parser import parse_unified_diff
from errors import GitHubApiError, InternalConsistencyError
from models import LineSuggestion, PlacementState, PlacementTarget, Side
from placement.orchestrator import LINE_NOT_IN_DIFF, TIMEOUT, PlacementOrchestrator, _Slot

TARGET = PlacementTarget(owner="octo", repo="widgets", pr_number=7, commit_sha="deadbeef")


def _place(client, diff, suggestions, **kwargs):
    orchestrator = PlacementOrchestrator(client, **kwargs)
    return asyncio.run(orchestrator.place(diff, suggestions, TARGET))


@pytest.fixture
def multi_diff(multi_diff_text):
    return parse_unified_diff(multi_diff_text)


def test_scenario_posts_one_inline_comment(scenario_diff_text, fake_client) -> None:
    diff = parse_unified_diff(scenario_diff_text)
    results = _place(fake_client, diff, [LineSuggestion(file="a.ts", line=12, comment="x")])

    assert len(results) == 1
    assert results[0].outcome.status == "posted"
    assert results[0].outcome.aggregated is False
    target, anchor, body = fake_client.inline[0]
    assert (anchor.file, anchor.side, anchor.line) == ("a.ts", Side.RIGHT, 12)
    assert anchor.hunk_text == "@@ -10,3 +10,4 @@\n context\n-old\n+new1\n+new2"
    assert body == "x"
    assert fake_client.aggregate == []


def test_missing_file_is_skipped_and_batch_proceeds(multi_diff, fake_client) -> None:
    suggestions = [
        LineSuggestion(file="src/app.py", line=2, comment="unused import"),
        LineSuggestion(file="ghost.py", line=1, comment="?"),
        LineSuggestion(file="README.md", line=1, comment="title case"),
    ]
    results = _place(fake_client, multi_diff, suggestions)

    assert [r.outcome.status for r in results] == ["posted", "skipped", "posted"]
    assert results[1].outcome.reason == LINE_NOT_IN_DIFF
    assert len(fake_client.inline) == 2
    assert fake_client.aggregate == []


def test_results_keep_input_order(multi_diff, fake_client) -> None:
    suggestions = [
        LineSuggestion(file="src/app.py", line=n, comment=f"c{n}") for n in (23, 1, 5, 2, 22)
    ]
    results = _place(fake_client, multi_diff, suggestions, workers=3)

    assert [r.suggestion for r in results] == suggestions


def test_same_anchor_is_posted_once_with_merged_body(multi_diff, fake_client) -> None:
    suggestions = [
        LineSuggestion(file="src/app.py", line=23, comment="name c better"),
        LineSuggestion(file="README.md", line=2, comment="typo"),
        LineSuggestion(file="src/app.py", line=23, side="right", comment="c is unused"),
    ]
    results = _place(fake_client, multi_diff, suggestions)

    anchors = [(a.file, a.side, a.line) for _, a, _ in fake_client.inline]
    assert len(anchors) == len(set(anchors)) == 2
    merged = [body for _, a, body in fake_client.inline if a.file == "src/app.py"][0]
    assert merged.index("name c better") < merged.index("c is unused")
    assert results[0].outcome == results[2].outcome
    assert results[0].outcome.status == "posted"


def test_same_line_on_both_sides_gets_two_comments(multi_diff, fake_client) -> None:
    suggestions = [
        LineSuggestion(file="src/app.py", line=4, comment="new def"),
        LineSuggestion(file="src/app.py", line=4, side="LEFT", comment="removed print"),
    ]
    _place(fake_client, multi_diff, suggestions)

    sides = sorted(a.side.value for _, a, _ in fake_client.inline)
    assert sides == ["LEFT", "RIGHT"]


def test_majority_not_found_falls_back_to_one_aggregate(multi_diff, fake_client) -> None:
    suggestions = [
        LineSuggestion(file="src/app.py", line=2, comment="resolvable"),
        LineSuggestion(file="src/app.py", line=400, comment="stale"),
        LineSuggestion(file="gone.py", line=3, comment="stale too"),
    ]
    results = _place(fake_client, multi_diff, suggestions)

    assert fake_client.inline == []
    assert len(fake_client.aggregate) == 1
    body = fake_client.aggregate[0][1]
    for s in suggestions:
        assert f"`{s.file}:{s.line}`" in body
    assert all(r.outcome.status == "posted" and r.outcome.aggregated for r in results)
    assert len(results) == 3


def test_exactly_half_not_found_stays_inline(multi_diff, fake_client) -> None:
    suggestions = [
        LineSuggestion(file="src/app.py", line=2, comment="a"),
        LineSuggestion(file="src/app.py", line=23, comment="b"),
        LineSuggestion(file="gone.py", line=3, comment="c"),
        LineSuggestion(file="gone.py", line=4, comment="d"),
    ]
    results = _place(fake_client, multi_diff, suggestions)

    assert fake_client.aggregate == []
    assert [r.outcome.status for r in results] == ["posted", "posted", "skipped", "skipped"]


def test_unavailable_diff_posts_aggregate(fake_client) -> None:
    suggestions = [LineSuggestion(file="a.py", line=1, comment="x")]
    results = _place(fake_client, None, suggestions)

    assert len(fake_client.aggregate) == 1
    assert results[0].outcome.aggregated is True


def test_failed_aggregate_marks_every_suggestion_failed() -> None:
    client = FakeCommentClient(aggregate_error=GitHubApiError("GitHub returned 404", status=404))
    suggestions = [LineSuggestion(file="a.py", line=1, comment="x"), LineSuggestion(file="b.py", line=1, comment="y")]
    results = _place(client, None, suggestions)

    assert [r.outcome.status for r in results] == ["failed", "failed"]
    assert results[0].outcome.http_status == 404


def test_stale_commit_422_fails_only_that_anchor(multi_diff) -> None:
    client = FakeCommentClient(
        inline_errors={("src/app.py", 23): GitHubApiError("GitHub returned 422: stale commit", status=422)}
    )
    suggestions = [
        LineSuggestion(file="src/app.py", line=23, comment="a"),
        LineSuggestion(file="src/app.py", line=2, comment="b"),
        LineSuggestion(file="README.md", line=1, comment="c"),
    ]
    results = _place(client, multi_diff, suggestions)

    failed = results[0].outcome
    assert failed.status == "failed"
    assert failed.http_status == 422
    assert failed.retryable is False
    assert [r.outcome.status for r in results[1:]] == ["posted", "posted"]
    assert len(client.inline) == 3


def test_unexpected_client_error_is_recorded(multi_diff) -> None:
    client = FakeCommentClient(inline_errors={("README.md", 1): ValueError("bad json")})
    results = _place(client, multi_diff, [LineSuggestion(file="README.md", line=1, comment="c")])

    assert results[0].outcome.status == "failed"
    assert "bad json" in results[0].outcome.error


def test_internal_consistency_error_fails_one_suggestion(multi_diff, fake_client, monkeypatch, caplog) -> None:
    real_build_anchor = orchestrator_mod.build_anchor

    def flaky_build_anchor(resolved):
        if resolved.file == "README.md":
            raise InternalConsistencyError("hunk has no body lines")
        return real_build_anchor(resolved)

    monkeypatch.setattr(orchestrator_mod, "build_anchor", flaky_build_anchor)
    suggestions = [
        LineSuggestion(file="README.md", line=1, comment="c"),
        LineSuggestion(file="src/app.py", line=2, comment="b"),
    ]
    with caplog.at_level(logging.ERROR, logger="placement.orchestrator"):
        results = _place(fake_client, multi_diff, suggestions)

    assert results[0].outcome.status == "failed"
    assert "no body lines" in results[0].outcome.error
    assert results[1].outcome.status == "posted"
    assert "Cannot anchor README.md:1" in caplog.text


def test_timeout_before_posting_fails_remaining(multi_diff, fake_client) -> None:
    suggestions = [
        LineSuggestion(file="src/app.py", line=2, comment="a"),
        LineSuggestion(file="ghost.py", line=2, comment="b"),
    ]
    results = _place(fake_client, multi_diff, suggestions, timeout=0)

    assert fake_client.inline == []
    assert results[0].outcome.status == "failed"
    assert results[0].outcome.error == TIMEOUT
    assert results[1].outcome.status == "skipped"


def test_timeout_mid_batch_keeps_finished_posts() -> None:
    diff = parse_unified_diff(
        "diff --git a/f.py b/f.py\n@@ -1,2 +1,3 @@\n a\n+b\n c\n"
    )
    client = FakeCommentClient(delay=0.2)
    suggestions = [
        LineSuggestion(file="f.py", line=1, comment="first"),
        LineSuggestion(file="f.py", line=2, comment="second"),
    ]
    results = _place(client, diff, suggestions, workers=1, timeout=0.05)

    # the in-flight post completes, nothing new starts after the deadline
    assert len(client.inline) == 1
    assert results[0].outcome.status == "posted"
    assert results[1].outcome.status == "failed"
    assert results[1].outcome.error == TIMEOUT


def test_empty_batch_posts_nothing(multi_diff, fake_client) -> None:
    assert _place(fake_client, multi_diff, []) == []
    assert fake_client.inline == [] and fake_client.aggregate == []


def test_slot_rejects_illegal_transitions() -> None:
    slot = _Slot(LineSuggestion(file="a.py", line=1, comment="x"))
    slot.advance(PlacementState.RESOLVING)
    slot.advance(PlacementState.SKIPPED_NO_ANCHOR)

    with pytest.raises(InternalConsistencyError):
        slot.advance(PlacementState.PENDING)
    with pytest.raises(InternalConsistencyError):
        _Slot(LineSuggestion(file="a.py", line=1, comment="x")).advance(PlacementState.POSTING)
