from typing import Optional


class MalformedDiffError(ValueError):
    """The diff text has no `diff --git` section, so nothing can be resolved."""


class InternalConsistencyError(RuntimeError):
    """A parsed structure broke one of its own invariants."""


class GitHubApiError(Exception):
    """
    A GitHub REST call failed.

    `status` is the HTTP status code, or None for network failures.
    `retryable` tells whether the call may succeed if repeated as-is.
    """

    def __init__(self, message: str, status: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.status = status
        self.retryable = retryable
