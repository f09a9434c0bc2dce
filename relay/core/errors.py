"""
Error types raised at the relay's component boundaries.

Every failure except ResolutionError is scoped to one request and turned into
an HTTP response whose body is the short ``reason`` string.
"""


class RelayError(Exception):
    """Base class for errors surfaced to the relay's clients."""

    status_code = 500

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(RelayError):
    """Malformed channel identifier or missing parameter. No upstream call was made."""

    status_code = 400


class AuthError(RelayError):
    """Authorization service unreachable or returned an unusable credential."""

    status_code = 502


class UpstreamError(RelayError):
    """Manifest or segment fetch failed."""

    status_code = 502


class ResolutionError(Exception):
    """A manifest reference could not be resolved to an absolute URL."""
