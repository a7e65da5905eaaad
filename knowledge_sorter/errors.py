"""Error taxonomy for Knowledge Sorter.

Every error carries the HTTP status code the API layer answers with, so
route handlers can raise component errors directly.
"""


class SorterError(Exception):
    """Base error for all Knowledge Sorter failures."""

    status_code: int = 500

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class ValidationError(SorterError):
    """A required field is missing or a value is out of range."""

    status_code = 400


class NotFoundError(SorterError):
    """Referenced conflict, purge request, record or notification does not exist."""

    status_code = 404


class AlreadyResolvedError(SorterError):
    """The conflict or purge request has already left the pending state."""

    status_code = 409

    def __init__(self, kind: str, status: str):
        self.status = status
        super().__init__(f"{kind} already {status}")


class NotApprovedError(SorterError):
    """Purge execution was requested for a request that is not approved."""

    status_code = 409


class DownstreamError(SorterError):
    """The datastore or a sibling service failed."""

    status_code = 502


__all__ = [
    "SorterError",
    "ValidationError",
    "NotFoundError",
    "AlreadyResolvedError",
    "NotApprovedError",
    "DownstreamError",
]
