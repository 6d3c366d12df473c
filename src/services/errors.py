"""Error taxonomy for restock notification requests.

Each error carries the HTTP status the API layer answers with:

- ValidationError -> 400 (missing required request fields)
- NotFoundError   -> 404 (product or customer absent)
- UpstreamError   -> 500 (Shopify call failed; details passed through verbatim)
"""
from typing import Any, Optional


class RestockError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RestockError):
    status_code = 400


class NotFoundError(RestockError):
    status_code = 404


class UpstreamError(RestockError):
    """A Shopify Admin API call failed.

    Args:
        message: Short description of the failed operation
        details: Shopify's ``errors`` payload when the response carried one,
            otherwise the transport error message
        upstream_status: HTTP status returned by Shopify, if any
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        details: Optional[Any] = None,
        upstream_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.details = details if details is not None else message
        self.upstream_status = upstream_status
