"""
Domain exceptions for the search core.

Services raise these; routes and the global handler in main.py map them to
HTTP errors using the standard {"error": ..., "details": ...} body.

Propagation policy:
- Single-record operations (upsert, status update) let them propagate
- Batch operations (repair, worker runs) catch them per record and return
  the outcome as data
"""

from typing import Any, Dict, Optional


class SearchCoreError(Exception):
    """Base class for all search core errors."""

    error_code = "search_core_error"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(SearchCoreError):
    """Empty content, missing vector or otherwise malformed write."""

    error_code = "validation_error"
    http_status = 400


class NotFoundError(SearchCoreError):
    """A referenced source row or queue task does not exist."""

    error_code = "not_found"
    http_status = 404


class TransientWorkerError(SearchCoreError):
    """Retryable failure while processing a single queue task or record."""

    error_code = "worker_error"
    http_status = 503


class AuthorizationError(SearchCoreError):
    """Caller lacks the role required for an operator function."""

    error_code = "forbidden"
    http_status = 403
