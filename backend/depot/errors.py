# Overview: Typed domain errors shared by every service and mapped to HTTP by the routes.

"""
Error kinds

- Client errors (never retried automatically): InvalidTransition, NotFound,
  ValidationError, SameAccount.
- Double-processing guards: AlreadyLoaded, AlreadyClaimed.
- Business errors surfaced verbatim to the operator: InsufficientStock,
  InsufficientFunds.

Batch operations attach the offending line (0-based index into the request)
so the caller can correct and resubmit; the batch itself is still rejected.
"""

from __future__ import annotations


class DepotError(Exception):
    """Base class for domain errors. Carries the HTTP status used by the routes."""

    status_code = 400
    code = "DEPOT_ERROR"

    def __init__(self, message: str, *, entity_id=None, line: int | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.entity_id = entity_id
        self.line = line
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.entity_id is not None:
            payload["entity_id"] = self.entity_id
        if self.line is not None:
            payload["line"] = self.line
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(DepotError, ValueError):
    """400-level input problem (malformed batch, empty selection)."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFound(DepotError, LookupError):
    status_code = 404
    code = "NOT_FOUND"


class InvalidTransition(DepotError):
    """Attempted state change is not legal from the current state."""

    status_code = 409
    code = "INVALID_TRANSITION"


class AlreadyLoaded(DepotError):
    status_code = 409
    code = "ALREADY_LOADED"


class AlreadyClaimed(DepotError):
    status_code = 409
    code = "ALREADY_CLAIMED"


class InsufficientStock(DepotError):
    status_code = 422
    code = "INSUFFICIENT_STOCK"


class InsufficientFunds(DepotError):
    status_code = 422
    code = "INSUFFICIENT_FUNDS"


class SameAccount(DepotError):
    status_code = 400
    code = "SAME_ACCOUNT"
