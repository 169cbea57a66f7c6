# Overview: Error taxonomy shared by the ledger services and the HTTP layer.

from __future__ import annotations


class LedgerError(Exception):
    """Base for every error the ledger services raise on purpose."""

    status_code = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "details": self.details}
        if self.retryable:
            body["retryable"] = True
        return body


class ValidationError(LedgerError):
    """400-level input problem, rejected before any write."""


class NotFound(LedgerError):
    """Missing account, item, movement or receipt."""

    status_code = 404


class InsufficientStock(LedgerError):
    """
    Applying the requested deltas would drive at least one item negative.

    details["items"] lists every offending item with on_hand, requested and
    shortfall.
    """

    status_code = 409

    def __init__(self, items: list[dict]):
        names = ", ".join(str(i["item_id"]) for i in items)
        super().__init__(f"Insufficient stock for: {names}", details={"items": items})
        self.items = items


class InvalidStateTransition(LedgerError):
    """A lifecycle transition that the state machine does not allow."""

    status_code = 409


class AccountDisabled(LedgerError):
    """The account is disabled and takes no new movements."""

    status_code = 409


class CommitConflict(LedgerError):
    """The atomic commit lost a race on every attempt. Safe to re-invoke."""

    status_code = 503
    retryable = True


class RecalculationDrift(LedgerError):
    """Recalculated values did not read back equal. Indicates a bug."""

    status_code = 500
