"""
BrickLedger - Registry Exceptions

This module defines the error taxonomy shared by the reconciliation layer.
Every error carries a stable ``code`` so API callers can branch on it.
"""

from typing import Any, Dict, List, Optional


class BrickLedgerError(Exception):
    """Base exception for all reconciliation layer errors."""

    code = "ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(BrickLedgerError):
    """Raised when input has the wrong shape or is out of range."""

    code = "VALIDATION_ERROR"


class MissingFieldError(ValidationError):
    """Raised when a required mint field is absent."""

    code = "MISSING_FIELD"

    def __init__(self, fields: List[str]):
        self.fields = list(fields)
        super().__init__(
            f"Missing required fields: {', '.join(self.fields)}",
            {"fields": self.fields},
        )


class DuplicateSpecError(BrickLedgerError):
    """Raised when a brick specification was already minted by another token."""

    code = "DUPLICATE_SPEC"

    def __init__(self, spec_key: str, existing_token_id: str):
        self.spec_key = spec_key
        self.existing_token_id = existing_token_id
        super().__init__(
            f"Brick spec {spec_key} already minted as token {existing_token_id}",
            {"specKey": spec_key, "existingTokenId": existing_token_id},
        )


class NotFoundError(BrickLedgerError):
    """Raised when a lookup misses on every available path."""

    code = "NOT_FOUND"


class TokenNotFoundError(NotFoundError):
    """Raised by chain readers when a token does not exist (burned or never minted)."""

    code = "TOKEN_NOT_FOUND"


class ChainUnavailableError(BrickLedgerError):
    """Raised when a chain RPC call fails for transport reasons."""

    code = "CHAIN_UNAVAILABLE"


class UnauthorizedError(BrickLedgerError):
    """Raised when an admin credential is missing, unconfigured or wrong."""

    code = "UNAUTHORIZED"


class StorageError(BrickLedgerError):
    """Raised when the key-value store fails."""

    code = "STORAGE_ERROR"


class PartialWriteFailure(BrickLedgerError):
    """Raised when a multi-key write sequence stops partway through.

    Completed steps are left in place; ``completed_steps`` tells the caller
    what to expect when it retries.
    """

    code = "PARTIAL_WRITE"

    def __init__(self, plan_name: str, completed_steps: List[str], failed_step: str, cause: Exception):
        self.plan_name = plan_name
        self.completed_steps = list(completed_steps)
        self.failed_step = failed_step
        self.cause = cause
        super().__init__(
            f"{plan_name}: step '{failed_step}' failed after {len(self.completed_steps)} "
            f"completed step(s): {cause}",
            {
                "plan": plan_name,
                "completedSteps": self.completed_steps,
                "failedStep": failed_step,
                "cause": str(cause),
            },
        )
