"""
Launchpad Errors

Structured error hierarchy shared by every launchpad component.

Every error carries:
1. A stable machine-readable code
2. A human-readable message
3. A details dictionary for API payloads and logs
"""

import logging
import os
from typing import Dict, Any, List, Optional

logger = logging.getLogger("launchpad_errors")

# Invariant violations raise in strict mode (development) and are logged and
# repaired otherwise (production).
STRICT_INVARIANTS = os.getenv("LAUNCHPAD_STRICT_INVARIANTS", "true").lower() in ("1", "true", "yes")


class LaunchpadError(Exception):
    """Base launchpad error with structured details."""
    def __init__(self, code: str, message: str, details: Dict[str, Any] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class UnknownProjectError(LaunchpadError):
    def __init__(self, project_id: str, phase: Optional[str] = None):
        message = f"Project '{project_id}' not found"
        if phase:
            message = f"Project '{project_id}' not found in {phase}"
        super().__init__(
            code="UNKNOWN_PROJECT",
            message=message,
            details={"project_id": project_id, "phase": phase}
        )


class ValidationError(LaunchpadError):
    def __init__(self, errors: List[str]):
        super().__init__(
            code="VALIDATION_FAILED",
            message="Validation failed: " + "; ".join(errors),
            details={"errors": errors}
        )


class InsufficientAllowanceError(LaunchpadError):
    def __init__(self, wallet: str, requested: int, remaining: int):
        super().__init__(
            code="INSUFFICIENT_ALLOWANCE",
            message=f"Requested {requested} votes but only {remaining} remaining until the next rotation",
            details={"wallet": wallet, "requested": requested, "remaining": remaining}
        )


class InsufficientBalanceError(LaunchpadError):
    def __init__(self, wallet: str, balance: int, required: int):
        super().__init__(
            code="INSUFFICIENT_BALANCE",
            message=f"Wallet holds {balance} tokens, {required} required",
            details={"wallet": wallet, "balance": balance, "required": required}
        )


class PresaleUnavailableError(LaunchpadError):
    def __init__(self, reason: str):
        super().__init__(
            code="PRESALE_UNAVAILABLE",
            message=reason,
            details={}
        )


class InvariantViolationError(LaunchpadError):
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            code="INVARIANT_VIOLATION",
            message=message,
            details=details or {}
        )


class PersistenceError(LaunchpadError):
    def __init__(self, target: str, error: Exception):
        super().__init__(
            code="SAVE_FAILED",
            message=f"Failed to save {target}",
            details={"error": str(error)}
        )


def report_invariant_violation(
    message: str,
    details: Dict[str, Any] = None,
    strict: Optional[bool] = None,
) -> None:
    """
    Raise or log an invariant violation.

    In strict mode the violation is fatal. Otherwise it is logged and the
    caller is expected to repair the state.
    """
    if strict is None:
        strict = STRICT_INVARIANTS
    if strict:
        raise InvariantViolationError(message, details)
    logger.error(f"Invariant violation (repairing): {message} {details or {}}")
