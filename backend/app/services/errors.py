# Overview: Exception taxonomy shared by the order, ledger and shift services.

"""
POS Error Taxonomy

Every domain failure carries a stable machine-readable ``code`` (e.g.
``TABLE_ALREADY_HAS_OPEN_ORDER``) plus a message and optional details.

- NotFoundError: referenced order/item/account/shift does not exist. Never retried.
- RuleViolation: domain precondition failed. Surfaced verbatim, never retried.
- ConflictError: a unique constraint fired on persist. The caller may retry
  the whole operation.
- ExhaustedError: no order numbers left for the business date. Needs an operator.
- OperationCancelled: the caller's cancellation token was set mid-operation.

All multi-step mutations roll back entirely when any of these is raised.
"""


class PosError(Exception):
    """Base class for settlement-engine errors."""

    code = "POS_ERROR"

    def __init__(self, code: str | None = None, message: str | None = None, details: dict | None = None):
        self.code = code or self.code
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(PosError):
    code = "NOT_FOUND"


class RuleViolation(PosError):
    code = "RULE_VIOLATION"


class ConflictError(PosError):
    code = "CONFLICT"


class ExhaustedError(PosError):
    code = "ORDER_NO_EXHAUSTED"


class OperationCancelled(PosError):
    code = "CANCELLED"
