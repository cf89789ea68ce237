"""Error Hierarchy — typed, categorized exceptions for all ledger failure modes.

Invariants:
    - Every error has a code (str), category (ErrorCategory), severity (ErrorSeverity)
    - Domain errors (4xx) are recoverable by the caller; infrastructure errors (5xx) are critical
    - to_response() produces the REST envelope used by api/error_handlers.py
    - No internal details leaked in user-facing messages

Design Decisions:
    - Single hierarchy with LedgerError base: one FastAPI handler catches all
    - ErrorContext as dataclass: ledger identifiers travel with the error into logs
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from datetime import datetime, timezone


class ErrorSeverity(str, Enum):
    """Error severity for observability and client handling."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """High-level error categories for routing and handling."""
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    AUTHENTICATION = "authentication"
    DATABASE = "database"
    INTERNAL = "internal"
    CONFLICT = "conflict"


@dataclass
class ErrorContext:
    """Ledger identifiers attached to an error for debugging."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    property_id: str | None = None
    reservation_id: str | None = None
    payment_ref: str | None = None
    debug_info: dict[str, Any] | None = None


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        context: ErrorContext | None = None,
        http_status: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.context = context or ErrorContext()
        self.http_status = http_status

    def to_response(self) -> dict:
        """Convert to standardized REST error response."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "severity": self.severity.value,
                "timestamp": self.context.timestamp.isoformat(),
                "context": {
                    "property_id": self.context.property_id,
                    "reservation_id": self.context.reservation_id,
                    "payment_ref": self.context.payment_ref,
                },
            }
        }


# ─── Domain Errors (400-level) ──────────────────────────────────

class LedgerValidationError(LedgerError):
    """Request is malformed for the ledger (non-positive amounts, bad payloads)."""
    def __init__(self, message: str, field: str, context: ErrorContext | None = None):
        super().__init__(
            message, "VALIDATION_ERROR", ErrorCategory.VALIDATION,
            ErrorSeverity.ERROR, context, 400,
        )
        self.field = field


class InvestmentLimitError(LedgerError):
    """Token amount outside the property's minimum/maximum investment."""
    def __init__(
        self, requested: int, limit: int, kind: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{kind.capitalize()} investment is {limit} tokens (requested {requested})",
            "INVESTMENT_LIMIT", ErrorCategory.BUSINESS_RULE,
            ErrorSeverity.ERROR, context, 422,
        )
        self.requested = requested
        self.limit = limit
        self.kind = kind


class InsufficientSupplyError(LedgerError):
    """Not enough available supply to reserve the requested tokens."""
    def __init__(
        self, requested: int, available: int | None = None,
        context: ErrorContext | None = None,
    ):
        detail = f" ({available} available)" if available is not None else ""
        super().__init__(
            f"Insufficient tokens available: requested {requested}{detail}",
            "INSUFFICIENT_SUPPLY", ErrorCategory.CONFLICT,
            ErrorSeverity.WARNING, context, 409,
        )
        self.requested = requested
        self.available = available


class ReservationConflictError(LedgerError):
    """Reservation cannot make the requested state transition."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "RESERVATION_CONFLICT", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, context, 409,
        )


class SupplyConflictError(LedgerError):
    """Supply row already exists or cannot be changed as requested."""
    def __init__(self, message: str, context: ErrorContext | None = None):
        super().__init__(
            message, "SUPPLY_CONFLICT", ErrorCategory.CONFLICT,
            ErrorSeverity.ERROR, context, 409,
        )


class ResourceNotFoundError(LedgerError):
    """Requested resource does not exist."""
    def __init__(
        self, resource_type: str, resource_id: str, context: ErrorContext | None = None,
    ):
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "RESOURCE_NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND,
            ErrorSeverity.ERROR, context, 404,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class WebhookSignatureError(LedgerError):
    """Webhook signature missing, malformed, stale, or wrong."""
    def __init__(self, reason: str, context: ErrorContext | None = None):
        super().__init__(
            f"Invalid webhook signature: {reason}",
            "INVALID_SIGNATURE", ErrorCategory.AUTHENTICATION,
            ErrorSeverity.WARNING, context, 401,
        )
        self.reason = reason


# ─── Infrastructure Errors (500-level) ──────────────────────────

class SupplyInvariantError(LedgerError):
    """A supply mutation would break available + reserved <= total."""
    def __init__(self, violations: list[str], context: ErrorContext | None = None):
        super().__init__(
            f"Supply invariant violated: {'; '.join(violations)}",
            "SUPPLY_INVARIANT_VIOLATED", ErrorCategory.INTERNAL,
            ErrorSeverity.CRITICAL, context, 500,
        )
        self.violations = violations


class DatabaseError(LedgerError):
    """Database operation failed."""
    def __init__(self, message: str, operation: str, context: ErrorContext | None = None):
        super().__init__(
            f"Database {operation} failed: {message}",
            "DATABASE_ERROR", ErrorCategory.DATABASE,
            ErrorSeverity.CRITICAL, context, 503,
        )
        self.operation = operation
