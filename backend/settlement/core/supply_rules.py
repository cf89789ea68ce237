"""Supply Rules — pure arithmetic over the three token buckets of a property.

Invariants:
    - available >= 0, reserved >= 0, available + reserved <= total
    - issued = total - available - reserved (never stored, always derived)
    - reserve moves n: available -> reserved
    - confirm moves n: reserved -> issued (available untouched)
    - release moves n: reserved -> available
    - Every transition returns a NEW snapshot; inputs are never mutated

Design Decisions:
    - Snapshot is a frozen dataclass: services read it from the ORM row, decide here,
      then apply the same delta with a conditional UPDATE so the database stays authoritative
"""

from dataclasses import dataclass, replace

from settlement.core.errors import (
    InsufficientSupplyError, InvestmentLimitError, LedgerValidationError,
    SupplyInvariantError, ErrorContext,
)


@dataclass(frozen=True)
class SupplySnapshot:
    """Point-in-time view of one property's token supply."""
    total: int
    available: int
    reserved: int
    minimum_investment: int = 1
    maximum_investment: int | None = None

    @property
    def issued(self) -> int:
        return self.total - self.available - self.reserved


def check_supply_invariant(snapshot: SupplySnapshot) -> list[str]:
    """Return human-readable violations (empty list when the snapshot is valid)."""
    violations = []
    if snapshot.total < 0:
        violations.append(f"total_supply={snapshot.total} < 0")
    if snapshot.available < 0:
        violations.append(f"available_supply={snapshot.available} < 0")
    if snapshot.reserved < 0:
        violations.append(f"reserved_supply={snapshot.reserved} < 0")
    if snapshot.available + snapshot.reserved > snapshot.total:
        violations.append(
            f"available_supply + reserved_supply = "
            f"{snapshot.available + snapshot.reserved} > total_supply={snapshot.total}"
        )
    return violations


def issued_supply(snapshot: SupplySnapshot) -> int:
    return snapshot.issued


def validate_reservation_request(
    snapshot: SupplySnapshot, amount: int, context: ErrorContext | None = None,
) -> None:
    """Raise if `amount` tokens cannot be reserved from `snapshot`."""
    if amount <= 0:
        raise LedgerValidationError(
            f"token_amount must be positive (got {amount})", "token_amount", context,
        )
    if amount < snapshot.minimum_investment:
        raise InvestmentLimitError(
            amount, snapshot.minimum_investment, "minimum", context,
        )
    if (
        snapshot.maximum_investment is not None
        and amount > snapshot.maximum_investment
    ):
        raise InvestmentLimitError(
            amount, snapshot.maximum_investment, "maximum", context,
        )
    if amount > snapshot.available:
        raise InsufficientSupplyError(amount, snapshot.available, context)


def _checked(snapshot: SupplySnapshot) -> SupplySnapshot:
    violations = check_supply_invariant(snapshot)
    if violations:
        raise SupplyInvariantError(violations)
    return snapshot


def apply_reserve(snapshot: SupplySnapshot, amount: int) -> SupplySnapshot:
    """available -> reserved."""
    return _checked(replace(
        snapshot,
        available=snapshot.available - amount,
        reserved=snapshot.reserved + amount,
    ))


def apply_confirm(snapshot: SupplySnapshot, amount: int) -> SupplySnapshot:
    """reserved -> issued."""
    return _checked(replace(snapshot, reserved=snapshot.reserved - amount))


def apply_release(snapshot: SupplySnapshot, amount: int) -> SupplySnapshot:
    """reserved -> available."""
    return _checked(replace(
        snapshot,
        available=snapshot.available + amount,
        reserved=snapshot.reserved - amount,
    ))
