"""Investment Fees — quote gross, fee and net amounts for a token purchase.

Invariants:
    - All money is Decimal, quantized to cents with ROUND_HALF_UP
    - 0 <= fee <= gross; net = gross - fee
    - Without an active schedule the fee is gross * default_percentage / 100

Design Decisions:
    - FeeRule decoupled from the FeeSchedule ORM row so this module stays IO-free
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

CENTS = Decimal("0.01")
DEFAULT_FEE_PERCENTAGE = Decimal("2.5")


@dataclass(frozen=True)
class FeeRule:
    """Percentage + fixed fee, optionally clamped."""
    percentage: Decimal = Decimal("0")
    fixed_amount: Decimal = Decimal("0")
    min_fee: Decimal = Decimal("0")
    max_fee: Decimal | None = None


@dataclass(frozen=True)
class InvestmentQuote:
    token_amount: int
    token_price: Decimal
    gross_amount: Decimal
    fee_amount: Decimal
    net_amount: Decimal


def to_money(value: Decimal | int | float | str) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def calculate_fee(
    gross_amount: Decimal,
    rule: FeeRule | None = None,
    default_percentage: Decimal = DEFAULT_FEE_PERCENTAGE,
) -> Decimal:
    """Fee owed on `gross_amount` under `rule` (or the default percentage)."""
    gross = to_money(gross_amount)
    if rule is None:
        return to_money(gross * Decimal(str(default_percentage)) / 100)

    fee = gross * rule.percentage / 100 + rule.fixed_amount
    fee = max(fee, rule.min_fee)
    if rule.max_fee is not None:
        fee = min(fee, rule.max_fee)
    return to_money(min(fee, gross))


def quote_investment(
    token_amount: int,
    token_price: Decimal,
    rule: FeeRule | None = None,
    default_percentage: Decimal = DEFAULT_FEE_PERCENTAGE,
) -> InvestmentQuote:
    gross = to_money(Decimal(token_amount) * Decimal(str(token_price)))
    fee = calculate_fee(gross, rule, default_percentage)
    return InvestmentQuote(
        token_amount=token_amount,
        token_price=to_money(token_price),
        gross_amount=gross,
        fee_amount=fee,
        net_amount=gross - fee,
    )
