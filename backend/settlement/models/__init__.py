"""ORM Models — SQLAlchemy declarative models for the ledger.

Invariants:
    - All models inherit from Base (db/base.py)
    - TokenSupply is the aggregate root; reservations, transactions and investments
      are all scoped by property_id

Design Decisions:
    - One file per entity for locality
    - All models imported here so Base.metadata is complete before create_all/autogenerate
"""

from settlement.models.token_supply import TokenSupply  # noqa: F401
from settlement.models.reservation import Reservation  # noqa: F401
from settlement.models.investment_transaction import InvestmentTransaction  # noqa: F401
from settlement.models.investment import Investment  # noqa: F401
from settlement.models.fee_schedule import FeeSchedule  # noqa: F401
from settlement.models.payment_webhook_event import PaymentWebhookEvent  # noqa: F401
