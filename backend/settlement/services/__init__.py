"""Services Layer — imperative shell around core/ rules: DB transactions and logging.

Invariants:
    - Services receive an AsyncSession; they never create engines
    - Ledger state changes go through services/token_ledger.py only
"""
