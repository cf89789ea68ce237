"""Token Ledger & Settlement Service — atomic token-supply bookkeeping for tokenized properties.

Invariants:
    - Package root contains no executable code (import side-effects prohibited)
"""
