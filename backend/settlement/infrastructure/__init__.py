"""Infrastructure Layer — database engine and cross-cutting concerns (logging).

Invariants:
    - Infrastructure never imports ledger rules from core/ (errors excepted)
"""
