"""Library vertical: catalog management and the borrowing eligibility engine.

- SQLAlchemy models for conditions, domains, books, editions, accounts, loans
- Domain hierarchy resolution over the parent-linked forest
- Pure lending rules and the short-circuiting eligibility pipeline
- Compare-and-swap inventory ledger
- Catalog and lending services behind a FastAPI router
"""
