# app/paygate/__init__.py
"""
Payment gate protocol engine.

Gates access to a resource behind a per-request on-chain token payment:
a request without proof gets a time-bounded payment challenge, a request
carrying a matching, confirmed transfer gets the resource exactly once.

Key components:
- splitter: Revenue split between creator and platform
- challenges: Challenge issuance and the challenge store
- chain: JSON-RPC chain client
- verifier: On-chain transfer verification against a challenge
- ledger: Exactly-once settlement records
- gate: Request/response orchestration
- audit: Payment audit logging

Apart from the audit log path, core components never read app.core.config;
the API layer builds them from settings (see app/api/dependencies.py).
"""

__version__ = "0.1.0"
