"""
Common utilities for the mutual-match client.

Modules:
- ledger: gateway client for the match contract (calls, transactions, receipts)
- directory: read-only profile directory client
- wallet: JSON-RPC signing authority client
- http: shared JSON-over-HTTP base with retries
- rate_limiter: sliding-window limiter (per client, per key)
- config: settings from environment + SSM
- observability: structlog configuration
"""

__all__ = [
    "config",
    "directory",
    "http",
    "ledger",
    "observability",
    "rate_limiter",
    "wallet",
]
