"""Accounting system collaborator."""

from .client import HttpLedgerClient, LedgerClient, camel_keys, snake_keys

__all__ = ["HttpLedgerClient", "LedgerClient", "camel_keys", "snake_keys"]
