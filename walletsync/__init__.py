"""Wallet synchronization service package.

Propagates loyalty point/tier changes to already-issued Apple Wallet and
Google Wallet passes through a durable, retryable job queue.
"""

__all__: list[str] = []
