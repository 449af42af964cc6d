"""
Client module for relay services.

Provides the httpx-based client that submits signed relay calls for
gasless execution and queries relay quotas.
"""

from .relay_client import RelayClient

__all__ = ["RelayClient"]
