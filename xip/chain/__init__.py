"""Ledger client interface"""
from xip.chain.client import LedgerClient, LocalLedgerClient

__all__ = ["LedgerClient", "LocalLedgerClient"]
