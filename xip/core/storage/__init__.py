"""
Persistent Storage Module.

Provides SQLite-backed persistence for recipient manifests: the private
split of an intent's delivery across several destination addresses.
"""

from xip.core.storage.sqlite_adapter import SQLiteAdapter
from xip.core.storage.storage_manager import RecipientManifest, RecipientStore

__all__ = ["SQLiteAdapter", "RecipientManifest", "RecipientStore"]
