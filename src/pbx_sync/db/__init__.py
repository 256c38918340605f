"""Extension registry access."""
from .base import ExtensionStore
from .sqlite import SQLiteExtensionStore

__all__ = ["ExtensionStore", "SQLiteExtensionStore"]
