"""Abstract accessor for the extension registry."""
from abc import ABC, abstractmethod
from typing import Optional

from ..models import ExtensionRecord, TrunkRecord


class ExtensionStore(ABC):
    """Narrow interface the reconciliation engine needs from the database.

    Implementations own connection and transaction handling; every method
    is a complete unit of work.
    """

    @abstractmethod
    def list_extensions(self) -> list[ExtensionRecord]:
        """All extensions, enabled or not."""
        pass

    @abstractmethod
    def get_extension(self, number: str) -> Optional[ExtensionRecord]:
        pass

    @abstractmethod
    def upsert_extension(self, record: ExtensionRecord) -> None:
        """Insert the extension, or update it if the number already exists."""
        pass

    @abstractmethod
    def delete_extension(self, number: str) -> bool:
        """Delete an extension. Returns True if a row was removed."""
        pass

    def list_trunks(self, enabled_only: bool = False) -> list[TrunkRecord]:
        """Trunks, if the backend stores them."""
        return []
