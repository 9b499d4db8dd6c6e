from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from marketplace_api.models.listing_models import ListingFilters


class ListingStore(ABC):
    """Contrat commun aux deux backends (MongoDB, fichier JSON GitHub)."""

    name: str = "unknown"

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    @abstractmethod
    async def ping(self) -> bool:
        ...

    @abstractmethod
    async def list_listings(self, filters: ListingFilters) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_listing(self, listing_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def create_listing(self, document: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update_listing(self, listing_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def delete_listing(self, listing_id: str) -> Optional[Dict[str, Any]]:
        """Supprime et retourne le listing, ou None s'il n'existe pas."""

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        ...
