import json
import time
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from marketplace_api.core.config import Settings
from marketplace_api.core.errors import ListingStoreError, VersionConflictError
from marketplace_api.database.base import ListingStore
from marketplace_api.database.github_client import RepoFileClient
from marketplace_api.models.listing_models import ListingFilters
from marketplace_api.services.listing_service import filter_listings, sort_listings, summarize

logger = logging.getLogger(__name__)

# mutation(listings) -> (nouvelle liste, résultat) ; liste None = rien à écrire
Mutation = Callable[[List[Dict[str, Any]]], Tuple[Optional[List[Dict[str, Any]]], Any]]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _decode(raw: Optional[bytes]) -> List[Dict[str, Any]]:
    if not raw:
        return []
    try:
        data = json.loads(raw.decode("utf-8"))
    except ValueError as e:
        raise ListingStoreError("products file is not valid JSON") from e
    if not isinstance(data, list):
        raise ListingStoreError("products file must hold a JSON array")
    for item in data:
        if not isinstance(item, dict):
            raise ListingStoreError("products file entries must be JSON objects")
        item["dateAdded"] = _parse_date(item.get("dateAdded"))
    return data


def _parse_date(value: Any) -> datetime:
    """ISO-8601 (suffixe `Z` accepté) vers datetime UTC ; absente = epoch."""
    if value is None:
        return EPOCH
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError as e:
            raise ListingStoreError(f"invalid dateAdded in products file: {value!r}") from e
    if not isinstance(value, datetime):
        raise ListingStoreError(f"invalid dateAdded in products file: {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _encode(listings: List[Dict[str, Any]]) -> bytes:
    return json.dumps(listings, indent=2, default=_json_default).encode("utf-8")


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


def _public(listing: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(listing)
    out["id"] = str(out["id"])
    return out


def _index_of(listings: List[Dict[str, Any]], listing_id: str) -> Optional[int]:
    for i, listing in enumerate(listings):
        if str(listing.get("id")) == str(listing_id):
            return i
    return None


def next_listing_id(listings: List[Dict[str, Any]]) -> int:
    """Timestamp en millisecondes, toujours supérieur aux ids existants."""
    now = int(time.time() * 1000)
    existing = [l["id"] for l in listings if isinstance(l.get("id"), int)]
    return max([now] + [i + 1 for i in existing])


class GithubListingStore(ListingStore):
    """
    Tous les listings dans un seul fichier JSON d'un dépôt GitHub.

    Chaque mutation relit le fichier et son sha, modifie la liste en mémoire
    puis réécrit conditionnellement. Un conflit de version relance le cycle
    complet, jusqu'à `retries` tentatives.
    """

    name = "github"

    def __init__(self, client: RepoFileClient, path: str, retries: int = 3):
        self.client = client
        self.path = path
        self.retries = max(1, retries)

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[RepoFileClient] = None) -> "GithubListingStore":
        return cls(
            client or RepoFileClient.from_settings(settings),
            settings.GITHUB_PRODUCTS_PATH,
            settings.GITHUB_WRITE_RETRIES,
        )

    async def _run(self, func, *args):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: func(*args))

    async def connect(self) -> None:
        if await self.ping():
            logger.info("✅ Connected to GitHub repository %s/%s", self.client.owner, self.client.repo)
        else:
            logger.error("❌ GitHub repository %s/%s unreachable", self.client.owner, self.client.repo)

    async def ping(self) -> bool:
        return await self._run(self.client.ping)

    async def read(self) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        raw, sha = await self._run(self.client.get_file, self.path)
        return _decode(raw), sha

    async def write(self, listings: List[Dict[str, Any]], sha: Optional[str], message: str) -> None:
        await self._run(self.client.put_file, self.path, _encode(listings), sha, message)

    async def mutate(self, mutation: Mutation, message: str) -> Any:
        for attempt in range(1, self.retries + 1):
            listings, sha = await self.read()
            updated, result = mutation(listings)
            if updated is None:
                return result
            try:
                await self.write(updated, sha, message)
                return result
            except VersionConflictError:
                if attempt == self.retries:
                    logger.error("Giving up on %s after %d conflicting writes", self.path, attempt)
                    raise
                logger.warning("Version conflict on %s, retrying (%d/%d)", self.path, attempt, self.retries)

    async def list_listings(self, filters: ListingFilters) -> List[Dict[str, Any]]:
        listings, _ = await self.read()
        matched = sort_listings(filter_listings(listings, filters), filters.sort)
        return [_public(l) for l in matched]

    async def get_listing(self, listing_id: str) -> Optional[Dict[str, Any]]:
        listings, _ = await self.read()
        index = _index_of(listings, listing_id)
        return _public(listings[index]) if index is not None else None

    async def create_listing(self, document: Dict[str, Any]) -> Dict[str, Any]:
        def add(listings):
            listing = {"id": next_listing_id(listings), **document}
            return listings + [listing], listing

        created = await self.mutate(add, f"Add product: {document.get('name')}")
        return _public(created)

    async def update_listing(self, listing_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        def apply(listings):
            index = _index_of(listings, listing_id)
            if index is None:
                return None, None
            if not fields:
                return None, listings[index]
            listings[index] = {**listings[index], **fields}
            return listings, listings[index]

        updated = await self.mutate(apply, f"Update product {listing_id}")
        return _public(updated) if updated else None

    async def delete_listing(self, listing_id: str) -> Optional[Dict[str, Any]]:
        def remove(listings):
            index = _index_of(listings, listing_id)
            if index is None:
                return None, None
            removed = listings.pop(index)
            return listings, removed

        deleted = await self.mutate(remove, f"Delete product {listing_id}")
        return _public(deleted) if deleted else None

    async def stats(self) -> Dict[str, Any]:
        listings, _ = await self.read()
        return summarize(listings)
