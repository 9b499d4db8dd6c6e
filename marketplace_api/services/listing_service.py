import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from marketplace_api.core.errors import ListingValidationError
from marketplace_api.database.base import ListingStore
from marketplace_api.models.listing_models import (
    REQUIRED_FIELDS,
    WHATSAPP_PATTERN,
    ListingCreate,
    ListingFields,
    ListingFilters,
    ListingUpdate,
)
from marketplace_api.services.image_host import HostedImage, ImageHost

logger = logging.getLogger(__name__)


def describe_validation_error(exc: ValidationError) -> str:
    """Premier message d'erreur pydantic, lisible par un humain."""
    err = exc.errors()[0]
    loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
    msg = err.get("msg", "Invalid value")
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    return f"{loc}: {msg}" if loc else msg


def validate_create_payload(
    payload: Mapping[str, Any],
    has_image: bool,
    image_message: str = "Product image is required",
) -> ListingFields:
    """
    Ordre de validation : champs requis → format WhatsApp → image →
    contraintes des champs (prix, état...). Rien n'est uploadé ni écrit
    avant que tout soit valide.
    """
    values = {}
    for field in REQUIRED_FIELDS:
        value = payload.get(field)
        if isinstance(value, str):
            value = value.strip()
        if value is None or value == "":
            raise ListingValidationError("All fields are required")
        values[field] = value

    if not WHATSAPP_PATTERN.match(str(values["whatsapp"])):
        raise ListingValidationError("Invalid WhatsApp number format")

    if not has_image:
        raise ListingValidationError(image_message)

    try:
        return ListingFields.model_validate(values)
    except ValidationError as e:
        raise ListingValidationError(describe_validation_error(e)) from e


def build_listing(fields: ListingFields, image: HostedImage) -> ListingCreate:
    try:
        return ListingCreate(
            **fields.model_dump(),
            image_path=image.url,
            image_public_id=image.public_id,
        )
    except ValidationError as e:
        raise ListingValidationError(describe_validation_error(e)) from e


def utc_now() -> datetime:
    """Heure UTC à la milliseconde (précision des dates BSON)."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def build_listing_document(listing: ListingCreate) -> Dict[str, Any]:
    document = listing.model_dump(by_alias=True)
    document["dateAdded"] = utc_now()
    document["isActive"] = True
    return document


def parse_update(payload: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        update = ListingUpdate.model_validate(payload)
    except ValidationError as e:
        raise ListingValidationError(describe_validation_error(e)) from e
    return update.model_dump(by_alias=True, exclude_none=True)


async def create_listing(
    store: ListingStore,
    image_host: ImageHost,
    listing: ListingCreate,
    compensate: bool = True,
) -> Dict[str, Any]:
    """
    Enregistre le listing. Si l'écriture échoue et que l'image a été
    uploadée par cette requête, l'image est supprimée de l'hébergeur.
    """
    try:
        created = await store.create_listing(build_listing_document(listing))
    except Exception:
        if compensate and listing.image_public_id:
            await release_image(image_host, listing.image_public_id)
        raise
    logger.info("✅ New product saved (%s): %s", store.name, created["name"])
    return created


async def update_listing(store: ListingStore, listing_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    updated = await store.update_listing(listing_id, fields)
    if updated:
        logger.info("✅ Product updated: %s", updated["name"])
    return updated


async def delete_listing(store: ListingStore, image_host: ImageHost, listing_id: str) -> Optional[Dict[str, Any]]:
    deleted = await store.delete_listing(listing_id)
    if deleted is None:
        return None
    if deleted.get("imagePublicId"):
        await release_image(image_host, deleted["imagePublicId"])
    logger.info("✅ Product deleted: %s", deleted["name"])
    return deleted


async def release_image(image_host: ImageHost, public_id: str) -> None:
    """Suppression best-effort : un échec est loggé, jamais propagé."""
    try:
        await image_host.delete(public_id)
    except Exception:
        logger.warning("Could not delete hosted image %s", public_id, exc_info=True)


# --------------------------------------------------
# Requêtes côté application (backend fichier JSON)
# --------------------------------------------------

def _matches(listing: Mapping[str, Any], filters: ListingFilters) -> bool:
    if not listing.get("isActive", True):
        return False
    if filters.search:
        term = filters.search.lower()
        haystack = (listing.get("name"), listing.get("description"), listing.get("seller"))
        if not any(term in (value or "").lower() for value in haystack):
            return False
    price = listing.get("price", 0)
    if filters.min_price is not None and price < filters.min_price:
        return False
    if filters.max_price is not None and price > filters.max_price:
        return False
    if filters.condition and listing.get("condition") != filters.condition:
        return False
    return True


def filter_listings(listings: Iterable[Mapping[str, Any]], filters: ListingFilters) -> List[Dict[str, Any]]:
    return [dict(listing) for listing in listings if _matches(listing, filters)]


def sort_listings(listings: List[Dict[str, Any]], sort: Optional[str]) -> List[Dict[str, Any]]:
    if sort == "price_low":
        return sorted(listings, key=lambda l: l["price"])
    if sort == "price_high":
        return sorted(listings, key=lambda l: l["price"], reverse=True)
    if sort == "name":
        return sorted(listings, key=lambda l: l["name"])
    return sorted(listings, key=lambda l: l["dateAdded"], reverse=True)


def summarize(listings: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    active = [l for l in listings if l.get("isActive", True)]
    prices = [l["price"] for l in active]
    return {
        "total_products": len(active),
        "total_sellers": len({l["seller"] for l in active}),
        "average_price": sum(prices) / len(prices) if prices else 0,
    }
