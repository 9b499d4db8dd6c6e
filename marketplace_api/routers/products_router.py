import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from starlette.datastructures import UploadFile

from marketplace_api.core.deps import get_image_host, get_store
from marketplace_api.core.errors import ListingValidationError
from marketplace_api.database.base import ListingStore
from marketplace_api.models.listing_models import ListingFilters, ListingResponse, MessageResponse
from marketplace_api.services.image_host import HostedImage, ImageHost
from marketplace_api.services.listing_service import (
    build_listing,
    create_listing,
    delete_listing,
    parse_update,
    update_listing,
    validate_create_payload,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["Products"])


def parse_price_bound(value: Optional[str], name: str) -> Optional[int]:
    """Borne vide = absente ; borne non numérique = requête rejetée (400)."""
    if value is None or not value.strip():
        return None
    try:
        return int(value.strip())
    except ValueError:
        raise ListingValidationError(f"{name} must be an integer")


async def _read_create_payload(request: Request) -> Tuple[Dict[str, Any], Optional[UploadFile]]:
    """Multipart (champs + fichier `image`) ou JSON (avec `imagePath`)."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            payload = await request.json()
        except ValueError:
            raise ListingValidationError("Invalid JSON body")
        if not isinstance(payload, dict):
            raise ListingValidationError("JSON body must be an object")
        return payload, None

    form = await request.form()
    payload = {k: v for k, v in form.items() if not isinstance(v, UploadFile)}
    upload = form.get("image")
    if not isinstance(upload, UploadFile) or not upload.filename:
        upload = None
    return payload, upload


# --------------------------------------------------
# 📌 GET - Liste / recherche / filtres / tri
# --------------------------------------------------
@router.get("", response_model=List[ListingResponse])
async def list_products(
    search: Optional[str] = None,
    minPrice: Optional[str] = None,
    maxPrice: Optional[str] = None,
    condition: Optional[str] = None,
    sort: Optional[str] = None,
    store: ListingStore = Depends(get_store),
):
    filters = ListingFilters(
        search=search or None,
        min_price=parse_price_bound(minPrice, "minPrice"),
        max_price=parse_price_bound(maxPrice, "maxPrice"),
        condition=condition or None,
        sort=sort,
    )
    try:
        products = await store.list_listings(filters)
    except Exception:
        logger.exception("❌ Error fetching products")
        raise HTTPException(status_code=500, detail="Failed to fetch products")
    logger.info("📦 Fetched %d products from %s", len(products), store.name)
    return products


@router.get("/search", response_model=List[ListingResponse])
async def search_products(q: Optional[str] = None, store: ListingStore = Depends(get_store)):
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Search query is required")
    try:
        return await store.list_listings(ListingFilters(search=q.strip()))
    except Exception:
        logger.exception("❌ Error searching products")
        raise HTTPException(status_code=500, detail="Failed to search products")


@router.get("/{product_id}", response_model=ListingResponse)
async def get_product(product_id: str, store: ListingStore = Depends(get_store)):
    try:
        product = await store.get_listing(product_id)
    except Exception:
        logger.exception("❌ Error fetching product %s", product_id)
        raise HTTPException(status_code=500, detail="Failed to fetch product")
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


# --------------------------------------------------
# 📌 POST - Création (fichier multipart ou URL déjà hébergée)
# --------------------------------------------------
@router.post("", response_model=ListingResponse, status_code=201)
async def create_product(
    request: Request,
    store: ListingStore = Depends(get_store),
    image_host: ImageHost = Depends(get_image_host),
):
    payload, upload = await _read_create_payload(request)
    image_path = str(payload.get("imagePath") or "").strip()
    fields = validate_create_payload(payload, has_image=upload is not None or bool(image_path))

    if upload is not None:
        data = await upload.read()
        try:
            hosted = await image_host.upload(data, upload.filename, upload.content_type)
        except ListingValidationError:
            raise
        except Exception:
            logger.exception("❌ Error uploading product image")
            raise HTTPException(status_code=500, detail="Failed to upload image")
        uploaded = True
    else:
        hosted = HostedImage(url=image_path, public_id=payload.get("imagePublicId") or None)
        uploaded = False

    try:
        listing = build_listing(fields, hosted)
        return await create_listing(store, image_host, listing, compensate=uploaded)
    except ListingValidationError:
        raise
    except Exception:
        logger.exception("❌ Error saving product")
        raise HTTPException(status_code=500, detail="Failed to save product")


@router.post("/base64", response_model=ListingResponse, status_code=201)
async def create_product_base64(
    payload: Dict[str, Any] = Body(...),
    store: ListingStore = Depends(get_store),
    image_host: ImageHost = Depends(get_image_host),
):
    image_base64 = payload.get("imageBase64")
    if image_base64 is not None and not isinstance(image_base64, str):
        raise ListingValidationError("imageBase64 must be a string")
    fields = validate_create_payload(
        payload,
        has_image=bool(image_base64),
        image_message="All fields including image are required",
    )

    try:
        hosted = await image_host.upload_base64(image_base64)
    except ListingValidationError:
        raise
    except Exception:
        logger.exception("❌ Error uploading base64 image")
        raise HTTPException(status_code=500, detail="Failed to upload image")

    try:
        return await create_listing(store, image_host, build_listing(fields, hosted))
    except ListingValidationError:
        raise
    except Exception:
        logger.exception("❌ Error saving product (base64)")
        raise HTTPException(status_code=500, detail="Failed to save product")


# --------------------------------------------------
# 📌 PUT / DELETE
# --------------------------------------------------
@router.put("/{product_id}", response_model=ListingResponse)
async def update_product(
    product_id: str,
    payload: Dict[str, Any] = Body(...),
    store: ListingStore = Depends(get_store),
):
    fields = parse_update(payload)
    try:
        product = await update_listing(store, product_id, fields)
    except Exception:
        logger.exception("❌ Error updating product %s", product_id)
        raise HTTPException(status_code=500, detail="Failed to update product")
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.delete("/{product_id}", response_model=MessageResponse)
async def delete_product(
    product_id: str,
    store: ListingStore = Depends(get_store),
    image_host: ImageHost = Depends(get_image_host),
):
    try:
        deleted = await delete_listing(store, image_host, product_id)
    except Exception:
        logger.exception("❌ Error deleting product %s", product_id)
        raise HTTPException(status_code=500, detail="Failed to delete product")
    if deleted is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"message": "Product deleted successfully"}
