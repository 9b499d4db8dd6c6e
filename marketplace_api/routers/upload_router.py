import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from marketplace_api.core.deps import get_image_host
from marketplace_api.core.errors import ListingValidationError
from marketplace_api.models.listing_models import ImageUploadResponse
from marketplace_api.services.image_host import ImageHost

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Images"])


# --------------------------------------------------
# 📌 POST - Upload d'une image seule (retourne l'URL hébergée)
# --------------------------------------------------
@router.post("/upload-image", response_model=ImageUploadResponse)
async def upload_image(
    image: Optional[UploadFile] = File(None),
    image_host: ImageHost = Depends(get_image_host),
):
    if image is None or not image.filename:
        raise HTTPException(status_code=400, detail="No image file provided")

    data = await image.read()
    try:
        hosted = await image_host.upload(data, image.filename, image.content_type)
    except ListingValidationError:
        raise
    except Exception:
        logger.exception("❌ Error uploading image")
        raise HTTPException(status_code=500, detail="Failed to upload image")

    return ImageUploadResponse(image_url=hosted.url, image_public_id=hosted.public_id or "")
