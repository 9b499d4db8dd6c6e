import io
import re
import time
import uuid
import base64
import asyncio
import binascii
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

import cloudinary.api
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from marketplace_api.core.config import Settings
from marketplace_api.core.errors import (
    ImageHostError,
    ImageTooLargeError,
    InvalidImageError,
    ListingStoreError,
)
from marketplace_api.database.github_client import RepoFileClient

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = ("jpg", "jpeg", "png", "gif")
DATA_URL_RE = re.compile(r"^data:(?P<type>[\w/+.-]+);base64,(?P<data>.*)$", re.DOTALL)
EXT_BY_TYPE = {"image/jpeg": "jpg", "image/jpg": "jpg", "image/png": "png", "image/gif": "gif"}


@dataclass
class HostedImage:
    url: str
    public_id: Optional[str] = None


def new_public_id() -> str:
    return f"product_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def image_extension(filename: Optional[str], content_type: Optional[str]) -> str:
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()
        if ext in ALLOWED_FORMATS:
            return ext
    ext = EXT_BY_TYPE.get((content_type or "").lower())
    if ext:
        return ext
    raise InvalidImageError(f"Unsupported image format (allowed: {', '.join(ALLOWED_FORMATS)})")


def check_image(data: bytes, filename: Optional[str], content_type: Optional[str], max_bytes: int) -> str:
    """Vérifie type et taille ; retourne l'extension à utiliser."""
    if content_type and not content_type.startswith("image/"):
        raise InvalidImageError(f"Invalid file: {filename or 'upload'} must be an image")
    if not data:
        raise InvalidImageError("Image file is empty")
    if len(data) > max_bytes:
        raise ImageTooLargeError(f"Image is too large (max {max_bytes // (1024 * 1024)} MB)")
    return image_extension(filename, content_type)


def decode_data_url(payload: str) -> Tuple[bytes, Optional[str]]:
    """Accepte `data:image/png;base64,...` ou du base64 brut."""
    content_type = None
    match = DATA_URL_RE.match(payload.strip())
    if match:
        content_type = match.group("type")
        payload = match.group("data")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError("Invalid base64 image data") from e
    return data, content_type


class ImageHost(ABC):
    name: str = "unknown"

    def __init__(self, max_bytes: int = 10 * 1024 * 1024):
        self.max_bytes = max_bytes

    async def _run(self, func, *args, **kwargs):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: func(*args, **kwargs))

    @abstractmethod
    async def upload(self, data: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> HostedImage:
        ...

    async def upload_base64(self, payload: str) -> HostedImage:
        data, content_type = decode_data_url(payload)
        return await self.upload(data, None, content_type or "image/jpeg")

    @abstractmethod
    async def delete(self, public_id: str) -> None:
        ...

    async def ping(self) -> bool:
        return True


class CloudinaryImageHost(ImageHost):
    name = "cloudinary"

    def __init__(self, cloud_name: str, api_key: str, api_secret: str, folder: str, max_bytes: int = 10 * 1024 * 1024):
        super().__init__(max_bytes)
        self.folder = folder
        self.credentials = {"cloud_name": cloud_name, "api_key": api_key, "api_secret": api_secret}

    @classmethod
    def from_settings(cls, settings: Settings) -> "CloudinaryImageHost":
        if not settings.cloudinary_configured:
            logger.warning("⚠️ Cloudinary credentials missing, image uploads will fail")
        return cls(
            settings.CLOUDINARY_CLOUD_NAME,
            settings.CLOUDINARY_API_KEY,
            settings.CLOUDINARY_API_SECRET,
            settings.CLOUDINARY_FOLDER,
            settings.max_upload_bytes,
        )

    async def _upload(self, source) -> HostedImage:
        try:
            result = await self._run(
                cloudinary.uploader.upload,
                source,
                folder=self.folder,
                public_id=new_public_id(),
                allowed_formats=list(ALLOWED_FORMATS),
                **self.credentials,
            )
        except CloudinaryError as e:
            raise ImageHostError(f"Cloudinary upload failed: {e}") from e
        return HostedImage(url=result["secure_url"], public_id=result["public_id"])

    async def upload(self, data: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> HostedImage:
        check_image(data, filename, content_type, self.max_bytes)
        return await self._upload(io.BytesIO(data))

    async def upload_base64(self, payload: str) -> HostedImage:
        data, content_type = decode_data_url(payload)
        check_image(data, None, content_type, self.max_bytes)
        # Cloudinary accepte directement une data URL
        source = payload if payload.startswith("data:") else io.BytesIO(data)
        return await self._upload(source)

    async def delete(self, public_id: str) -> None:
        try:
            result = await self._run(cloudinary.uploader.destroy, public_id, **self.credentials)
        except CloudinaryError as e:
            raise ImageHostError(f"Cloudinary destroy failed: {e}") from e
        if result.get("result") not in ("ok", "not found"):
            raise ImageHostError(f"Cloudinary destroy returned {result.get('result')}")

    async def ping(self) -> bool:
        try:
            await self._run(cloudinary.api.ping, **self.credentials)
        except CloudinaryError:
            return False
        return True


class RepoImageHost(ImageHost):
    """Images commitées dans le dépôt GitHub, servies par raw.githubusercontent.com."""

    name = "github"

    def __init__(self, client: RepoFileClient, directory: str = "images", max_bytes: int = 10 * 1024 * 1024):
        super().__init__(max_bytes)
        self.client = client
        self.directory = directory.strip("/")

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[RepoFileClient] = None) -> "RepoImageHost":
        return cls(
            client or RepoFileClient.from_settings(settings),
            settings.GITHUB_IMAGES_DIR,
            settings.max_upload_bytes,
        )

    async def upload(self, data: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> HostedImage:
        ext = check_image(data, filename, content_type, self.max_bytes)
        path = f"{self.directory}/{new_public_id()}.{ext}"
        try:
            await self._run(self.client.put_file, path, data, None, f"Upload image {path}")
        except ListingStoreError as e:
            raise ImageHostError(f"GitHub image upload failed: {path}") from e
        logger.info("🖼️ Image uploaded to repository: %s", path)
        return HostedImage(url=self.client.raw_url(path), public_id=path)

    async def delete(self, public_id: str) -> None:
        try:
            _, sha = await self._run(self.client.get_file, public_id)
            if sha is None:
                return
            await self._run(self.client.delete_file, public_id, sha, f"Delete image {public_id}")
        except ListingStoreError as e:
            raise ImageHostError(f"GitHub image delete failed: {public_id}") from e

    async def ping(self) -> bool:
        return await self._run(self.client.ping)
