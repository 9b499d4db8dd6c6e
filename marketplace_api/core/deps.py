from fastapi import Request

from marketplace_api.core.config import Settings
from marketplace_api.database.base import ListingStore
from marketplace_api.database.github_store import GithubListingStore
from marketplace_api.database.mongo import MongoListingStore
from marketplace_api.services.image_host import CloudinaryImageHost, ImageHost, RepoImageHost


def build_store(settings: Settings) -> ListingStore:
    if settings.STORAGE_BACKEND == "github":
        return GithubListingStore.from_settings(settings)
    if settings.STORAGE_BACKEND == "mongo":
        return MongoListingStore.from_settings(settings)
    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")


def build_image_host(settings: Settings, store: ListingStore = None) -> ImageHost:
    if settings.IMAGE_HOST == "github":
        client = store.client if isinstance(store, GithubListingStore) else None
        return RepoImageHost.from_settings(settings, client)
    if settings.IMAGE_HOST == "cloudinary":
        return CloudinaryImageHost.from_settings(settings)
    raise ValueError(f"Unknown IMAGE_HOST: {settings.IMAGE_HOST}")


# 📦 Dépendances FastAPI
def get_store(request: Request) -> ListingStore:
    return request.app.state.store


def get_image_host(request: Request) -> ImageHost:
    return request.app.state.image_host
