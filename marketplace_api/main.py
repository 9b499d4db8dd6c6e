import os
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from marketplace_api.core.config import Settings
from marketplace_api.core.deps import build_image_host, build_store
from marketplace_api.core.errors import ListingValidationError
from marketplace_api.database.base import ListingStore
from marketplace_api.routers.health_router import router as health_router
from marketplace_api.routers.products_router import router as products_router
from marketplace_api.routers.upload_router import router as upload_router
from marketplace_api.services.image_host import ImageHost
from marketplace_api.services.listing_service import describe_validation_error

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return _error(404, "Not found")
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        return _error(400, describe_validation_error(exc))

    @app.exception_handler(ListingValidationError)
    async def listing_validation_error(request: Request, exc: ListingValidationError):
        return _error(400, str(exc))

    @app.exception_handler(Exception)
    async def server_error(request: Request, exc: Exception):
        logger.error("❌ Server Error", exc_info=exc)
        return _error(500, "Internal server error")


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ListingStore] = None,
    image_host: Optional[ImageHost] = None,
) -> FastAPI:
    settings = settings or Settings()
    store = store or build_store(settings)
    image_host = image_host or build_image_host(settings, store)

    app = FastAPI(title="Marketplace Listings API")
    app.state.settings = settings
    app.state.store = store
    app.state.image_host = image_host

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials="*" not in settings.CORS_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup():
        logger.info("🚀 Starting with %s store and %s image host", store.name, image_host.name)
        await store.connect()

    @app.on_event("shutdown")
    async def shutdown():
        await store.close()

    register_error_handlers(app)

    app.include_router(products_router, prefix="/api")
    app.include_router(upload_router, prefix="/api")
    app.include_router(health_router, prefix="/api")

    # Front-end statique, monté en dernier pour ne pas masquer /api
    if os.path.isdir(settings.STATIC_DIR):
        app.mount("/", StaticFiles(directory=settings.STATIC_DIR, html=True), name="static")

    return app


def run() -> None:
    import uvicorn

    settings = Settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("📡 API endpoints available at http://localhost:%d/api/", settings.PORT)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.PORT)


if __name__ == "__main__":
    run()
