import os
from dotenv import load_dotenv

load_dotenv()  # charge .env


def _split(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings:
    def __init__(self):
        self.STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "mongo").lower()
        default_host = "github" if self.STORAGE_BACKEND == "github" else "cloudinary"
        self.IMAGE_HOST: str = os.getenv("IMAGE_HOST", default_host).lower()

        self.MONGO_URL: str = os.getenv("MONGO_URL", "mongodb://localhost:27017")
        self.DATABASE_NAME: str = os.getenv("DATABASE_NAME", "marketplace")
        self.PRODUCTS_COLLECTION: str = os.getenv("PRODUCTS_COLLECTION", "products")

        self.CLOUDINARY_CLOUD_NAME: str = os.getenv("CLOUDINARY_CLOUD_NAME", "")
        self.CLOUDINARY_API_KEY: str = os.getenv("CLOUDINARY_API_KEY", "")
        self.CLOUDINARY_API_SECRET: str = os.getenv("CLOUDINARY_API_SECRET", "")
        self.CLOUDINARY_FOLDER: str = os.getenv("CLOUDINARY_FOLDER", "marketplace-products")

        self.GITHUB_OWNER: str = os.getenv("GITHUB_OWNER", "")
        self.GITHUB_REPO: str = os.getenv("GITHUB_REPO", "")
        self.GITHUB_BRANCH: str = os.getenv("GITHUB_BRANCH", "main")
        self.GITHUB_TOKEN: str = os.getenv("GITHUB_TOKEN", "")
        self.GITHUB_PRODUCTS_PATH: str = os.getenv("GITHUB_PRODUCTS_PATH", "data/products.json")
        self.GITHUB_IMAGES_DIR: str = os.getenv("GITHUB_IMAGES_DIR", "images")
        self.GITHUB_WRITE_RETRIES: int = int(os.getenv("GITHUB_WRITE_RETRIES", "3"))

        self.REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "15"))
        self.MAX_UPLOAD_MB: int = int(os.getenv("MAX_UPLOAD_MB", "10"))
        self.CORS_ORIGINS: list[str] = _split(os.getenv("CORS_ORIGINS", "*"))
        self.STATIC_DIR: str = os.getenv("STATIC_DIR", "public")

        self.PORT: int = int(os.getenv("PORT", "3000"))
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_MB * 1024 * 1024

    @property
    def cloudinary_configured(self) -> bool:
        return bool(self.CLOUDINARY_CLOUD_NAME and self.CLOUDINARY_API_KEY and self.CLOUDINARY_API_SECRET)

    @property
    def github_configured(self) -> bool:
        return bool(self.GITHUB_OWNER and self.GITHUB_REPO and self.GITHUB_TOKEN)
