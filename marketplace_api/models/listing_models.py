import re
from datetime import datetime
from typing import Annotated, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


Condition = Literal["Brand New", "Like New", "Excellent", "Good", "Fair"]

WHATSAPP_PATTERN = re.compile(r"^91\d{10}$")
REQUIRED_FIELDS = ("name", "price", "seller", "whatsapp", "condition", "description")


def _not_blank(value: str) -> str:
    if not value:
        raise ValueError("must not be empty")
    return value


def _check_whatsapp(value: str) -> str:
    if not WHATSAPP_PATTERN.match(value):
        raise ValueError("Invalid WhatsApp number format")
    return value


NonBlank = Annotated[str, AfterValidator(_not_blank)]
WhatsApp = Annotated[str, AfterValidator(_check_whatsapp)]


class BaseSchema(BaseModel):
    """Champs snake_case côté Python, camelCase dans le JSON."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ListingFields(BaseSchema):
    name: NonBlank
    price: int = Field(ge=1)
    seller: NonBlank
    whatsapp: WhatsApp
    condition: Condition
    description: NonBlank


class ListingCreate(ListingFields):
    image_path: NonBlank
    image_public_id: Optional[str] = None


class ListingUpdate(BaseSchema):
    """Mise à jour partielle : id et dateAdded ne sont jamais modifiables."""
    name: Optional[NonBlank] = None
    price: Optional[int] = Field(default=None, ge=1)
    seller: Optional[NonBlank] = None
    whatsapp: Optional[WhatsApp] = None
    condition: Optional[Condition] = None
    description: Optional[NonBlank] = None
    image_path: Optional[NonBlank] = None
    image_public_id: Optional[str] = None
    is_active: Optional[bool] = None


class ListingResponse(BaseSchema):
    id: str
    name: str
    price: int
    seller: str
    whatsapp: str
    condition: str
    description: str
    image_path: str
    image_public_id: Optional[str] = None
    date_added: datetime
    is_active: bool = True


class ListingFilters(BaseModel):
    search: Optional[str] = None
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    condition: Optional[str] = None
    sort: Optional[str] = None


class StatsResponse(BaseSchema):
    total_products: int
    total_sellers: int
    average_price: float


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    database: str
    backend: str


class ImageUploadResponse(BaseSchema):
    image_url: str
    image_public_id: str


class MessageResponse(BaseModel):
    message: str
