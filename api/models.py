"""
API models and schemas for the FastAPI application.

Documents are stored and exchanged with camelCase keys (``priceDiscount``,
``passwordConfirm``); the Python attributes are snake_case aliases of them.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Type

from bson import ObjectId
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

VERSION_KEY = "__v"

# Never serialized to clients
HIDDEN_USER_FIELDS = (
    "password",
    "passwordConfirm",
    "passwordResetToken",
    "passwordResetExpires",
    "active",
)


class CamelModel(BaseModel):
    """Base model exchanging camelCase keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


class Role(str, Enum):
    """User role enumeration."""
    USER = "user"
    ADMIN = "admin"


class Publisher(CamelModel):
    """Publisher information nested in a book."""
    name: Optional[str] = Field(None, description="Publisher name")
    published_date: Optional[datetime] = Field(None, description="Publication date")


class BookCreate(CamelModel):
    """Book document as validated before insert or after a merged update."""
    name: str = Field(..., min_length=1, description="Unique book title")
    author: str = Field(..., min_length=1, description="Book author")
    genre: str = Field(..., min_length=1, description="Book genre")
    price: float = Field(..., ge=0, description="Regular price")
    price_discount: Optional[float] = Field(None, ge=0, description="Discounted price, below price")
    available: bool = Field(True, description="Availability flag")
    publisher: Optional[Publisher] = Field(None, description="Publisher information")
    page_count: int = Field(..., gt=0, description="Number of pages")
    best_seller: bool = Field(False, description="Best-seller flag")
    summary: str = Field(..., min_length=1, description="Short summary")
    description: Optional[str] = Field(None, description="Long description")
    language: str = Field(..., min_length=1, description="Book language")
    rating_average: float = Field(4.5, ge=1, le=5, description="Average rating (1-5)")
    rating_quantity: int = Field(0, ge=0, description="Number of ratings")
    image: Optional[str] = Field(None, description="Cover image reference")

    @field_validator('price_discount')
    @classmethod
    def validate_price_discount(cls, v, info):
        """The discount must be strictly below the regular price."""
        price = info.data.get('price')
        if v is not None and price is not None and v >= price:
            raise PydanticCustomError(
                'discount_price',
                'Discount price ({value}) should be below regular price',
                {'value': v},
            )
        return v


class PasswordPair(CamelModel):
    """A new password together with its confirmation."""
    password: str = Field(..., min_length=8, max_length=72, description="Plain text password")
    password_confirm: str = Field(..., description="Must equal password")

    @field_validator('password_confirm')
    @classmethod
    def validate_password_confirm(cls, v, info):
        """Password confirmation must match the password."""
        if 'password' in info.data and v != info.data['password']:
            raise PydanticCustomError('password_mismatch', 'Passwords do not match!')
        return v


def _lowercase_email(v: str) -> str:
    return v.strip().lower()


class UserCreate(PasswordPair):
    """Signup payload."""
    name: str = Field(..., min_length=1, description="Display name")
    email: EmailStr = Field(..., description="Unique email address")
    photo: Optional[str] = Field(None, description="Photo reference")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return _lowercase_email(v)


class UserRecord(CamelModel):
    """Mutable part of a user document, re-validated on every update."""
    name: str = Field(..., min_length=1)
    email: EmailStr
    photo: Optional[str] = None
    role: Role = Role.USER
    active: bool = True

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        return _lowercase_email(v)


class LoginRequest(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordRequest(CamelModel):
    email: str = Field(..., min_length=1)


class PasswordUpdate(PasswordPair):
    """Payload for changing the password of the logged in user."""
    current_password: str = Field(..., min_length=1)


def to_aliases(model: Type[BaseModel], data: Dict[str, Any]) -> Dict[str, Any]:
    """Rename snake_case keys of ``data`` to the model's camelCase aliases."""
    aliases = {name: field.alias or name for name, field in model.model_fields.items()}
    return {aliases.get(key, key): value for key, value in data.items()}


def serialize_document(doc: Dict[str, Any], hidden=()) -> Dict[str, Any]:
    """Convert a stored document into a JSON-ready dict with a string ``id``."""
    result = {key: value for key, value in doc.items() if key not in hidden}
    if "_id" in result:
        result["id"] = str(result.pop("_id"))
    return jsonable_encoder(result, custom_encoder={ObjectId: str})


def serialize_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a user document with credentials and internal flags scrubbed."""
    return serialize_document(doc, hidden=HIDDEN_USER_FIELDS + (VERSION_KEY,))


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
