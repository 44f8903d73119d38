"""
Database Schemas

Each Pydantic model corresponds to a MongoDB collection with the
collection name equal to the lowercase class name:
- User -> "user" collection
- Contact -> "contact" collection

The models only declare field rules. Hooks, indexes and persistence live in
documents.py, which runs every write through validate_document() first.
"""

from typing import ClassVar, Dict, Literal, Optional, Type, TypeVar

from bson import ObjectId
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError

# Matched by pydantic-core's regex engine, which runs in linear time.
# Every repeat starts with a separator, so a word run splits only one way.
WORD = "[A-Za-z0-9_]"
EMAIL_PATTERN = rf"^{WORD}+(?:[.-]{WORD}+)*@{WORD}+(?:[.-]{WORD}+)*(?:\.{WORD}{{2,3}})+$"

ModelT = TypeVar("ModelT", bound=BaseModel)


def _required_text(value: str, message: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(message)
    return value


def _lowercase_email(value):
    if not isinstance(value, str):
        return value
    value = value.lower()
    if not value:
        raise ValueError("Please provide an email")
    return value


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="Full name")
    email: str = Field(..., pattern=EMAIL_PATTERN, description="Email address, unique, stored lowercase")
    password: Optional[str] = Field(None, description="Bcrypt hash, never returned by default reads")
    google_id: Optional[str] = Field(None, description="Google account id (sparse unique)")
    profile_image: Optional[str] = Field(None, description="Profile image URL")
    role: Literal["user", "admin"] = Field("user", description="Access role: user, admin")
    is_active: bool = Field(True, description="Active account flag")
    is_email_verified: bool = Field(False, description="Email ownership confirmed")

    messages: ClassVar[Dict[str, Dict[str, str]]] = {
        "name": {"missing": "Please provide a name"},
        "email": {
            "missing": "Please provide an email",
            "string_pattern_mismatch": "Please provide a valid email",
        },
        "role": {"literal_error": "Role must be either user or admin"},
    }

    @field_validator("name")
    @classmethod
    def clean_name(cls, v: str) -> str:
        return _required_text(v, "Please provide a name")

    @field_validator("email", mode="before")
    @classmethod
    def clean_email(cls, v):
        return _lowercase_email(v)


class Contact(BaseModel):
    """
    Contact messages collection (collection name: contact)
    A null user_id marks an anonymous submission.
    """
    name: str = Field(..., description="Sender name")
    email: str = Field(..., pattern=EMAIL_PATTERN, description="Reply address, stored lowercase")
    message: str = Field(..., description="Message body, 10 to 1000 characters")
    user_id: Optional[str] = Field(None, description="Id of the submitting user, if signed in")
    is_read: bool = Field(False, description="Seen by an admin")

    messages: ClassVar[Dict[str, Dict[str, str]]] = {
        "name": {"missing": "Please provide a name"},
        "email": {
            "missing": "Please provide an email",
            "string_pattern_mismatch": "Please provide a valid email",
        },
        "message": {"missing": "Please provide a message"},
    }

    @field_validator("name")
    @classmethod
    def clean_name(cls, v: str) -> str:
        v = _required_text(v, "Please provide a name")
        if len(v) > 50:
            raise ValueError("Name cannot be longer than 50 characters")
        return v

    @field_validator("email", mode="before")
    @classmethod
    def clean_email(cls, v):
        return _lowercase_email(v)

    @field_validator("message")
    @classmethod
    def clean_message(cls, v: str) -> str:
        v = _required_text(v, "Please provide a message")
        if len(v) < 10:
            raise ValueError("Message must be at least 10 characters long")
        if len(v) > 1000:
            raise ValueError("Message cannot be longer than 1000 characters")
        return v

    @field_validator("user_id", mode="before")
    @classmethod
    def clean_user_id(cls, v):
        if v is None:
            return None
        if isinstance(v, ObjectId):
            return str(v)
        if not isinstance(v, str) or not ObjectId.is_valid(v):
            raise ValueError("Invalid user id")
        return v


def _describe(schema: Type[BaseModel], error: dict) -> dict:
    field = ".".join(str(part) for part in error["loc"])
    kind = error["type"]
    if kind == "string_type" and error.get("input") is None:
        kind = "missing"
    custom = getattr(schema, "messages", {}).get(field, {}).get(kind)
    if custom:
        message = custom
    elif kind == "value_error":
        message = str(error["ctx"]["error"])
    else:
        message = error["msg"]
    return {"field": field, "message": message}


def validate_document(schema: Type[ModelT], data: dict) -> ModelT:
    """
    Run every rule of `schema` over `data`.

    Returns the cleaned model. When any rule fails, raises a single
    ValidationError listing one {field, message} entry per failure.
    """
    try:
        return schema.model_validate(data)
    except PydanticValidationError as exc:
        errors = [_describe(schema, err) for err in exc.errors()]
        raise ValidationError("Validation failed", errors) from exc
