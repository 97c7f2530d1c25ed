from datetime import date, datetime, timezone
from typing import Annotated, Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from models import TransactionType

OBJECT_ID_PATTERN = r"^[0-9a-f]{24}$"
ISO_DATE_LENGTH = len("2025-01-05")

CategoryLabel = Annotated[str, Field(min_length=1, max_length=100)]


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class RegisterIn(WireModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginIn(WireModel):
    email: EmailStr
    password: str


class PublicUser(WireModel):
    id: str
    email: str


class AuthOut(WireModel):
    token: str
    user: PublicUser


class EntityIdIn(WireModel):
    id: str = Field(
        ...,
        pattern=OBJECT_ID_PATTERN,
        validation_alias=AliasChoices("id", "_id"),
    )


class TransactionIn(WireModel):
    type: TransactionType
    amount: float = Field(..., strict=True, allow_inf_nan=False)
    category: list[CategoryLabel]
    date: datetime
    description: Optional[str] = None

    @field_validator("date")
    @classmethod
    def _date_to_naive_utc(cls, value: datetime) -> datetime:
        return _naive_utc(value)


class TransactionUpdateIn(WireModel):
    id: str = Field(
        ...,
        pattern=OBJECT_ID_PATTERN,
        validation_alias=AliasChoices("id", "_id"),
    )
    type: Optional[TransactionType] = None
    amount: Optional[float] = Field(default=None, strict=True, allow_inf_nan=False)
    category: Optional[list[CategoryLabel]] = None
    date: Optional[datetime] = None
    description: Optional[str] = None

    @field_validator("date")
    @classmethod
    def _date_to_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _naive_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _required_fields_not_null(self) -> "TransactionUpdateIn":
        for name in ("type", "amount", "category", "date"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude={"id"})


class PaginationIn(WireModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=25, ge=1, le=100)


class TransactionFilterIn(WireModel):
    pagination: PaginationIn = Field(default_factory=PaginationIn)
    type: Optional[TransactionType] = None
    category: Optional[list[CategoryLabel]] = None
    created_at: Optional[date] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _day_from_timestamp(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return _naive_utc(value).date()
        if isinstance(value, str) and len(value.strip()) > ISO_DATE_LENGTH:
            return _naive_utc(datetime.fromisoformat(value.strip())).date()
        return value


class TransactionOut(WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: str
    user_id: str
    type: TransactionType
    amount: float
    category: list[str]
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None


class TransactionAck(WireModel):
    acknowledged: bool
    inserted_id: Optional[str] = None


class TransactionPage(WireModel):
    transactions: list[TransactionOut]
    total_count: int
    page: int
    page_size: int
    total_pages: int
