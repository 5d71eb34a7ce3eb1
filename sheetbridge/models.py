# sheetbridge/models.py
import time
from datetime import datetime, timezone
from typing import Annotated, Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, StringConstraints, field_validator
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


class TokenSet(BaseModel):
    """Access/refresh token pair from one code exchange. Replaced whole, never patched."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    expiry: Optional[datetime] = None
    token_type: str = "Bearer"
    scope: Optional[str] = None

    @classmethod
    def from_provider(cls, token: Mapping[str, Any]) -> "TokenSet":
        expires_at = token.get("expires_at")
        if expires_at is None and token.get("expires_in") is not None:
            expires_at = int(time.time()) + int(token["expires_in"])
        return cls(
            access_token=token["access_token"],
            refresh_token=token.get("refresh_token"),
            expiry=datetime.fromtimestamp(int(expires_at), tz=timezone.utc) if expires_at is not None else None,
            token_type=token.get("token_type") or "Bearer",
            scope=token.get("scope"),
        )


class Record(BaseModel):
    name: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
    email: EmailStr

    @field_validator("email", mode="before")
    @classmethod
    def _strip_email(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("email")
    @classmethod
    def _normalise_email(cls, v: str) -> str:
        return v.lower()

    def as_row(self) -> list:
        return [self.name, self.email]


class SubmittedRecord(SQLModel, table=True):
    __tablename__ = "submitted_records"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(unique=True, index=True, max_length=320)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_type=DateTime(timezone=True))
