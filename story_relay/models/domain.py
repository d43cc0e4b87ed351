"""
Domain models shared by the admission, fetch, relay and storage layers.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PRIVILEGED_ROLES = frozenset({"admin", "premium"})


@dataclass
class User:
    """A bot user as stored in the users table."""

    id: int
    first_name: str = ""
    last_name: str = ""
    username: str = ""
    language_code: Optional[str] = None
    is_telegram_premium: bool = False
    premium_expires_at: Optional[datetime] = None
    role: str = "user"
    last_active_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p) or str(
            self.id
        )

    def is_bot_premium(self, now: Optional[datetime] = None) -> bool:
        """True for privileged roles or an unexpired bot premium subscription."""
        if self.role in PRIVILEGED_ROLES:
            return True
        if self.premium_expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.premium_expires_at > now


class CatalogItem(BaseModel):
    """A single story entry returned by the catalog API."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    relative_path: str = Field(alias="url")
    timestamp: int = Field(alias="date")
    caption: str = ""

    @field_validator("caption", mode="before")
    @classmethod
    def null_caption(cls, v):
        return v or ""


class Catalog(BaseModel):
    """The decoded catalog API response."""

    model_config = ConfigDict(populate_by_name=True)

    items: list[CatalogItem] = Field(default_factory=list, alias="stories")
    base_url: str = ""

    @field_validator("items", mode="before")
    @classmethod
    def null_items(cls, v):
        return v or []

    @field_validator("base_url", mode="before")
    @classmethod
    def null_base_url(cls, v):
        return v or ""


@dataclass
class FetchOutcome:
    """Result of downloading one catalog item to scratch storage."""

    index: int
    item: CatalogItem
    path: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.path is not None


@dataclass
class RequestRecord:
    """One ledger entry per completed request."""

    user_id: int
    input: str
    status: str = "success"
    created_at: Optional[datetime] = None
    id: Optional[int] = None


class RequestState(Enum):
    """Terminal states of a single relay request."""

    DENIED = "denied"
    FAILED = "failed"
    EMPTY = "empty"
    COMPLETE = "complete"
    PARTIAL = "partial"

    @property
    def recorded(self) -> bool:
        """Whether this state produces a ledger entry."""
        return self in (RequestState.EMPTY, RequestState.COMPLETE, RequestState.PARTIAL)
