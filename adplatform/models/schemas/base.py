"""
Base schemas used across the application.
"""
from datetime import datetime, timezone
from typing import Optional, Any, Dict, Generic, List, TypeVar
from pydantic import BaseModel, Field, ConfigDict

T = TypeVar("T")


class ResponseBase(BaseModel):
    """Base response format for API endpoints with an optional arbitrary data payload."""
    success: bool = True
    message: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


class PageMeta(BaseModel):
    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PageMeta":
        return cls(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit if limit else 0)


class Page(BaseModel, Generic[T]):
    """One page of a paginated listing plus its pagination metadata."""
    items: List[T]
    pagination: PageMeta
