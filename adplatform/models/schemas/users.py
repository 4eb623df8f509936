"""
Pydantic schemas for user-related operations.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, EmailStr, ConfigDict
from ..db.enums import UserRole


class UserCreate(BaseModel):
    email: EmailStr
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    role: UserRole = UserRole.CLIENT

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "email": "artist@example.com",
            "first_name": "Mia",
            "last_name": "Rossi",
            "role": "CLIENT"
        }
    })


class UserRead(BaseModel):
    id: int
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    role: UserRole
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserCreated(UserRead):
    """Returned once at signup; the only response that exposes the API key."""
    api_key: str


class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
