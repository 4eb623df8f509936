"""
Pydantic schemas for ad-account linking.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import LinkStatus


class LinkRequest(BaseModel):
    customer_id: str = Field(min_length=10, max_length=12, description="Google Ads customer id, dashes allowed")

    model_config = ConfigDict(json_schema_extra={"example": {"customer_id": "123-456-7890"}})


class ClientAccountRead(BaseModel):
    id: int
    user_id: int
    google_customer_id: Optional[str]
    link_status: LinkStatus
    link_requested_at: Optional[datetime]
    linked_at: Optional[datetime]
    last_sync_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)
