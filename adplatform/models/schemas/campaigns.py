"""
Pydantic schemas for campaign requests.
"""
from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict
from ..db.enums import CampaignStatus


class BudgetConfig(BaseModel):
    daily_budget_eur: float
    total_budget_eur: float


class CampaignCreate(BaseModel):
    clip_url: str = Field(min_length=1, max_length=500)
    clip_title: str = Field(min_length=1, max_length=300)
    artists_list: str = Field("", max_length=500)
    countries: List[str] = Field(min_length=1)
    targeting_config: Dict[str, Any] = Field(default_factory=dict)
    budget_config: BudgetConfig

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "clip_url": "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
            "clip_title": "Never Gonna Give You Up",
            "artists_list": "Rick Astley",
            "countries": ["IT", "FR"],
            "targeting_config": {"age_range": "18-34"},
            "budget_config": {"daily_budget_eur": 10, "total_budget_eur": 200}
        }
    })


class CampaignUpdate(BaseModel):
    clip_url: Optional[str] = Field(None, min_length=1, max_length=500)
    clip_title: Optional[str] = Field(None, min_length=1, max_length=300)
    artists_list: Optional[str] = Field(None, max_length=500)
    countries: Optional[List[str]] = Field(None, min_length=1)
    targeting_config: Optional[Dict[str, Any]] = None
    budget_config: Optional[BudgetConfig] = None


class CampaignLaunch(BaseModel):
    starts_at: Optional[datetime] = None


class CampaignRead(BaseModel):
    id: int
    client_account_id: int
    clip_url: str
    clip_title: str
    artists_list: str
    countries: List[str]
    targeting_config: Dict[str, Any]
    budget_config: Dict[str, Any]
    duration_days: int
    status: CampaignStatus
    starts_at: Optional[datetime]
    ends_at: Optional[datetime]
    actual_started_at: Optional[datetime]
    actual_ended_at: Optional[datetime]
    google_campaign_id: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)
