from pydantic import BaseModel, Field
from typing import List, Optional, Dict
from datetime import datetime
from uuid import UUID

from app.models.analytics import AnalyticsPeriod


class PageMetric(BaseModel):
    page_id: str
    views: int
    unique_sessions: int
    unique_visitors: int
    average_time_on_page: float
    conversions: int
    dropoff_rate: float


class DropoffPoint(BaseModel):
    from_page_id: str
    to_page_id: str
    reached: int
    dropoffs: int
    dropoff_rate: float


class AnalyticsBucket(BaseModel):
    id: UUID
    funnel_id: UUID
    period: AnalyticsPeriod
    period_date: datetime
    variant_id: Optional[UUID] = None
    visitors: int
    unique_visitors: int
    page_views: int
    bounces: int
    bounce_rate: float
    average_time_on_site: int
    conversions: int
    conversion_rate: float
    revenue: float
    average_order_value: float
    source_breakdown: Dict[str, int]
    device_breakdown: Dict[str, int]
    page_analytics: List[PageMetric]
    dropoff_points: List[DropoffPoint]

    class Config:
        from_attributes = True


class RollupRequest(BaseModel):
    period: AnalyticsPeriod = AnalyticsPeriod.DAILY
    period_date: datetime
    variant_id: Optional[UUID] = None


class Insight(BaseModel):
    type: str
    priority: str
    message: str


class FunnelInsights(BaseModel):
    period: str
    total_sessions: int
    total_conversions: int
    conversion_rate: float
    insights: List[Insight] = Field(default_factory=list)
