# src/schemas/activity_log.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field

from src.models.activity_log import ActivityCategory, ActivitySeverity, ActorType


# --------- Событие в очереди (неизменяемое) ---------
class ActivityLogEvent(BaseModel):
    """
    Полезная нагрузка задачи очереди activity-logs.
    created_at проставляется в момент постановки и переносится в БД как есть.
    """
    actor_id: Optional[str] = None
    actor_type: ActorType
    action: str
    category: ActivityCategory
    description: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    severity: ActivitySeverity = ActivitySeverity.INFO
    merchant_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    class Config:
        frozen = True


# --------- Выдача ---------
class ActivityLogOut(BaseModel):
    id: str
    actor_id: Optional[str] = None
    actor_type: ActorType
    action: str
    category: ActivityCategory
    description: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))
    severity: ActivitySeverity
    merchant_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PaginationOut(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


class ActivityLogListOut(BaseModel):
    logs: List[ActivityLogOut]
    pagination: PaginationOut


class ActivityStatsOut(BaseModel):
    today: int
    byCategory: Dict[str, int]
    bySeverity: Dict[str, int]
    recentErrors: List[ActivityLogOut]


class ActivityTimelineOut(BaseModel):
    logs: List[ActivityLogOut]


# --------- Конверты ответов {"success", "data"} ---------
class ActivityLogListResponse(BaseModel):
    success: bool = True
    data: ActivityLogListOut


class ActivityStatsResponse(BaseModel):
    success: bool = True
    data: ActivityStatsOut


class ActivityTimelineResponse(BaseModel):
    success: bool = True
    data: ActivityTimelineOut


# --------- Фильтры списка ---------
class ActivityLogFilters(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)
    category: Optional[ActivityCategory] = None
    severity: Optional[ActivitySeverity] = None
    merchant_id: Optional[str] = None
    actor_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    search: Optional[str] = None
