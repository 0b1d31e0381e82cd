# src/routers/activity_logs.py
# РОУТЕР АУДИТ-ЛОГА (только ADMIN)
# -----------------------------------------------------------------------------
#  GET /api/activity-logs                                   - список с фильтрами и пагинацией
#  GET /api/activity-logs/stats?merchantId=                 - сводка за сегодня
#  GET /api/activity-logs/timeline/{resource_type}/{id}     - история одной сущности
#
# Ответы в конверте {"success": true, "data": ...}. Кривые фильтры (неизвестная
# категория, page < 1, битая дата) отсекает FastAPI → 422.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.activity_log import ActivityCategory, ActivitySeverity
from ..schemas.activity_log import (
    ActivityLogFilters,
    ActivityLogListResponse,
    ActivityStatsResponse,
    ActivityTimelineResponse,
)
from ..services.activity_log import get_activity_logs, get_activity_stats, get_resource_timeline
from ..utils.auth_dep import AuthUser, require_roles

router = APIRouter()


@router.get("", response_model=ActivityLogListResponse)
def list_activity_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    category: Optional[ActivityCategory] = Query(None),
    severity: Optional[ActivitySeverity] = Query(None),
    merchant_id: Optional[str] = Query(None, alias="merchantId"),
    actor_id: Optional[str] = Query(None, alias="actorId"),
    resource_type: Optional[str] = Query(None, alias="resourceType"),
    resource_id: Optional[str] = Query(None, alias="resourceId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    search: Optional[str] = Query(None, max_length=200),
    db: Session = Depends(get_db),
    _: AuthUser = Depends(require_roles("ADMIN")),
):
    filters = ActivityLogFilters(
        page=page,
        limit=limit,
        category=category,
        severity=severity,
        merchant_id=merchant_id,
        actor_id=actor_id,
        resource_type=resource_type,
        resource_id=resource_id,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )
    return {"success": True, "data": get_activity_logs(db, filters)}


@router.get("/stats", response_model=ActivityStatsResponse)
def activity_stats(
    merchant_id: Optional[str] = Query(None, alias="merchantId"),
    db: Session = Depends(get_db),
    _: AuthUser = Depends(require_roles("ADMIN")),
):
    return {"success": True, "data": get_activity_stats(db, merchant_id=merchant_id)}


@router.get("/timeline/{resource_type}/{resource_id}", response_model=ActivityTimelineResponse)
def resource_timeline(
    resource_type: str,
    resource_id: str,
    db: Session = Depends(get_db),
    _: AuthUser = Depends(require_roles("ADMIN")),
):
    return {"success": True, "data": get_resource_timeline(db, resource_type, resource_id)}
