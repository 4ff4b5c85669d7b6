from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from buildmart.core.auth import AuthUser
from buildmart.core.database import get_db
from buildmart.core.rbac import require_permissions
from buildmart.dashboard.schemas import DashboardRead, TimeRange
from buildmart.dashboard.service import dashboard_service

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


@router.get("", response_model=DashboardRead)
def get_dashboard(
    time_range: TimeRange = Query(default="7d", alias="timeRange"),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_permissions("read:dashboard")),
) -> DashboardRead:
    return dashboard_service.overview(db, time_range)
