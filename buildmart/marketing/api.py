from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from buildmart.core.auth import AuthUser
from buildmart.core.database import get_db
from buildmart.core.rbac import require_permissions
from buildmart.marketing.schemas import FacebookOverview, SyncResult
from buildmart.marketing.service import FacebookSyncService, get_facebook_sync_service

router = APIRouter(prefix="/api/marketing", tags=["marketing"])


@router.post("/sync/all", response_model=SyncResult)
def sync_all(
    db: Session = Depends(get_db),
    service: FacebookSyncService = Depends(get_facebook_sync_service),
    _user: AuthUser = Depends(require_permissions("manage:marketing")),
) -> SyncResult:
    return service.sync_all(db)


@router.get("/facebook/overview", response_model=FacebookOverview)
def facebook_overview(
    days: int = Query(default=365, ge=1, le=3650),
    db: Session = Depends(get_db),
    service: FacebookSyncService = Depends(get_facebook_sync_service),
    _user: AuthUser = Depends(require_permissions("read:marketing")),
) -> FacebookOverview:
    return service.overview(db, days)
