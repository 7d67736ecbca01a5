"""Dashboard endpoint."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..services.dashboard import DashboardService

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/data")
def dashboard_data(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return DashboardService(db).data(user)
