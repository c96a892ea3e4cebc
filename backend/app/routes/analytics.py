from fastapi import APIRouter, Depends
from app.dependencies import get_current_user_id
from app.services import crm_service


router = APIRouter()


@router.get("/today")
def get_today_stats(user_id: str = Depends(get_current_user_id)):
    """Dashboard counters for today (UTC)"""
    return crm_service.get_analytics_snapshot(user_id)
