from fastapi import APIRouter, Depends, HTTPException
from app.dependencies import get_current_user_id
from app.exceptions import AutomationValidationError
from app.schemas.automation import AutomationUpdate
from app.services import crm_service


router = APIRouter()


@router.get("")
def get_automation(user_id: str = Depends(get_current_user_id)):
    return crm_service.get_automation_config(user_id)


@router.get("/safety")
def get_automation_safety(user_id: str = Depends(get_current_user_id)):
    """Validation errors, warnings and due follow-ups for the current config"""
    return crm_service.get_automation_safety_snapshot(user_id)


@router.patch("")
def update_automation(update: AutomationUpdate, user_id: str = Depends(get_current_user_id)):
    """
    Update automation settings. Fields left out keep their current value.
    The update is rejected as a whole if the merged config is invalid.
    """
    try:
        return crm_service.update_automation_config(user_id, update.model_dump(exclude_none=True))
    except AutomationValidationError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={"message": e.message, "errors": e.errors}
        )
