from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from typing import Optional
from app.dependencies import get_current_user_id
from app.services import crm_service


router = APIRouter()


class TemplatePayload(BaseModel):
    name: Optional[str] = None
    body: Optional[str] = None
    category: Optional[str] = None


@router.get("")
def get_templates(user_id: str = Depends(get_current_user_id)):
    return crm_service.get_templates(user_id)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_template(data: TemplatePayload, user_id: str = Depends(get_current_user_id)):
    """Create a reply template"""
    name = (data.name or "").strip()
    body = (data.body or "").strip()

    if not name or not body:
        raise HTTPException(status_code=400, detail="name and body are required")

    return crm_service.create_or_update_template(
        user_id,
        name=name,
        body=body,
        category=data.category or "CUSTOM"
    )


@router.patch("/{template_id}")
def update_template(template_id: str, data: TemplatePayload, user_id: str = Depends(get_current_user_id)):
    """Update a template (creates it under this id if it does not exist)"""
    return crm_service.create_or_update_template(
        user_id,
        template_id=template_id,
        name=data.name,
        body=data.body,
        category=data.category
    )
