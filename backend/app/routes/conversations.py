from fastapi import APIRouter, Depends, HTTPException, status
from typing import Optional
from app.dependencies import get_current_user_id
from app.exceptions import ValidationError
from app.models.conversation import MessageSource
from app.schemas.conversation import ConversationUpdate, InboundTestMessage, MessageCreate, NoteCreate
from app.services import crm_service


router = APIRouter()


@router.get("")
def get_conversations(
    state: Optional[str] = None,
    search: Optional[str] = None,
    user_id: str = Depends(get_current_user_id)
):
    """Get conversations for the inbox, most recent first"""
    return crm_service.get_conversations(user_id, state=state, search=search)


@router.get("/follow-ups/pending")
def get_pending_follow_ups(user_id: str = Depends(get_current_user_id)):
    """Conversations whose follow-up time has passed"""
    return crm_service.get_pending_follow_ups(user_id)


@router.get("/{conversation_id}")
def get_conversation(conversation_id: str, user_id: str = Depends(get_current_user_id)):
    """Get a conversation with all its messages"""

    conversation = crm_service.get_conversation_details(user_id, conversation_id)
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")

    return conversation


@router.patch("/{conversation_id}")
def update_conversation(
    conversation_id: str,
    update: ConversationUpdate,
    user_id: str = Depends(get_current_user_id)
):
    """Update conversation state and/or follow-up time"""

    kwargs = {"state": update.state}
    if "followUpAt" in update.model_fields_set:
        kwargs["follow_up_at"] = update.followUpAt

    try:
        conversation = crm_service.update_conversation(user_id, conversation_id, **kwargs)
    except ValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")

    return conversation


@router.post("/{conversation_id}/notes", status_code=status.HTTP_201_CREATED)
def add_note(conversation_id: str, data: NoteCreate, user_id: str = Depends(get_current_user_id)):
    text = (data.text or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Note text is required")

    note = crm_service.add_conversation_note(user_id, conversation_id, text)
    if not note:
        raise HTTPException(status_code=404, detail="Conversation not found")

    return note


@router.post("/{conversation_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(conversation_id: str, data: MessageCreate, user_id: str = Depends(get_current_user_id)):
    """Send a reply from the dashboard"""
    text = (data.text or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message text is required")

    message = await crm_service.send_manual_message(user_id, conversation_id, text, template_id=data.templateId or None)
    if not message:
        raise HTTPException(status_code=404, detail="Conversation not found")

    return message


@router.post("/ingest/inbound", status_code=status.HTTP_201_CREATED)
async def simulate_inbound(data: InboundTestMessage, user_id: str = Depends(get_current_user_id)):
    """Feed a fake inbound message through the automation engine"""
    phone = (data.phone or "").strip()
    name = (data.name or "Unknown").strip()
    text = (data.text or "").strip()

    if not phone or not text:
        raise HTTPException(status_code=400, detail="phone and text are required")

    return await crm_service.receive_inbound_message(
        user_id,
        phone=phone,
        name=name,
        text=text,
        source=MessageSource.MANUAL_TEST.value
    )
