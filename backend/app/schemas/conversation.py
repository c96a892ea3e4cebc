from pydantic import BaseModel
from typing import Optional


class ConversationUpdate(BaseModel):
    state: Optional[str] = None
    followUpAt: Optional[str] = None


class NoteCreate(BaseModel):
    text: Optional[str] = None


class MessageCreate(BaseModel):
    text: Optional[str] = None
    templateId: Optional[str] = None


class InboundTestMessage(BaseModel):
    phone: Optional[str] = None
    name: Optional[str] = None
    text: Optional[str] = None
