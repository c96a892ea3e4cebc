from pydantic import BaseModel
from typing import Optional


class WordPressLead(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    message: Optional[str] = None
    sourceUrl: Optional[str] = None


class WhatsAppConfigUpdate(BaseModel):
    businessPhone: Optional[str] = None
    phoneNumberId: Optional[str] = None
    accessToken: Optional[str] = None
    verifyToken: Optional[str] = None


class WhatsAppTestMessage(BaseModel):
    phone: Optional[str] = None
    text: Optional[str] = None
