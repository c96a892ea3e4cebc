import enum
from typing import Optional
from app.utils.ids import create_id
from app.utils.time import now_iso


class ConversationState(str, enum.Enum):
    NEW = "NEW"
    FOLLOW_UP = "FOLLOW_UP"
    CLOSED = "CLOSED"


class MessageDirection(str, enum.Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class MessageChannel(str, enum.Enum):
    WHATSAPP = "WHATSAPP"


class MessageStatus(str, enum.Enum):
    RECEIVED = "RECEIVED"
    PENDING = "PENDING"
    SENT = "SENT"
    MOCKED = "MOCKED"
    FAILED = "FAILED"


class MessageSource(str, enum.Enum):
    WHATSAPP_WEBHOOK = "WHATSAPP_WEBHOOK"
    WORDPRESS_FORM = "WORDPRESS_FORM"
    MANUAL_TEST = "MANUAL_TEST"
    DASHBOARD = "DASHBOARD"
    AUTOMATION = "AUTOMATION"
    FOLLOW_UP_AUTOMATION = "FOLLOW_UP_AUTOMATION"
    SETUP_TEST = "SETUP_TEST"


CONVERSATION_STATES = {state.value for state in ConversationState}

UNKNOWN_CONTACT_NAME = "Unknown"


def normalize_phone(phone) -> str:
    """Strip every whitespace character; phones are otherwise kept as given"""
    return "".join(str(phone or "").split())


def new_conversation(name: str, phone: str, source: str) -> dict:
    now = now_iso()
    return {
        "id": create_id("conv"),
        "name": name,
        "phone": phone,
        "state": ConversationState.NEW.value,
        "source": source,
        "createdAt": now,
        "updatedAt": now,
        "lastMessageAt": now,
        "lastMessageText": "",
        "followUpAt": None,
        "followUpReminderSentAt": None,
        "notes": [],
    }


def new_message(
    conversation_id: str,
    direction: str,
    text: str,
    source: str,
    status: str = MessageStatus.RECEIVED.value,
    template_id: Optional[str] = None,
) -> dict:
    return {
        "id": create_id("msg"),
        "conversationId": conversation_id,
        "direction": direction,
        "text": text,
        "createdAt": now_iso(),
        "channel": MessageChannel.WHATSAPP.value,
        "source": source,
        "status": status,
        "templateId": template_id,
    }


def new_note(text: str) -> dict:
    return {
        "id": create_id("note"),
        "text": text,
        "createdAt": now_iso(),
    }
