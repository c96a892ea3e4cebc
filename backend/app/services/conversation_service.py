"""
Conversation / message ledger over an in-memory workspace document.

These functions only mutate the workspace dict they are given; loading and
saving is the caller's job (see crm_service).
"""
import logging
from typing import List, Optional

from app.models.conversation import (
    UNKNOWN_CONTACT_NAME,
    MessageDirection,
    MessageStatus,
    new_conversation,
    new_message,
    normalize_phone,
)
from app.utils.time import parse_iso

logger = logging.getLogger(__name__)


def find_conversation(workspace: dict, conversation_id: str) -> Optional[dict]:
    for conversation in workspace["conversations"]:
        if conversation.get("id") == conversation_id:
            return conversation
    return None


def get_template_by_id(workspace: dict, template_id) -> Optional[dict]:
    if not template_id:
        return None
    for template in workspace["templates"]:
        if template.get("id") == template_id:
            return template
    return None


def upsert_conversation_by_phone(
    workspace: dict,
    phone: str,
    name: Optional[str] = UNKNOWN_CONTACT_NAME,
    source: str = "WHATSAPP",
) -> dict:
    """
    Return the conversation for `phone`, creating it if this number has never
    been seen. Numbers are compared with all whitespace removed. A placeholder
    "Unknown" name is replaced once a real one arrives.
    """
    normalized = normalize_phone(phone)
    conversation = next(
        (entry for entry in workspace["conversations"] if normalize_phone(entry.get("phone")) == normalized),
        None,
    )

    if conversation is None:
        conversation = new_conversation(name or UNKNOWN_CONTACT_NAME, normalized, source)
        workspace["conversations"].append(conversation)
        logger.info(f"Created conversation {conversation['id']} for {normalized}")
    elif name and conversation.get("name") == UNKNOWN_CONTACT_NAME:
        conversation["name"] = name

    return conversation


def append_message(
    workspace: dict,
    conversation_id: str,
    direction: str,
    text: str,
    source: str,
    template_id: Optional[str] = None,
    status: str = MessageStatus.RECEIVED.value,
) -> dict:
    """
    Record a message and bump the owning conversation's last-message fields.
    A message whose conversation is missing is still recorded.
    """
    message = new_message(conversation_id, direction, text, source, status=status, template_id=template_id)
    workspace["messages"].append(message)

    conversation = find_conversation(workspace, conversation_id)
    if conversation is not None:
        conversation["lastMessageAt"] = message["createdAt"]
        conversation["lastMessageText"] = text
        conversation["updatedAt"] = message["createdAt"]
    else:
        logger.warning(f"Message {message['id']} recorded for unknown conversation {conversation_id}")

    return message


def count_outbound_messages(workspace: dict, conversation_id: str) -> int:
    return sum(
        1
        for message in workspace["messages"]
        if message.get("conversationId") == conversation_id
        and message.get("direction") == MessageDirection.OUTBOUND.value
    )


def conversation_messages(workspace: dict, conversation_id: str) -> List[dict]:
    messages = [message for message in workspace["messages"] if message.get("conversationId") == conversation_id]
    return sorted(messages, key=lambda message: _sort_instant(message.get("createdAt")))


def sort_conversations(conversations: List[dict]) -> List[dict]:
    """Most recent activity first"""
    return sorted(conversations, key=lambda entry: _sort_instant(entry.get("lastMessageAt")), reverse=True)


def is_follow_up_due(conversation: dict, now) -> bool:
    follow_up_at = parse_iso(conversation.get("followUpAt"))
    return follow_up_at is not None and follow_up_at <= now


def _sort_instant(value):
    parsed = parse_iso(value)
    return parsed.timestamp() if parsed is not None else 0.0
