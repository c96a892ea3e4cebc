"""
Outbound delivery outside the store lock.

Outgoing messages are first recorded as PENDING inside a transaction. Once that
transaction is closed they are sent, and the outcome (status, externalId,
error) is written back onto the stored message by id in a second, short
transaction.
"""
import logging
from typing import List, Optional, Tuple

from app.database import get_or_create_workspace, get_store
from app.models.conversation import MessageSource
from app.models.workspace import append_log
from app.services.whatsapp_service import deliver_message

logger = logging.getLogger(__name__)

DELIVERY_RESULT_KEYS = ("status", "externalId", "error")

AUTOMATION_LOG_EVENTS = {
    MessageSource.AUTOMATION.value: "automation.reply",
    MessageSource.FOLLOW_UP_AUTOMATION.value: "automation.follow_up_reminder",
}


def record_delivery_results(workspace: dict, messages: List[dict]):
    stored_by_id = {message.get("id"): message for message in workspace["messages"]}

    for message in messages:
        stored = stored_by_id.get(message["id"])
        if stored is None:
            logger.warning(f"Delivered message {message['id']} no longer exists, result dropped")
        else:
            for key in DELIVERY_RESULT_KEYS:
                if key in message:
                    stored[key] = message[key]

        event = AUTOMATION_LOG_EVENTS.get(message.get("source"))
        if event:
            append_log(workspace, event, {
                "conversationId": message["conversationId"],
                "messageId": message["id"],
                "templateId": message.get("templateId"),
                "status": message.get("status"),
            })


async def deliver_pending_messages(
    user_id: str,
    deliveries: List[Tuple[dict, str]],
    whatsapp_config: Optional[dict] = None,
) -> List[dict]:
    """
    Send already-saved PENDING messages, given as (message, recipient phone)
    pairs, then store each outcome. Must not be called while holding the
    store lock.
    """
    if not deliveries:
        return []

    for message, to in deliveries:
        await deliver_message(message, to, whatsapp_config)

    messages = [message for message, _ in deliveries]
    async with get_store().async_transaction() as document:
        record_delivery_results(get_or_create_workspace(document, user_id), messages)

    return messages
