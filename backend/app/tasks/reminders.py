import asyncio
import logging
from datetime import datetime, timezone
from app.config import settings
from app.database import get_or_create_workspace, get_store
from app.models.conversation import ConversationState, MessageSource
from app.services.automation_service import queue_automation_messages
from app.services.delivery_service import deliver_pending_messages
from app.services.conversation_service import get_template_by_id, is_follow_up_due
from app.utils.time import now_iso

logger = logging.getLogger(__name__)


async def process_follow_up_reminders():
    """
    Send the follow-up reminder template to every FOLLOW_UP conversation whose
    followUpAt has passed, across all workspaces. A conversation gets one
    reminder per followUpAt value: followUpReminderSentAt blocks repeats until
    followUpAt is changed again.

    Reminders are queued and marked under the store lock; the sends happen
    after it is released.
    """
    store = get_store()
    reminders = []
    queued_by_user = {}

    async with store.async_snapshot() as document:
        now = datetime.now(timezone.utc)
        user_ids = [user["id"] for user in document["users"]]

        for user_id in user_ids:
            workspace = get_or_create_workspace(document, user_id)
            automation = workspace["automation"]

            if not automation.get("followUpReminderEnabled"):
                continue

            template = get_template_by_id(workspace, automation.get("followUpReminderTemplateId"))
            if not template:
                logger.warning(f"Follow-up reminders enabled for user {user_id} but template is missing")
                continue

            deliveries = []
            for conversation in workspace["conversations"]:
                if conversation.get("state") != ConversationState.FOLLOW_UP.value:
                    continue

                if conversation.get("followUpReminderSentAt") or not is_follow_up_due(conversation, now):
                    continue

                message = queue_automation_messages(
                    workspace,
                    conversation,
                    [template],
                    source=MessageSource.FOLLOW_UP_AUTOMATION.value,
                )[0]

                conversation["followUpReminderSentAt"] = now_iso()
                conversation["updatedAt"] = conversation["followUpReminderSentAt"]
                deliveries.append((message, conversation["phone"]))
                reminders.append({
                    "userId": user_id,
                    "conversationId": conversation["id"],
                    "messageId": message["id"],
                })

            if deliveries:
                queued_by_user[user_id] = (deliveries, workspace["whatsappConfig"])

        if reminders:
            store.save(document)

    for user_id, (deliveries, whatsapp_config) in queued_by_user.items():
        await deliver_pending_messages(user_id, deliveries, whatsapp_config)

    logger.info(f"Sent {len(reminders)} follow-up reminder(s)")
    return reminders


async def run_reminder_worker(interval_seconds: int = None):
    """Run the follow-up sweep now and then every `interval_seconds` until cancelled"""
    interval = interval_seconds or settings.AUTOMATION_INTERVAL_SECONDS

    while True:
        try:
            await process_follow_up_reminders()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Follow-up reminder sweep failed: {e}", exc_info=True)

        await asyncio.sleep(interval)


if __name__ == "__main__":
    # For testing - run one sweep directly
    logging.basicConfig(level=settings.LOG_LEVEL)
    reminders = asyncio.run(process_follow_up_reminders())
    print(f"Complete! Sent {len(reminders)} reminder(s)")
