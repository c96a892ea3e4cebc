"""Tests for the follow-up reminder sweep."""

import asyncio
from datetime import datetime, timedelta, timezone

from app.database import get_or_create_workspace
from app.services import crm_service
from app.tasks.reminders import process_follow_up_reminders
from app.utils.time import to_iso


def iso_in(minutes):
    return to_iso(datetime.now(timezone.utc) + timedelta(minutes=minutes))


def create_conversation(edit_workspace, conversation_id="conv_1", state="FOLLOW_UP", follow_up_at=None):
    with edit_workspace() as workspace:
        workspace["conversations"].append({
            "id": conversation_id,
            "name": "Lead",
            "phone": "+15550001111",
            "state": state,
            "source": "WHATSAPP_WEBHOOK",
            "createdAt": iso_in(-120),
            "updatedAt": iso_in(-120),
            "lastMessageAt": iso_in(-120),
            "lastMessageText": "Hi",
            "followUpAt": follow_up_at,
            "followUpReminderSentAt": None,
            "notes": [],
        })


def reminder_messages(store, user_id):
    workspace = get_or_create_workspace(store.read(), user_id)
    return [m for m in workspace["messages"] if m.get("source") == "FOLLOW_UP_AUTOMATION"]


class TestProcessFollowUpReminders:
    def test_due_follow_up_gets_one_reminder(self, store, user_id, edit_workspace):
        create_conversation(edit_workspace, follow_up_at=iso_in(-5))

        reminders = asyncio.run(process_follow_up_reminders())

        assert reminders == [{
            "userId": user_id,
            "conversationId": "conv_1",
            "messageId": reminders[0]["messageId"],
        }]
        messages = reminder_messages(store, user_id)
        assert len(messages) == 1
        assert messages[0]["templateId"] == "tpl_follow_up"
        assert messages[0]["direction"] == "OUTBOUND"
        assert messages[0]["status"] == "MOCKED"

        conversation = crm_service.get_conversation_details(user_id, "conv_1")
        assert conversation["followUpReminderSentAt"] is not None
        assert conversation["lastMessageText"] == messages[0]["text"]

    def test_second_sweep_sends_nothing(self, store, user_id, edit_workspace):
        create_conversation(edit_workspace, follow_up_at=iso_in(-5))

        asyncio.run(process_follow_up_reminders())
        second = asyncio.run(process_follow_up_reminders())

        assert second == []
        assert len(reminder_messages(store, user_id)) == 1

    def test_future_follow_up_is_not_sent(self, store, user_id, edit_workspace):
        create_conversation(edit_workspace, follow_up_at=iso_in(30))

        assert asyncio.run(process_follow_up_reminders()) == []

    def test_only_follow_up_state_is_considered(self, store, user_id, edit_workspace):
        create_conversation(edit_workspace, "conv_new", state="NEW", follow_up_at=iso_in(-5))
        create_conversation(edit_workspace, "conv_closed", state="CLOSED", follow_up_at=iso_in(-5))

        assert asyncio.run(process_follow_up_reminders()) == []

    def test_disabled_reminders_send_nothing(self, store, user_id, edit_workspace):
        create_conversation(edit_workspace, follow_up_at=iso_in(-5))
        with edit_workspace() as workspace:
            workspace["automation"]["followUpReminderEnabled"] = False

        assert asyncio.run(process_follow_up_reminders()) == []

    def test_missing_template_sends_nothing(self, store, user_id, edit_workspace):
        create_conversation(edit_workspace, follow_up_at=iso_in(-5))
        with edit_workspace() as workspace:
            workspace["automation"]["followUpReminderTemplateId"] = "tpl_gone"

        assert asyncio.run(process_follow_up_reminders()) == []

    def test_new_follow_up_time_rearms_reminder(self, store, user_id, edit_workspace):
        create_conversation(edit_workspace, follow_up_at=iso_in(-5))
        asyncio.run(process_follow_up_reminders())

        crm_service.update_conversation(user_id, "conv_1", follow_up_at=iso_in(-1))
        reminders = asyncio.run(process_follow_up_reminders())

        assert len(reminders) == 1
        assert len(reminder_messages(store, user_id)) == 2

    def test_nothing_written_when_no_reminders_fire(self, store, user_id):
        before = store.path.stat().st_mtime_ns

        asyncio.run(process_follow_up_reminders())

        assert store.path.stat().st_mtime_ns == before

    def test_failed_delivery_still_marks_reminder_sent(self, store, user_id, edit_workspace, monkeypatch):
        from unittest.mock import AsyncMock

        from app.services import whatsapp_service

        create_conversation(edit_workspace, follow_up_at=iso_in(-5))
        monkeypatch.setattr(
            whatsapp_service, "send_whatsapp_text_message", AsyncMock(side_effect=RuntimeError("boom"))
        )

        asyncio.run(process_follow_up_reminders())

        assert reminder_messages(store, user_id)[0]["status"] == "FAILED"
        assert crm_service.get_conversation_details(user_id, "conv_1")["followUpReminderSentAt"] is not None

    def test_sends_happen_after_reminders_are_saved(self, store, user_id, edit_workspace, monkeypatch):
        from app.services import whatsapp_service

        create_conversation(edit_workspace, follow_up_at=iso_in(-5))
        seen_during_send = []

        async def send(**kwargs):
            if not store._lock.acquire(blocking=False):
                seen_during_send.append("store locked during send")
                return {"provider": "mock", "status": "MOCKED", "externalId": None}
            store._lock.release()
            conversation = crm_service.get_conversation_details(user_id, "conv_1")
            seen_during_send.append(conversation["followUpReminderSentAt"] is not None)
            return {"provider": "meta-whatsapp-cloud", "status": "SENT", "externalId": "wamid.9"}

        monkeypatch.setattr(whatsapp_service, "send_whatsapp_text_message", send)

        asyncio.run(process_follow_up_reminders())

        assert seen_during_send == [True]
        assert reminder_messages(store, user_id)[0]["status"] == "SENT"
