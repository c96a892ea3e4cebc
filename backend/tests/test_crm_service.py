"""Tests for the workspace-level CRM operations."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from app.database import get_or_create_workspace
from app.exceptions import AutomationValidationError, ValidationError
from app.services import crm_service
from app.utils.time import to_iso

IN_HOURS = "app.services.automation_service.is_within_business_hours"


def iso_in(minutes):
    return to_iso(datetime.now(timezone.utc) + timedelta(minutes=minutes))


def receive(user_id, phone="+15550001111", name="Lead", text="Hi", source="WHATSAPP_WEBHOOK"):
    with patch(IN_HOURS, return_value=True):
        return asyncio.run(crm_service.receive_inbound_message(user_id, phone=phone, name=name, text=text, source=source))


class TestReceiveInboundMessage:
    def test_records_inbound_and_first_reply(self, store, user_id):
        result = receive(user_id, text="Do you deliver?")

        assert result["inbound"]["direction"] == "INBOUND"
        assert result["inbound"]["status"] == "RECEIVED"
        assert [r["templateId"] for r in result["automaticReplies"]] == ["tpl_first_inquiry"]

        workspace = get_or_create_workspace(store.read(), user_id)
        assert len(workspace["conversations"]) == 1
        assert [m["direction"] for m in workspace["messages"]] == ["INBOUND", "OUTBOUND"]
        assert workspace["messages"][1]["status"] == "MOCKED"

    def test_second_message_reuses_conversation_without_reply(self, store, user_id):
        first = receive(user_id, phone="+1 555 000 1111")
        second = receive(user_id, phone="+15550001111", text="Hello again")

        assert first["conversation"]["id"] == second["conversation"]["id"]
        assert second["automaticReplies"] == []

    def test_workspaces_are_isolated(self, store, user_id):
        from app.services.auth_service import register_account

        other_id = register_account("Other", "other@example.com", "password123")["user"]["id"]
        receive(user_id)

        assert crm_service.get_conversations(other_id) == []
        assert len(crm_service.get_conversations(user_id)) == 1


class TestUpdateConversation:
    def test_rejects_unknown_state(self, store, user_id):
        conversation = receive(user_id)["conversation"]

        with pytest.raises(ValidationError, match="Invalid conversation state."):
            crm_service.update_conversation(user_id, conversation["id"], state="ARCHIVED")

    def test_rejects_bad_follow_up_time(self, store, user_id):
        conversation = receive(user_id)["conversation"]

        with pytest.raises(ValidationError, match="followUpAt must be a valid ISO datetime."):
            crm_service.update_conversation(user_id, conversation["id"], follow_up_at="tomorrow")

    def test_unknown_conversation_returns_none(self, store, user_id):
        assert crm_service.update_conversation(user_id, "conv_missing", state="CLOSED") is None

    def test_unknown_conversation_wins_over_invalid_fields(self, store, user_id):
        assert crm_service.update_conversation(user_id, "conv_missing", state="ARCHIVED") is None
        assert crm_service.update_conversation(user_id, "conv_missing", follow_up_at="tomorrow") is None

    def test_changing_follow_up_clears_reminder_marker(self, store, user_id, edit_workspace):
        conversation_id = receive(user_id)["conversation"]["id"]
        with edit_workspace() as workspace:
            workspace["conversations"][0]["followUpReminderSentAt"] = iso_in(-5)

        updated = crm_service.update_conversation(user_id, conversation_id, state="FOLLOW_UP", follow_up_at=iso_in(60))

        assert updated["state"] == "FOLLOW_UP"
        assert updated["followUpReminderSentAt"] is None

    def test_state_only_update_keeps_follow_up(self, store, user_id):
        conversation_id = receive(user_id)["conversation"]["id"]
        follow_up_at = iso_in(60)
        crm_service.update_conversation(user_id, conversation_id, state="FOLLOW_UP", follow_up_at=follow_up_at)

        updated = crm_service.update_conversation(user_id, conversation_id, state="CLOSED")

        assert updated["state"] == "CLOSED"
        assert updated["followUpAt"] == follow_up_at

    def test_empty_follow_up_clears_it(self, store, user_id):
        conversation_id = receive(user_id)["conversation"]["id"]
        crm_service.update_conversation(user_id, conversation_id, follow_up_at=iso_in(60))

        updated = crm_service.update_conversation(user_id, conversation_id, follow_up_at="")

        assert updated["followUpAt"] is None


class TestConversationQueries:
    def test_details_include_messages_in_order(self, store, user_id):
        conversation_id = receive(user_id)["conversation"]["id"]

        details = crm_service.get_conversation_details(user_id, conversation_id)

        assert [m["direction"] for m in details["messages"]] == ["INBOUND", "OUTBOUND"]
        assert crm_service.get_conversation_details(user_id, "conv_missing") is None

    def test_filter_by_state_and_search(self, store, user_id):
        first = receive(user_id, phone="+111", name="Asha", text="Need a quote")["conversation"]
        receive(user_id, phone="+222", name="Ravi", text="Where are you located?")
        crm_service.update_conversation(user_id, first["id"], state="CLOSED")

        assert [c["name"] for c in crm_service.get_conversations(user_id, state="CLOSED")] == ["Asha"]
        assert len(crm_service.get_conversations(user_id, state="ALL")) == 2
        assert [c["name"] for c in crm_service.get_conversations(user_id, search="ravi")] == ["Ravi"]
        assert [c["name"] for c in crm_service.get_conversations(user_id, search="+111")] == ["Asha"]

    def test_search_matches_last_message_text(self, store, user_id, edit_workspace):
        receive(user_id, name="Asha")
        with edit_workspace() as workspace:
            workspace["conversations"][0]["lastMessageText"] = "Quotation for 40 chairs"

        assert len(crm_service.get_conversations(user_id, search="CHAIRS")) == 1

    def test_add_note(self, store, user_id):
        conversation_id = receive(user_id)["conversation"]["id"]

        note = crm_service.add_conversation_note(user_id, conversation_id, "Call back Monday")

        details = crm_service.get_conversation_details(user_id, conversation_id)
        assert details["notes"] == [note]
        assert crm_service.add_conversation_note(user_id, "conv_missing", "x") is None

    def test_pending_follow_ups_sorted_and_due_only(self, store, user_id):
        a = receive(user_id, phone="+111")["conversation"]["id"]
        b = receive(user_id, phone="+222")["conversation"]["id"]
        c = receive(user_id, phone="+333")["conversation"]["id"]
        crm_service.update_conversation(user_id, a, follow_up_at=iso_in(-5))
        crm_service.update_conversation(user_id, b, follow_up_at=iso_in(-60))
        crm_service.update_conversation(user_id, c, follow_up_at=iso_in(60))

        assert [entry["id"] for entry in crm_service.get_pending_follow_ups(user_id)] == [b, a]


class TestOutboundMessages:
    def test_reply_is_saved_pending_and_sent_without_store_lock(self, store, user_id):
        observed = []

        async def send(**kwargs):
            if not store._lock.acquire(blocking=False):
                observed.append("store locked during send")
            else:
                store._lock.release()
                workspace = get_or_create_workspace(store.read(), user_id)
                observed.append([m["status"] for m in workspace["messages"]])
            return {"provider": "meta-whatsapp-cloud", "status": "SENT", "externalId": "wamid.1"}

        with patch("app.services.whatsapp_service.send_whatsapp_text_message", send):
            result = receive(user_id)

        assert observed == [["RECEIVED", "PENDING"]]
        assert result["automaticReplies"][0]["status"] == "SENT"
        workspace = get_or_create_workspace(store.read(), user_id)
        assert workspace["messages"][1]["externalId"] == "wamid.1"
        assert workspace["logs"][-1]["event"] == "automation.reply"

    def test_transport_failure_marks_reply_failed(self, store, user_id):
        async def failing_send(**kwargs):
            raise RuntimeError("network down")

        with patch("app.services.whatsapp_service.send_whatsapp_text_message", failing_send):
            result = receive(user_id)

        assert result["automaticReplies"][0]["status"] == "FAILED"
        stored = get_or_create_workspace(store.read(), user_id)["messages"][1]
        assert stored["status"] == "FAILED"
        assert stored["error"] == "network down"

    def test_manual_message(self, store, user_id):
        conversation_id = receive(user_id)["conversation"]["id"]

        message = asyncio.run(crm_service.send_manual_message(user_id, conversation_id, "We open at 9", template_id="tpl_x"))

        assert message["source"] == "DASHBOARD"
        assert message["status"] == "MOCKED"
        assert message["templateId"] == "tpl_x"
        details = crm_service.get_conversation_details(user_id, conversation_id)
        assert details["lastMessageText"] == "We open at 9"

    def test_manual_message_to_unknown_conversation(self, store, user_id):
        assert asyncio.run(crm_service.send_manual_message(user_id, "conv_missing", "Hi")) is None

    def test_wordpress_lead(self, store, user_id):
        with patch(IN_HOURS, return_value=True):
            result = asyncio.run(crm_service.ingest_wordpress_lead(
                user_id, name="Meera", phone="+91 90000 00000", message="Need pricing", source_url="https://shop.example.com/contact"
            ))

        assert result["inbound"]["text"] == "Website lead from https://shop.example.com/contact: Need pricing"
        assert result["inbound"]["source"] == "WORDPRESS_FORM"
        assert result["conversation"]["phone"] == "+919000000000"
        assert len(result["automaticReplies"]) == 1

    def test_wordpress_lead_without_source_url(self, store, user_id):
        with patch(IN_HOURS, return_value=True):
            result = asyncio.run(crm_service.ingest_wordpress_lead(user_id, name="Meera", phone="+1", message="Hello"))

        assert result["inbound"]["text"] == "Website lead from unknown source: Hello"

    def test_setup_test_message(self, store, user_id):
        result = asyncio.run(crm_service.send_setup_test_message(user_id, phone="+15559990000", text="Ping"))

        assert result["conversation"]["name"] == "WhatsApp Setup Test"
        assert result["message"]["source"] == "SETUP_TEST"
        assert result["message"]["direction"] == "OUTBOUND"
        assert result["message"]["status"] == "MOCKED"


class TestTemplates:
    def test_create_template(self, store, user_id):
        template = crm_service.create_or_update_template(user_id, name="Pricing", body="Our prices start at 10")

        assert template["id"].startswith("tpl_")
        assert template["category"] == "CUSTOM"
        assert len(crm_service.get_templates(user_id)) == 4

    def test_update_existing_template(self, store, user_id):
        template = crm_service.create_or_update_template(user_id, template_id="tpl_follow_up", body="Any update?")

        assert template["body"] == "Any update?"
        assert template["name"] == "Follow-up Reminder"
        assert len(crm_service.get_templates(user_id)) == 3


class TestAutomationConfig:
    def test_update_returns_config_and_warnings(self, store, user_id):
        result = crm_service.update_automation_config(user_id, {
            "autoReplyOnFirstInquiry": False,
            "businessHoursReplyEnabled": False,
            "followUpReminderEnabled": False,
        })

        assert result["config"]["autoReplyOnFirstInquiry"] is False
        assert result["warnings"] == ["All automation toggles are OFF. The system will run fully manual."]
        assert crm_service.get_automation_config(user_id) == result["config"]

    def test_invalid_update_is_rejected_whole(self, store, user_id):
        before = crm_service.get_automation_config(user_id)

        with pytest.raises(AutomationValidationError) as excinfo:
            crm_service.update_automation_config(user_id, {
                "autoReplyOnFirstInquiry": False,
                "businessHoursStart": "25:00",
            })

        assert excinfo.value.errors == ["Business start time must be in HH:MM format."]
        assert crm_service.get_automation_config(user_id) == before

    def test_enabling_rule_with_deleted_template_is_rejected(self, store, user_id):
        with pytest.raises(AutomationValidationError) as excinfo:
            crm_service.update_automation_config(user_id, {"firstInquiryTemplateId": "tpl_gone"})

        assert excinfo.value.errors == ["Auto-reply on first inquiry is enabled, but the template is missing."]

    def test_safety_snapshot(self, store, user_id):
        conversation_id = receive(user_id)["conversation"]["id"]
        crm_service.update_conversation(user_id, conversation_id, state="FOLLOW_UP", follow_up_at=iso_in(-1))

        snapshot = crm_service.get_automation_safety_snapshot(user_id)

        assert snapshot["errors"] == []
        assert snapshot["enabledFeatures"] == 3
        assert snapshot["warnings"] == ["All automation rules are ON. Keep templates concise to avoid message fatigue."]
        assert snapshot["followUpsDueNow"] == 1


class TestWhatsAppConfig:
    def test_update_only_known_keys(self, store, user_id):
        config = crm_service.update_whatsapp_config(user_id, {
            "phoneNumberId": " 123456 ",
            "accessToken": "secret-token",
            "webhookConfirmedAt": "2020-01-01T00:00:00.000Z",
        })

        assert config["phoneNumberId"] == "123456"
        assert config["accessToken"] == "secret-token"
        assert config["webhookConfirmedAt"] is None

    def test_confirm_webhook(self, store, user_id):
        config = crm_service.confirm_whatsapp_webhook(user_id)

        assert config["webhookConfirmedAt"] is not None
        assert crm_service.get_whatsapp_config(user_id)["webhookConfirmedAt"] == config["webhookConfirmedAt"]


class TestAnalytics:
    def test_snapshot_counts(self, store, user_id, edit_workspace):
        a = receive(user_id, phone="+111")["conversation"]["id"]
        b = receive(user_id, phone="+222")["conversation"]["id"]
        receive(user_id, phone="+333")
        crm_service.update_conversation(user_id, a, state="FOLLOW_UP", follow_up_at=iso_in(30))
        crm_service.update_conversation(user_id, b, state="CLOSED")
        with edit_workspace() as workspace:
            workspace["messages"].append({
                "id": "msg_old",
                "conversationId": a,
                "direction": "INBOUND",
                "createdAt": "2020-01-01T00:00:00.000Z",
            })

        snapshot = crm_service.get_analytics_snapshot(user_id)

        assert snapshot["newInquiriesToday"] == 3
        assert snapshot["pendingFollowUps"] == 1
        assert snapshot["closedConversations"] == 1
        assert snapshot["totalConversations"] == 3


class TestWebhookRouting:
    def test_single_user_fallback(self, store, user_id):
        assert crm_service.resolve_webhook_user_id("unknown-number") == user_id

    def test_phone_number_id_match_with_several_users(self, store, user_id):
        from app.services.auth_service import register_account

        other_id = register_account("Other", "other@example.com", "password123")["user"]["id"]
        crm_service.update_whatsapp_config(other_id, {"phoneNumberId": "222"})

        assert crm_service.resolve_webhook_user_id("222") == other_id
        assert crm_service.resolve_webhook_user_id("999") is None

    def test_resolve_by_verify_token(self, store, user_id):
        crm_service.update_whatsapp_config(user_id, {"verifyToken": "my-token"})

        assert crm_service.resolve_user_id_by_verify_token("my-token") == user_id
        assert crm_service.resolve_user_id_by_verify_token("other") is None
