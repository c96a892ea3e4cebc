import logging
from datetime import datetime, timezone
from typing import Optional, List

from app.database import (
    find_workspace_by_phone_number_id,
    find_workspace_by_verify_token,
    get_or_create_workspace,
    get_store,
)
from app.exceptions import AutomationValidationError, ValidationError
from app.models.conversation import (
    CONVERSATION_STATES,
    ConversationState,
    MessageDirection,
    MessageSource,
    MessageStatus,
    new_note,
)
from app.models.template import TemplateCategory, new_template
from app.models.workspace import append_log
from app.services.automation_service import (
    count_enabled_features,
    get_automation_validation,
    maybe_create_automatic_reply,
    normalize_automation_config,
    template_ids_of,
)
from app.services.conversation_service import (
    append_message,
    conversation_messages,
    find_conversation,
    is_follow_up_due,
    sort_conversations,
    upsert_conversation_by_phone,
)
from app.services.delivery_service import deliver_pending_messages
from app.utils.time import now_iso, parse_iso, to_iso

logger = logging.getLogger(__name__)

_UNSET = object()


# ============== CONVERSATIONS ==============

def get_conversations(user_id: str, state: Optional[str] = None, search: Optional[str] = None) -> List[dict]:
    workspace = get_or_create_workspace(get_store().read(), user_id)
    conversations = sort_conversations(workspace["conversations"])

    if state and state != "ALL":
        conversations = [entry for entry in conversations if entry.get("state") == state]

    if search:
        term = search.lower()
        conversations = [
            entry
            for entry in conversations
            if term in str(entry.get("name") or "").lower()
            or term in str(entry.get("phone") or "").lower()
            or term in str(entry.get("lastMessageText") or "").lower()
        ]

    return conversations


def get_conversation_details(user_id: str, conversation_id: str) -> Optional[dict]:
    workspace = get_or_create_workspace(get_store().read(), user_id)
    conversation = find_conversation(workspace, conversation_id)
    if conversation is None:
        return None

    return {**conversation, "messages": conversation_messages(workspace, conversation_id)}


def update_conversation(user_id: str, conversation_id: str, state: Optional[str] = None, follow_up_at=_UNSET) -> Optional[dict]:
    """
    Change state and/or follow-up time. Passing follow_up_at (even None or "")
    resets followUpReminderSentAt so the reminder can fire again. Returns None
    for an unknown conversation before any field is validated.
    """
    with get_store().transaction() as document:
        workspace = get_or_create_workspace(document, user_id)
        conversation = find_conversation(workspace, conversation_id)
        if conversation is None:
            return None

        if state and state not in CONVERSATION_STATES:
            raise ValidationError("Invalid conversation state.")

        if follow_up_at is not _UNSET and follow_up_at not in (None, "") and parse_iso(follow_up_at) is None:
            raise ValidationError("followUpAt must be a valid ISO datetime.")

        if state:
            conversation["state"] = state

        if follow_up_at is not _UNSET:
            conversation["followUpAt"] = follow_up_at or None
            conversation["followUpReminderSentAt"] = None

        conversation["updatedAt"] = now_iso()
        return conversation


def add_conversation_note(user_id: str, conversation_id: str, text: str) -> Optional[dict]:
    with get_store().transaction() as document:
        workspace = get_or_create_workspace(document, user_id)
        conversation = find_conversation(workspace, conversation_id)
        if conversation is None:
            return None

        note = new_note(text)
        conversation.setdefault("notes", []).append(note)
        conversation["updatedAt"] = note["createdAt"]
        return note


def get_pending_follow_ups(user_id: str) -> List[dict]:
    workspace = get_or_create_workspace(get_store().read(), user_id)
    now = datetime.now(timezone.utc)

    due = [entry for entry in workspace["conversations"] if is_follow_up_due(entry, now)]
    return sorted(due, key=lambda entry: parse_iso(entry["followUpAt"]))


# ============== MESSAGES ==============

async def receive_inbound_message(
    user_id: str,
    phone: str,
    name: Optional[str],
    text: str,
    source: str = MessageSource.WHATSAPP_WEBHOOK.value,
) -> dict:
    """Record an inbound message and let the automation engine answer it"""
    async with get_store().async_transaction() as document:
        workspace = get_or_create_workspace(document, user_id)
        conversation = upsert_conversation_by_phone(workspace, phone, name=name, source=source)

        inbound = append_message(
            workspace,
            conversation_id=conversation["id"],
            direction=MessageDirection.INBOUND.value,
            text=text,
            source=source,
            status=MessageStatus.RECEIVED.value,
        )

        automatic_replies = maybe_create_automatic_reply(workspace, conversation)
        whatsapp_config = workspace["whatsappConfig"]

    await deliver_pending_messages(
        user_id,
        [(reply, conversation["phone"]) for reply in automatic_replies],
        whatsapp_config,
    )

    return {
        "conversation": conversation,
        "inbound": inbound,
        "automaticReplies": automatic_replies,
    }


async def send_manual_message(user_id: str, conversation_id: str, text: str, template_id: Optional[str] = None) -> Optional[dict]:
    async with get_store().async_transaction() as document:
        workspace = get_or_create_workspace(document, user_id)
        conversation = find_conversation(workspace, conversation_id)
        if conversation is None:
            return None

        message = append_message(
            workspace,
            conversation_id=conversation_id,
            direction=MessageDirection.OUTBOUND.value,
            text=text,
            source=MessageSource.DASHBOARD.value,
            template_id=template_id,
            status=MessageStatus.PENDING.value,
        )
        whatsapp_config = workspace["whatsappConfig"]

    await deliver_pending_messages(user_id, [(message, conversation["phone"])], whatsapp_config)
    return message


async def ingest_wordpress_lead(user_id: str, name: str, phone: str, message: str, source_url: Optional[str] = None) -> dict:
    return await receive_inbound_message(
        user_id,
        phone=phone,
        name=name,
        text=f"Website lead from {source_url or 'unknown source'}: {message}",
        source=MessageSource.WORDPRESS_FORM.value,
    )


async def send_setup_test_message(user_id: str, phone: str, text: str) -> dict:
    async with get_store().async_transaction() as document:
        workspace = get_or_create_workspace(document, user_id)
        conversation = upsert_conversation_by_phone(
            workspace,
            phone,
            name="WhatsApp Setup Test",
            source=MessageSource.SETUP_TEST.value,
        )

        message = append_message(
            workspace,
            conversation_id=conversation["id"],
            direction=MessageDirection.OUTBOUND.value,
            text=text,
            source=MessageSource.SETUP_TEST.value,
            status=MessageStatus.PENDING.value,
        )
        whatsapp_config = workspace["whatsappConfig"]

    await deliver_pending_messages(user_id, [(message, conversation["phone"])], whatsapp_config)
    return {"conversation": conversation, "message": message}


# ============== TEMPLATES ==============

def get_templates(user_id: str) -> List[dict]:
    workspace = get_or_create_workspace(get_store().read(), user_id)
    return workspace["templates"]


def create_or_update_template(
    user_id: str,
    template_id: Optional[str] = None,
    name: Optional[str] = None,
    body: Optional[str] = None,
    category: Optional[str] = None,
) -> dict:
    with get_store().transaction() as document:
        workspace = get_or_create_workspace(document, user_id)
        template = next((entry for entry in workspace["templates"] if entry.get("id") == template_id), None)

        if template is None:
            template = new_template(
                name=name,
                body=body,
                category=category or TemplateCategory.CUSTOM.value,
                template_id=template_id,
            )
            workspace["templates"].append(template)
        else:
            if name is not None:
                template["name"] = name
            if body is not None:
                template["body"] = body
            if category is not None:
                template["category"] = category
            template["updatedAt"] = now_iso()

        return template


# ============== AUTOMATION ==============

def get_automation_config(user_id: str) -> dict:
    workspace = get_or_create_workspace(get_store().read(), user_id)
    return workspace["automation"]


def get_automation_safety_snapshot(user_id: str) -> dict:
    workspace = get_or_create_workspace(get_store().read(), user_id)
    automation = workspace["automation"]
    errors, warnings = get_automation_validation(automation, template_ids_of(workspace))
    now = datetime.now(timezone.utc)

    return {
        "warnings": warnings,
        "errors": errors,
        "enabledFeatures": count_enabled_features(automation),
        "followUpsDueNow": sum(
            1
            for entry in workspace["conversations"]
            if entry.get("state") == ConversationState.FOLLOW_UP.value and is_follow_up_due(entry, now)
        ),
    }


def update_automation_config(user_id: str, next_config: dict) -> dict:
    """
    Merge, validate and store a new automation config. Any validation error
    rejects the whole update and nothing is written.
    """
    with get_store().transaction() as document:
        workspace = get_or_create_workspace(document, user_id)
        merged = normalize_automation_config(workspace["automation"], next_config)
        errors, warnings = get_automation_validation(merged, template_ids_of(workspace))

        if errors:
            raise AutomationValidationError(errors)

        workspace["automation"] = merged
        append_log(workspace, "automation.updated", {"enabledFeatures": count_enabled_features(merged)})

    logger.info(f"Automation config updated for user {user_id}")
    return {"config": merged, "warnings": warnings}


# ============== WHATSAPP CONFIG ==============

WHATSAPP_CONFIG_KEYS = ("businessPhone", "phoneNumberId", "accessToken", "verifyToken")


def get_whatsapp_config(user_id: str) -> dict:
    workspace = get_or_create_workspace(get_store().read(), user_id)
    return workspace["whatsappConfig"]


def update_whatsapp_config(user_id: str, updates: dict) -> dict:
    with get_store().transaction() as document:
        workspace = get_or_create_workspace(document, user_id)
        config = workspace["whatsappConfig"]

        for key in WHATSAPP_CONFIG_KEYS:
            if updates.get(key) is not None:
                config[key] = str(updates[key]).strip()

        append_log(workspace, "whatsapp.config_updated", {"phoneNumberId": config.get("phoneNumberId")})
        return config


def confirm_whatsapp_webhook(user_id: str) -> dict:
    with get_store().transaction() as document:
        workspace = get_or_create_workspace(document, user_id)
        workspace["whatsappConfig"]["webhookConfirmedAt"] = now_iso()
        return workspace["whatsappConfig"]


# ============== ANALYTICS ==============

def get_analytics_snapshot(user_id: str) -> dict:
    workspace = get_or_create_workspace(get_store().read(), user_id)
    day_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    new_inquiries_today = 0
    for message in workspace["messages"]:
        if message.get("direction") != MessageDirection.INBOUND.value:
            continue
        created_at = parse_iso(message.get("createdAt"))
        if created_at is not None and created_at >= day_start:
            new_inquiries_today += 1

    conversations = workspace["conversations"]
    return {
        "newInquiriesToday": new_inquiries_today,
        "pendingFollowUps": sum(
            1
            for entry in conversations
            if entry.get("state") == ConversationState.FOLLOW_UP.value and entry.get("followUpAt")
        ),
        "closedConversations": sum(1 for entry in conversations if entry.get("state") == ConversationState.CLOSED.value),
        "totalConversations": len(conversations),
        "since": to_iso(day_start),
    }


# ============== WEBHOOK ROUTING ==============

def resolve_webhook_user_id(phone_number_id: Optional[str]) -> Optional[str]:
    """
    Pick the workspace an incoming WhatsApp event belongs to: the one whose
    phoneNumberId matches, else the only registered user if there is exactly one.
    """
    document = get_store().read()
    match = find_workspace_by_phone_number_id(document, phone_number_id)
    if match:
        return match[0]

    if len(document["users"]) == 1:
        return document["users"][0]["id"]

    return None


def resolve_user_id_by_verify_token(verify_token: Optional[str]) -> Optional[str]:
    match = find_workspace_by_verify_token(get_store().read(), verify_token)
    return match[0] if match else None
