"""
Automation decision engine.

Decides which templated auto-reply (if any) answers an inbound message, queues
it for delivery and validates automation configs before they are stored.
"""
import logging
import re
from typing import List, Set, Tuple

from zoneinfo import ZoneInfoNotFoundError

from app.models.conversation import MessageDirection, MessageSource, MessageStatus
from app.services.conversation_service import append_message, count_outbound_messages, get_template_by_id
from app.utils.time import is_valid_timezone, is_within_business_hours

logger = logging.getLogger(__name__)

AUTOMATION_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")

AUTOMATION_TOGGLE_KEYS = (
    "autoReplyOnFirstInquiry",
    "businessHoursReplyEnabled",
    "followUpReminderEnabled",
)
AUTOMATION_TEXT_KEYS = (
    "firstInquiryTemplateId",
    "afterHoursTemplateId",
    "followUpReminderTemplateId",
    "timezone",
    "businessHoursStart",
    "businessHoursEnd",
)

FULLY_MANUAL_WARNING = "All automation toggles are OFF. The system will run fully manual."
MESSAGE_FATIGUE_WARNING = "All automation rules are ON. Keep templates concise to avoid message fatigue."


def normalize_automation_config(current: dict, next_config: dict) -> dict:
    """
    Merge `next_config` onto `current`. Only recognised keys are taken; toggles
    become booleans and text fields are trimmed strings. Keys missing from
    `next_config` keep their current value.
    """
    current = current or {}
    next_config = next_config or {}
    merged = {}

    for key in AUTOMATION_TOGGLE_KEYS:
        value = next_config.get(key)
        merged[key] = bool(current.get(key) if value is None else value)

    for key in AUTOMATION_TEXT_KEYS:
        value = next_config.get(key)
        if value is None:
            value = current.get(key)
        merged[key] = str(value if value is not None else "").strip()

    return merged


def get_automation_validation(config: dict, template_ids: Set[str]) -> Tuple[List[str], List[str]]:
    """Return (errors, warnings). Errors block an update; warnings are advisory."""
    errors = []
    warnings = []

    if not config.get("timezone") or not is_valid_timezone(config.get("timezone")):
        errors.append("Timezone is invalid. Use a valid IANA timezone (example: Asia/Kolkata).")

    start = config.get("businessHoursStart") or ""
    end = config.get("businessHoursEnd") or ""

    if not AUTOMATION_TIME_PATTERN.match(start):
        errors.append("Business start time must be in HH:MM format.")

    if not AUTOMATION_TIME_PATTERN.match(end):
        errors.append("Business end time must be in HH:MM format.")

    if start == end:
        errors.append("Business start and end time cannot be the same.")

    if config.get("autoReplyOnFirstInquiry") and config.get("firstInquiryTemplateId") not in template_ids:
        errors.append("Auto-reply on first inquiry is enabled, but the template is missing.")

    if config.get("businessHoursReplyEnabled") and config.get("afterHoursTemplateId") not in template_ids:
        errors.append("After-hours auto-reply is enabled, but the template is missing.")

    if config.get("followUpReminderEnabled") and config.get("followUpReminderTemplateId") not in template_ids:
        errors.append("Follow-up reminders are enabled, but the template is missing.")

    enabled_count = count_enabled_features(config)
    if enabled_count == 0:
        warnings.append(FULLY_MANUAL_WARNING)
    elif enabled_count == len(AUTOMATION_TOGGLE_KEYS):
        warnings.append(MESSAGE_FATIGUE_WARNING)

    return errors, warnings


def count_enabled_features(config: dict) -> int:
    return sum(1 for key in AUTOMATION_TOGGLE_KEYS if config.get(key))


def template_ids_of(workspace: dict) -> Set[str]:
    return {template.get("id") for template in workspace["templates"]}


def _in_business_hours(automation: dict) -> bool:
    try:
        return is_within_business_hours(
            automation.get("timezone"),
            automation.get("businessHoursStart"),
            automation.get("businessHoursEnd"),
        )
    except (ZoneInfoNotFoundError, ValueError, TypeError) as e:
        # Stored configs predating validation; only the first-inquiry rule can fire.
        logger.warning(f"Cannot evaluate business hours for timezone {automation.get('timezone')!r}: {e}")
        return True


def queue_automation_messages(
    workspace: dict,
    conversation: dict,
    templates: List[dict],
    source: str = MessageSource.AUTOMATION.value,
) -> List[dict]:
    """Record one PENDING outbound message per template; delivery happens after the save"""
    return [
        append_message(
            workspace,
            conversation_id=conversation["id"],
            direction=MessageDirection.OUTBOUND.value,
            text=template["body"],
            source=source,
            template_id=template["id"],
            status=MessageStatus.PENDING.value,
        )
        for template in templates
    ]


def maybe_create_automatic_reply(workspace: dict, conversation: dict) -> List[dict]:
    """
    Decide the automatic reply for one inbound message and queue it as PENDING.

    Outside business hours the after-hours reply (when enabled and its
    template exists) is the only reply. Otherwise the first-inquiry reply goes
    out if the conversation has never had an outbound message.
    """
    automation = workspace.get("automation")
    if not automation:
        return []

    outbound_count = count_outbound_messages(workspace, conversation["id"])

    if not _in_business_hours(automation) and automation.get("businessHoursReplyEnabled"):
        template = get_template_by_id(workspace, automation.get("afterHoursTemplateId"))
        if template:
            logger.info(f"Queueing after-hours reply to conversation {conversation['id']}")
            return queue_automation_messages(workspace, conversation, [template])

    queued = []
    if automation.get("autoReplyOnFirstInquiry") and outbound_count == 0:
        template = get_template_by_id(workspace, automation.get("firstInquiryTemplateId"))
        if template:
            logger.info(f"Queueing first-inquiry reply to conversation {conversation['id']}")
            queued.append(template)

    return queue_automation_messages(workspace, conversation, queued)
