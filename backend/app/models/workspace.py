import copy
from app.config import settings
from app.models.template import (
    AFTER_HOURS_TEMPLATE_ID,
    FIRST_INQUIRY_TEMPLATE_ID,
    FOLLOW_UP_TEMPLATE_ID,
    default_templates,
)
from app.utils.ids import create_id
from app.utils.time import now_iso

WORKSPACE_LIST_KEYS = ("conversations", "messages", "templates", "logs")
WORKSPACE_OBJECT_KEYS = ("automation", "whatsappConfig")

MAX_LOG_ENTRIES = 200


def default_automation() -> dict:
    return {
        "autoReplyOnFirstInquiry": True,
        "firstInquiryTemplateId": FIRST_INQUIRY_TEMPLATE_ID,
        "businessHoursReplyEnabled": True,
        "afterHoursTemplateId": AFTER_HOURS_TEMPLATE_ID,
        "followUpReminderEnabled": True,
        "followUpReminderTemplateId": FOLLOW_UP_TEMPLATE_ID,
        "timezone": settings.APP_TIMEZONE,
        "businessHoursStart": settings.BUSINESS_HOURS_START,
        "businessHoursEnd": settings.BUSINESS_HOURS_END,
    }


def default_whatsapp_config() -> dict:
    return {
        "businessPhone": "",
        "phoneNumberId": "",
        "accessToken": "",
        "verifyToken": "",
        "webhookConfirmedAt": None,
    }


def create_workspace_seed() -> dict:
    return {
        "conversations": [],
        "messages": [],
        "templates": default_templates(),
        "automation": default_automation(),
        "whatsappConfig": default_whatsapp_config(),
        "logs": [],
    }


def ensure_workspace_shape(workspace):
    """
    Fill in any missing top-level workspace fields and missing automation /
    WhatsApp config keys. Returns (workspace, changed). Deep contents are not
    validated.
    """
    base = create_workspace_seed()

    if not isinstance(workspace, dict):
        return base, True

    changed = False

    for key in WORKSPACE_LIST_KEYS:
        if not isinstance(workspace.get(key), list):
            workspace[key] = base[key]
            changed = True

    for key in WORKSPACE_OBJECT_KEYS:
        if not isinstance(workspace.get(key), dict):
            workspace[key] = base[key]
            changed = True

    for section in WORKSPACE_OBJECT_KEYS:
        for key, value in base[section].items():
            if key not in workspace[section]:
                workspace[section][key] = copy.deepcopy(value)
                changed = True

    return workspace, changed


def append_log(workspace: dict, event: str, detail: dict = None) -> dict:
    entry = {
        "id": create_id("log"),
        "event": event,
        "detail": detail or {},
        "createdAt": now_iso(),
    }
    workspace["logs"].append(entry)
    if len(workspace["logs"]) > MAX_LOG_ENTRIES:
        del workspace["logs"][:-MAX_LOG_ENTRIES]
    return entry
