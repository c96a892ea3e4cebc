import enum
from app.utils.ids import create_id
from app.utils.time import now_iso


class TemplateCategory(str, enum.Enum):
    AUTO_REPLY = "AUTO_REPLY"
    FOLLOW_UP = "FOLLOW_UP"
    CUSTOM = "CUSTOM"


FIRST_INQUIRY_TEMPLATE_ID = "tpl_first_inquiry"
AFTER_HOURS_TEMPLATE_ID = "tpl_after_hours"
FOLLOW_UP_TEMPLATE_ID = "tpl_follow_up"


def new_template(name: str, body: str, category: str = TemplateCategory.CUSTOM.value, template_id: str = None) -> dict:
    now = now_iso()
    return {
        "id": template_id or create_id("tpl"),
        "name": name,
        "body": body,
        "category": category,
        "createdAt": now,
        "updatedAt": now,
    }


def default_templates() -> list:
    return [
        new_template(
            "First Inquiry Reply",
            "Thanks for reaching out. We received your message and will reply shortly.",
            TemplateCategory.AUTO_REPLY.value,
            FIRST_INQUIRY_TEMPLATE_ID,
        ),
        new_template(
            "After Hours Reply",
            "Thanks for your message. We are offline now, but we will respond during business hours.",
            TemplateCategory.AUTO_REPLY.value,
            AFTER_HOURS_TEMPLATE_ID,
        ),
        new_template(
            "Follow-up Reminder",
            "Quick follow-up on your request. Let us know if you need any help.",
            TemplateCategory.FOLLOW_UP.value,
            FOLLOW_UP_TEMPLATE_ID,
        ),
    ]
