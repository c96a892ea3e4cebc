from pydantic import BaseModel
from typing import Optional


class AutomationUpdate(BaseModel):
    """Recognised automation keys; anything else in the request body is ignored"""
    autoReplyOnFirstInquiry: Optional[bool] = None
    firstInquiryTemplateId: Optional[str] = None
    businessHoursReplyEnabled: Optional[bool] = None
    afterHoursTemplateId: Optional[str] = None
    followUpReminderEnabled: Optional[bool] = None
    followUpReminderTemplateId: Optional[str] = None
    timezone: Optional[str] = None
    businessHoursStart: Optional[str] = None
    businessHoursEnd: Optional[str] = None
