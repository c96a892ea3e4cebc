from app.models.conversation import (
    ConversationState, MessageDirection, MessageChannel, MessageStatus, MessageSource,
    CONVERSATION_STATES, normalize_phone,
)
from app.models.template import TemplateCategory
from app.models.workspace import create_workspace_seed, ensure_workspace_shape
from app.models.user import sanitize_user
