import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from typing import Optional
from app.config import settings
from app.dependencies import get_current_user_id, get_optional_session
from app.models.conversation import MessageSource
from app.schemas.integration import WhatsAppConfigUpdate, WhatsAppTestMessage, WordPressLead
from app.services import crm_service
from app.services.whatsapp_service import has_whatsapp_credentials
from app.utils.webhook import extract_whatsapp_inbound_text_messages, verify_whatsapp_signature

logger = logging.getLogger(__name__)

router = APIRouter()


def mask_secret(value: Optional[str]) -> str:
    value = value or ""
    if not value:
        return ""
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 4) + value[-4:]


# ============== WORDPRESS ==============

@router.post("/wordpress/lead", status_code=status.HTTP_201_CREATED)
async def wordpress_lead(
    data: WordPressLead,
    token: Optional[str] = None,
    session: Optional[dict] = Depends(get_optional_session)
):
    """
    Website form lead. Accepts a logged-in session or ?token=<workspace verify
    token> so the WordPress site can post without a cookie.
    """
    if session:
        user_id = session["userId"]
    else:
        user_id = await run_in_threadpool(crm_service.resolve_user_id_by_verify_token, token)
        if not user_id:
            raise HTTPException(status_code=401, detail="Authentication required.")

    name = (data.name or "Unknown").strip()
    phone = (data.phone or "").strip()
    message = (data.message or "").strip()
    source_url = (data.sourceUrl or "").strip()

    if not phone or not message:
        raise HTTPException(status_code=400, detail="phone and message are required")

    return await crm_service.ingest_wordpress_lead(
        user_id,
        name=name,
        phone=phone,
        message=message,
        source_url=source_url
    )


# ============== WHATSAPP WEBHOOK ==============

@router.get("/whatsapp/webhook")
def verify_webhook(request: Request):
    """Meta's subscription handshake"""
    mode = request.query_params.get("hub.mode")
    token = request.query_params.get("hub.verify_token")
    challenge = request.query_params.get("hub.challenge") or ""

    token_ok = bool(token) and (
        token == settings.WHATSAPP_VERIFY_TOKEN
        or crm_service.resolve_user_id_by_verify_token(token) is not None
    )

    if mode == "subscribe" and token_ok:
        return PlainTextResponse(challenge, status_code=200)

    return PlainTextResponse("forbidden", status_code=403)


@router.post("/whatsapp/webhook")
async def receive_webhook(request: Request):
    """Incoming WhatsApp events; every text message goes through the automation engine"""
    raw_body = await request.body()

    signature = verify_whatsapp_signature(
        raw_body,
        request.headers.get("x-hub-signature-256", ""),
        settings.WHATSAPP_APP_SECRET or ""
    )
    if not signature["ok"]:
        logger.warning(f"Rejected WhatsApp webhook: {signature.get('reason')}")
        raise HTTPException(status_code=403, detail="Invalid webhook signature")

    try:
        payload = json.loads(raw_body or b"{}")
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    processed = 0
    for inbound in extract_whatsapp_inbound_text_messages(payload):
        user_id = await run_in_threadpool(crm_service.resolve_webhook_user_id, inbound["phoneNumberId"])
        if not user_id:
            logger.warning(f"No workspace for WhatsApp phone number id {inbound['phoneNumberId']!r}, message skipped")
            continue

        await crm_service.receive_inbound_message(
            user_id,
            phone=inbound["phone"],
            name=inbound["name"],
            text=inbound["text"],
            source=MessageSource.WHATSAPP_WEBHOOK.value
        )
        processed += 1

    return {"received": True, "processed": processed}


# ============== WHATSAPP SETTINGS ==============

@router.get("/whatsapp/config")
def get_whatsapp_config(user_id: str = Depends(get_current_user_id)):
    config = crm_service.get_whatsapp_config(user_id)
    return {**config, "accessToken": mask_secret(config.get("accessToken"))}


@router.patch("/whatsapp/config")
def update_whatsapp_config(update: WhatsAppConfigUpdate, user_id: str = Depends(get_current_user_id)):
    """Update this workspace's WhatsApp Cloud API credentials"""
    config = crm_service.update_whatsapp_config(user_id, update.model_dump(exclude_none=True))
    return {**config, "accessToken": mask_secret(config.get("accessToken"))}


@router.get("/whatsapp/status")
def get_whatsapp_status(user_id: str = Depends(get_current_user_id)):
    config = crm_service.get_whatsapp_config(user_id)
    configured = has_whatsapp_credentials(config)
    return {
        "configured": configured,
        "mode": "live" if configured else "mock",
        "phoneNumberId": config.get("phoneNumberId") or settings.WHATSAPP_PHONE_NUMBER_ID or "",
        "webhookConfirmedAt": config.get("webhookConfirmedAt"),
        "signatureCheckEnabled": bool(settings.WHATSAPP_APP_SECRET),
    }


@router.post("/whatsapp/confirm-webhook")
def confirm_webhook(user_id: str = Depends(get_current_user_id)):
    config = crm_service.confirm_whatsapp_webhook(user_id)
    return {"webhookConfirmedAt": config.get("webhookConfirmedAt")}


@router.post("/whatsapp/test-message", status_code=status.HTTP_201_CREATED)
async def send_test_message(data: WhatsAppTestMessage, user_id: str = Depends(get_current_user_id)):
    """Send a setup test message to check the WhatsApp connection"""
    phone = (data.phone or "").strip()
    text = (data.text or "").strip() or "Test message from your WhatsApp CRM setup."

    if not phone:
        raise HTTPException(status_code=400, detail="phone is required")

    return await crm_service.send_setup_test_message(user_id, phone=phone, text=text)
