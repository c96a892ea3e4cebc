import logging
import httpx
from typing import Optional, Dict, Any
from app.config import settings

logger = logging.getLogger(__name__)

GRAPH_API_BASE_URL = "https://graph.facebook.com"


class WhatsAppApiError(Exception):
    """Non-2xx answer from the WhatsApp Cloud API"""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"WhatsApp API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body


def resolve_credentials(whatsapp_config: Optional[dict] = None) -> Dict[str, str]:
    """Workspace credentials win over the environment ones when both are present"""
    config = whatsapp_config or {}
    phone_number_id = str(config.get("phoneNumberId") or "").strip()
    access_token = str(config.get("accessToken") or "").strip()

    if phone_number_id and access_token:
        return {"phone_number_id": phone_number_id, "access_token": access_token}

    return {
        "phone_number_id": (settings.WHATSAPP_PHONE_NUMBER_ID or "").strip(),
        "access_token": (settings.WHATSAPP_ACCESS_TOKEN or "").strip(),
    }


def has_whatsapp_credentials(whatsapp_config: Optional[dict] = None) -> bool:
    credentials = resolve_credentials(whatsapp_config)
    return bool(credentials["phone_number_id"] and credentials["access_token"])


async def send_whatsapp_text_message(
    to: str,
    text: str,
    phone_number_id: Optional[str] = None,
    access_token: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Send a text message through the WhatsApp Cloud API.

    Without credentials nothing is sent and a MOCKED result comes back.
    Raises WhatsAppApiError on a non-2xx response.
    """
    if not phone_number_id or not access_token:
        logger.info(f"WhatsApp credentials missing, mocking message to {to}")
        return {
            "provider": "mock",
            "status": "MOCKED",
            "externalId": None,
        }

    url = f"{GRAPH_API_BASE_URL}/{settings.WHATSAPP_API_VERSION}/{phone_number_id}/messages"
    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": to,
        "type": "text",
        "text": {
            "preview_url": False,
            "body": text,
        },
    }

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    if not response.is_success:
        logger.error(f"WhatsApp send to {to} failed with {response.status_code}")
        raise WhatsAppApiError(response.status_code, response.text)

    result = response.json()
    messages = result.get("messages") or [{}]
    external_id = messages[0].get("id")

    logger.info(f"WhatsApp message sent to {to}: {external_id}")
    return {
        "provider": "meta-whatsapp-cloud",
        "status": "SENT",
        "externalId": external_id,
    }


async def deliver_message(message: dict, to: str, whatsapp_config: Optional[dict] = None) -> dict:
    """
    Attempt to send an already-recorded PENDING message and write the outcome
    (status, externalId, error) back onto it. Transport errors never propagate.
    """
    credentials = resolve_credentials(whatsapp_config)

    try:
        result = await send_whatsapp_text_message(
            to=to,
            text=message["text"],
            phone_number_id=credentials["phone_number_id"],
            access_token=credentials["access_token"],
        )
        message["status"] = result["status"]
        message["externalId"] = result.get("externalId")
    except Exception as e:
        logger.error(f"Failed to deliver message {message['id']} to {to}: {e}")
        message["status"] = "FAILED"
        message["error"] = str(e)

    return message
