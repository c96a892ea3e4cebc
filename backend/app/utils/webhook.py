import hashlib
import hmac
from typing import Any, Dict, List


def _safe_string(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def verify_whatsapp_signature(raw_body: bytes, signature_header: str = "", app_secret: str = "") -> Dict[str, Any]:
    """
    Validate Meta's X-Hub-Signature-256 header against the raw request body.
    Signature checking is skipped when no app secret is configured.
    """
    secret = _safe_string(app_secret)
    if not secret:
        return {"ok": True, "reason": "signature-check-disabled"}

    signature = _safe_string(signature_header)
    if not signature or not signature.startswith("sha256="):
        return {"ok": False, "reason": "missing-or-invalid-signature-header"}

    if not raw_body:
        return {"ok": False, "reason": "missing-raw-body"}

    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")

    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    expected = f"sha256={digest}".encode("utf-8")
    received = signature.encode("utf-8")

    if len(expected) != len(received):
        return {"ok": False, "reason": "signature-length-mismatch"}

    if hmac.compare_digest(expected, received):
        return {"ok": True}
    return {"ok": False, "reason": "signature-mismatch"}


def extract_whatsapp_inbound_text_messages(payload) -> List[Dict[str, str]]:
    """Pull plain text messages out of a WhatsApp Cloud API webhook payload"""
    entries = payload.get("entry") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        return []

    inbound = []
    for entry in entries:
        changes = entry.get("changes") if isinstance(entry, dict) else None
        if not isinstance(changes, list):
            continue

        for change in changes:
            value = change.get("value") if isinstance(change, dict) else None
            if not isinstance(value, dict):
                continue

            contacts = value.get("contacts") if isinstance(value.get("contacts"), list) else []
            messages = value.get("messages") if isinstance(value.get("messages"), list) else []
            metadata = value.get("metadata") if isinstance(value.get("metadata"), dict) else {}
            phone_number_id = _safe_string(metadata.get("phone_number_id"))

            for message in messages:
                if not isinstance(message, dict):
                    continue

                sender = _safe_string(message.get("from"))
                text = message.get("text") if isinstance(message.get("text"), dict) else {}
                body = _safe_string(text.get("body"))
                if not sender or not body:
                    continue

                contact = next(
                    (c for c in contacts if isinstance(c, dict) and c.get("wa_id") == message.get("from")),
                    {},
                )
                profile = contact.get("profile") if isinstance(contact.get("profile"), dict) else {}
                name = _safe_string(profile.get("name")) or "Unknown"

                inbound.append({
                    "phone": sender,
                    "text": body,
                    "name": name,
                    "phoneNumberId": phone_number_id,
                })

    return inbound
