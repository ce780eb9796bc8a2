"""Mercado Pago ``x-signature`` verification.

The header looks like ``ts=1704908010,v1=618c8534...``. The provider signs the
manifest ``id:<data.id>;request-id:<x-request-id>;ts:<ts>;`` with HMAC-SHA256
using the webhook secret and sends the hex digest as ``v1``.
"""
import hashlib
import hmac
import json
from typing import Optional

from app.log import get_logger

logger = get_logger("signature_verifier")


def parse_signature_header(header: Optional[str]) -> Optional[tuple[str, str]]:
    """Return (ts, v1) from the header, or None when either part is missing."""
    if not header:
        return None
    ts = v1 = ""
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key.strip() == "ts":
            ts = value.strip()
        elif key.strip() == "v1":
            v1 = value.strip()
    if not ts or not v1:
        return None
    return ts, v1


def signed_manifest(data_id: str, request_id: str, ts: str) -> str:
    return f"id:{data_id};request-id:{request_id};ts:{ts};"


def compute_signature(secret: str, data_id: str, request_id: str, ts: str) -> str:
    message = signed_manifest(data_id, request_id, ts).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _ids_from_body(raw_body: bytes) -> tuple[Optional[str], Optional[str]]:
    payload = json.loads(raw_body.decode("utf-8"))
    if not isinstance(payload, dict):
        return None, None
    data = payload.get("data")
    data_id = data.get("id") if isinstance(data, dict) else None
    request_id = payload.get("id")
    return (
        str(data_id) if data_id is not None else None,
        str(request_id) if request_id is not None else None,
    )


def verify_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    request_id: Optional[str] = None,
    data_id: Optional[str] = None,
) -> bool:
    """Check a webhook signature.

    With no secret configured every request passes (development mode). With a
    secret, any missing, malformed or mismatching piece fails closed.
    ``request_id`` is the ``x-request-id`` header when the caller has it;
    otherwise the body's top-level ``id`` is used. ``data_id`` overrides the
    body's ``data.id`` for query-string notifications.
    """
    if not secret:
        return True

    parsed = parse_signature_header(signature_header)
    if parsed is None:
        logger.warning("signature_header_malformed", header_present=bool(signature_header))
        return False
    ts, received = parsed

    try:
        body_data_id, body_request_id = _ids_from_body(raw_body) if raw_body else (None, None)
    except (UnicodeDecodeError, ValueError):
        logger.warning("signature_body_unparseable")
        return False

    data_id = data_id or body_data_id
    request_id = request_id or body_request_id
    if not data_id or not request_id:
        logger.warning("signature_manifest_incomplete", has_data_id=bool(data_id), has_request_id=bool(request_id))
        return False

    if not received.isascii():
        return False
    expected = compute_signature(secret, data_id, request_id, ts)
    return hmac.compare_digest(expected, received.lower())
