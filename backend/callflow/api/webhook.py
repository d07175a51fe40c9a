from fastapi import APIRouter, Request, HTTPException
from fastapi.responses import JSONResponse
from typing import Optional
from ..config import load_settings
from ..db import get_db
from ..errors import CallflowError
from ..services.openai_client import OpenAIClient
from ..services.pipeline import CallEventPipeline, record_health_event
import hmac, hashlib, json
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_timestamped_signature(signature: str):
    """Split an ElevenLabs style header ``t=<ts>,v0=<hex>`` into (ts, hex)."""
    parts = dict(p.split("=", 1) for p in signature.split(",") if "=" in p)
    return parts.get("t"), parts.get("v0")


def verify_signature(request_body: bytes, signature: str, secret: Optional[str]) -> bool:
    if not secret:
        return True  # allow in local dev
    signature = (signature or "").strip()
    if signature.startswith("t="):
        timestamp, provided = _parse_timestamped_signature(signature)
        if not timestamp or not provided:
            return False
        message = timestamp.encode() + b"." + request_body
    else:
        provided = signature
        message = request_body
    digest = hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, provided)


@router.post("/webhook")
async def voice_webhook(request: Request):
    logger.info("Received call webhook from voice provider")

    try:
        settings = load_settings()
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})

    body = await request.body()
    sig = request.headers.get("x-webhook-signature") or request.headers.get("elevenlabs-signature", "")
    if not verify_signature(body, sig, settings.webhook_secret):
        logger.warning("Webhook signature verification failed")
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("payload is not a JSON object")
    except Exception as e:
        logger.error(f"Failed to parse webhook JSON: {str(e)}")
        raise HTTPException(status_code=400, detail="Malformed JSON")

    db = None
    try:
        db = get_db(settings)
        pipeline = CallEventPipeline(db, OpenAIClient(settings), settings)
        result = await pipeline.process(payload)
        return result.model_dump(exclude_none=True)
    except CallflowError as e:
        logger.error(f"Webhook processing error: {e}")
        if db is not None:
            record_health_event(db, "fail", str(e))
        return JSONResponse(status_code=500, content={"error": str(e)})
    except Exception as e:
        logger.exception(f"Unhandled webhook error: {e}")
        if db is not None:
            record_health_event(db, "fail", str(e))
        return JSONResponse(status_code=500, content={"error": str(e)})
