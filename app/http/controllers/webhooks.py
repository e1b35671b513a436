"""
ShipRocket tracking webhook. Public (no JWT); optional shared secret in the x-api-key header.
Always answers 200 so ShipRocket does not retry; the outcome is in the body.
"""
import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.http.dependencies import get_notifier
from app.services.notifications import NotificationBridge
from app.services.webhook_ingress import SECRET_HEADER, WebhookIngress

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/tracking")
async def shiprocket_tracking_webhook(
    request: Request,
    db: Session = Depends(get_db),
    notifier: NotificationBridge = Depends(get_notifier),
):
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body.decode("utf-8")) if raw_body else {}
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("ShipRocket webhook: invalid JSON %s", e)
        return {"success": False, "error": "Invalid JSON"}
    return WebhookIngress(db, notifier).handle(payload, request.headers.get(SECRET_HEADER))


@router.get("/tracking")
async def shiprocket_tracking_webhook_check():
    """ShipRocket pings the URL with GET when it is registered."""
    return {"success": True, "message": "ShipRocket webhook endpoint is active"}
