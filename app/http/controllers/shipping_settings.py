"""
ShipRocket integration settings (admin only): credentials, pickup location, automation flags.
Secrets are write-only: responses say whether they are set, never what they are.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.auth import require_admin
from app.database import get_db
from app.exceptions import ConfigurationError
from app.http.dependencies import get_gateway_provider, get_shiprocket_transport, get_token_cache
from app.http.requests import ConnectionTestRequest, ShippingSettingsUpdate
from app.models import User
from app.services.shipping_settings import SettingsStore
from app.services.shiprocket_service import ShipRocketClient
from app.services.token_cache import TokenCache

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/settings")
async def get_shipping_settings(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
):
    store = SettingsStore(db)
    return {"settings": store.to_response(store.get())}


@router.put("/settings")
async def update_shipping_settings(
    body: ShippingSettingsUpdate,
    db: Session = Depends(get_db),
    token_cache: TokenCache = Depends(get_token_cache),
    current_user: User = Depends(require_admin),
):
    store = SettingsStore(db)
    row = store.update(body.to_store_fields(), token_cache=token_cache)
    logger.info("Shipping settings updated by %s", current_user.email)
    return {"success": True, "message": "Settings updated successfully", "settings": store.to_response(row)}


@router.post("/settings/test")
async def test_connection(
    body: Optional[ConnectionTestRequest] = None,
    db: Session = Depends(get_db),
    token_cache: TokenCache = Depends(get_token_cache),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_shiprocket_transport),
    current_user: User = Depends(require_admin),
):
    """
    Log in with the given credentials, or the saved ones.
    A successful login with the saved credentials also refreshes the stored token.
    """
    store = SettingsStore(db)
    row = store.get()
    using_saved = not (body and body.email and body.password)
    if using_saved:
        email, password = store.credentials(row)
    else:
        email, password = body.email.strip(), body.password
    if not email or not password:
        raise ConfigurationError("No ShipRocket credentials to test. Provide email and password or save them first.")

    test_cache = TokenCache()
    client = ShipRocketClient(email, password, test_cache, transport=transport)
    token = await client.login()
    expires_at = datetime.now(timezone.utc) + test_cache.ttl
    if using_saved and row is not None:
        store.save_token(token, expires_at)
        token_cache.invalidate()
        token_cache.seed(token, expires_at, key=email)
    logger.info("ShipRocket connection test succeeded for %s", email)
    return {"success": True, "message": "Connection successful", "tokenExpiresAt": expires_at.isoformat()}


@router.get("/pickup-locations")
async def list_pickup_locations(
    gateway_provider=Depends(get_gateway_provider),
    current_user: User = Depends(require_admin),
):
    locations = await gateway_provider().get_pickup_locations()
    return {"success": True, "locations": [loc.dict() for loc in locations]}
