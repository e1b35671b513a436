"""
FastAPI dependencies shared by the shipping controllers.
Tests override get_shiprocket_transport (httpx.MockTransport) or get_gateway_provider (fake gateway).
"""
from typing import Callable, Optional

import httpx
from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.notifications import DatabaseNotificationBridge, NotificationBridge
from app.services.shipment_lifecycle import ShipmentLifecycleManager
from app.services.shipping_settings import SettingsStore
from app.services.shiprocket_service import ShipRocketClient, get_shiprocket_client
from app.services.token_cache import TokenCache


def get_token_cache(request: Request) -> TokenCache:
    return request.app.state.token_cache


def get_shiprocket_transport() -> Optional[httpx.AsyncBaseTransport]:
    return None


def get_gateway_provider(
    db: Session = Depends(get_db),
    token_cache: TokenCache = Depends(get_token_cache),
    transport: Optional[httpx.AsyncBaseTransport] = Depends(get_shiprocket_transport),
) -> Callable[[], ShipRocketClient]:
    store = SettingsStore(db)
    return lambda: get_shiprocket_client(store, token_cache, transport=transport)


def get_notifier(db: Session = Depends(get_db)) -> NotificationBridge:
    return DatabaseNotificationBridge(db)


def get_lifecycle(
    db: Session = Depends(get_db),
    gateway_provider: Callable[[], ShipRocketClient] = Depends(get_gateway_provider),
    notifier: NotificationBridge = Depends(get_notifier),
) -> ShipmentLifecycleManager:
    return ShipmentLifecycleManager(db, SettingsStore(db), gateway_provider, notifier)
