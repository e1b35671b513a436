"""
Central API route registration. All HTTP controllers are mounted here with /api prefix.
"""
import logging
from fastapi import FastAPI

from app.http.controllers import (
    order_tracking,
    shipments,
    shipping_settings,
    webhooks,
)

logger = logging.getLogger(__name__)


def register_routes(app: FastAPI, settings) -> None:
    """Register all API routers. Call from main.py after creating the FastAPI app."""
    prefix = settings.API_PREFIX
    app.include_router(shipments.router, prefix=f"{prefix}/shipments", tags=["shipments"])
    app.include_router(shipping_settings.router, prefix=f"{prefix}/shipping", tags=["shipping"])
    app.include_router(order_tracking.router, prefix=f"{prefix}/orders", tags=["orders"])
    app.include_router(webhooks.router, prefix=f"{prefix}/webhooks", tags=["webhooks"])
    logger.info("Registered shipping routes under %s", prefix)
