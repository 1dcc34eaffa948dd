"""
Storefront webhooks - keep discounts in sync with catalog changes.
"""
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from .payloads import sync_payload
from .state import AppState, get_state

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class WebhookPayload(BaseModel):
    id: str


@router.get("", response_class=PlainTextResponse)
async def verify_webhook():
    return "OK"


@router.post("/collections/update")
async def collection_updated(payload: WebhookPayload, state: AppState = Depends(get_state)):
    """Resync collection discounts after membership changes."""
    results = await state.discount_service.sync_collection(payload.id)
    synced = sum(r.synced for r in results)
    logger.info("Collection %s synced: %d products updated", payload.id, synced)
    return {
        "success": True,
        "synced": synced,
        "message": f"Synced {synced} products",
        "rules": [sync_payload(r) for r in results],
    }


@router.post("/products/delete")
async def product_deleted(payload: WebhookPayload, state: AppState = Depends(get_state)):
    """Drop the discount of a deleted product. Always acknowledged."""
    await state.discount_service.handle_product_deleted(payload.id)
    return {"success": True, "message": "Webhook processed"}
