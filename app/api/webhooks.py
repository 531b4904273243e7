"""Webhook receiver"""
from typing import Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_settings, get_store, get_transports
from app.services.registry import build_services
from app.services.store import IssueStore
from app.services.transport import Transport
from app.services.webhook_router import WebhookRequest, WebhookRouter

router = APIRouter(tags=["webhooks"])


@router.post("/webhook", response_class=PlainTextResponse)
async def receive_webhook(
    request: Request,
    store: IssueStore = Depends(get_store),
    app_settings=Depends(get_settings),
    transports: Dict[str, Transport] = Depends(get_transports),
):
    """Receive a delivery from any configured tracker"""
    # Signatures are computed over the raw body
    delivery = WebhookRequest(headers=dict(request.headers), body=await request.body())
    webhook_router = WebhookRouter(build_services(store, app_settings, transports))
    result = await run_in_threadpool(webhook_router.dispatch, delivery)
    return PlainTextResponse(result.message, status_code=result.status_code)
