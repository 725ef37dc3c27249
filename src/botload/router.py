import asyncio
import logging
import random

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from botload.config import MockBotSettings
from botload.dependencies import get_bot_settings
from botload.metrics import BOT_MESSAGES_TOTAL
from botload.models import Activity, BotReply

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/api/messages")
async def post_message(
    activity: Activity,
    settings: MockBotSettings = Depends(get_bot_settings),
    authorization: str | None = Header(default=None),
) -> JSONResponse:
    if settings.require_auth and not (authorization or "").startswith("Bearer "):
        BOT_MESSAGES_TOTAL.labels(result="unauthorized").inc()
        raise HTTPException(status_code=401, detail="Missing bearer token")
    delay_ms = settings.latency_ms + random.uniform(0, settings.latency_jitter_ms)
    if delay_ms:
        await asyncio.sleep(delay_ms / 1000)
    if random.random() < settings.failure_rate:
        BOT_MESSAGES_TOTAL.labels(result="failed").inc()
        logger.info("Failing activity %s with status %d", activity.id, settings.failure_status)
        return JSONResponse(content={"error": "simulated failure"}, status_code=settings.failure_status)
    BOT_MESSAGES_TOTAL.labels(result="accepted").inc()
    logger.debug("Accepted activity %s text=%r", activity.id, activity.text)
    reply = BotReply(id=activity.id, status="accepted")
    return JSONResponse(content=reply.model_dump(), status_code=202)


@router.get("/api/health")
async def health() -> dict:
    return {"status": "ok"}


@router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
