import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.retry import safe_query
from core.telemetry import TunnelError, forward_envelope
from core.web_search import WebSearchClient, WebSearchError, get_web_search_client
from db.database import engine, get_async_session

logger = logging.getLogger(__name__)

router = APIRouter()


async def ping_database(db: AsyncSession) -> bool:
    async def _ping():
        # A failed attempt leaves the session needing a rollback
        await db.rollback()
        await db.execute(text("SELECT 1"))
        return True

    try:
        return await safe_query(_ping, engine=engine, attempts=2)
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return False


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/api/status")
async def api_status(db: AsyncSession = Depends(get_async_session)):
    database_ok = await ping_database(db)
    return {
        "status": "ok" if database_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "services": {
            "database": database_ok,
            "mux": bool(settings.mux_token_id and settings.mux_token_secret),
            "auth_provider": bool(settings.supabase_url),
            "imagekit": bool(settings.imagekit_private_key),
            "web_search": bool(settings.serpapi_key),
            "sentry": bool(settings.sentry_dsn),
        },
    }


@router.get("/api/web-search")
async def web_search(
    query: Optional[str] = Query(None),
    distillery: str = Query(""),
    release_year: str = Query("", alias="releaseYear"),
    client: WebSearchClient = Depends(get_web_search_client),
):
    """Look a spirit up on the web to prefill the add-bottle form"""
    if not query or not query.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing search query")
    try:
        return await client.search(query.strip(), distillery.strip(), release_year.strip())
    except WebSearchError as e:
        logger.warning(f"Web search failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.post("/api/sentry-tunnel")
async def sentry_tunnel(request: Request):
    """Forward browser Sentry envelopes so the frontend only talks to our origin"""
    envelope = await request.body()
    try:
        upstream = await forward_envelope(envelope)
    except TunnelError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    if upstream.status_code >= 400:
        logger.warning(f"Sentry rejected envelope: {upstream.status_code}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Error from Sentry: {upstream.status_code}",
        )
    return Response(content=upstream.content, status_code=200, media_type="application/json")
