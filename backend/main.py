import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.auth import auth_backend, cookie_auth_backend, fastapi_users
from core.auth_provider import close_auth_provider
from core.config import settings
from core.logging import setup_json_logging
from core.mux_client import close_mux_client
from core.retry import safe_query
from core.telemetry import init_sentry
from core.web_search import close_web_search_client
import db.models  # noqa: F401
from db.database import create_db_and_tables, engine
from db.migrations import run_migrations
from routers.auth_provider import router as auth_provider_router
from routers.collection import router as collection_router
from routers.comments import router as comments_router
from routers.images import router as images_router
from routers.meta import router as meta_router
from routers.mux import router as mux_router, webhook_router as mux_webhook_router
from routers.spirits import router as spirits_router
from routers.streams import router as streams_router
from routers.users import router as users_router
from routers.videos import router as videos_router
from schemas.users import UserCreate, UserRead, UserUpdate

setup_json_logging(settings.log_level)
init_sentry()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await safe_query(create_db_and_tables, engine=engine)
    await run_migrations(engine)
    logger.info(f"{settings.app_name} {settings.app_version} started")
    yield
    await close_mux_client()
    await close_auth_provider()
    await close_web_search_client()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="API for Bourbon Buddy: whiskey collections, tastings and collectors",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Authentication routes (fastapi-users)
app.include_router(fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"])
app.include_router(fastapi_users.get_auth_router(cookie_auth_backend), prefix="/auth/cookie", tags=["auth"])
app.include_router(fastapi_users.get_register_router(UserRead, UserCreate), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_reset_password_router(), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_verify_router(UserRead), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_users_router(UserRead, UserUpdate), prefix="/users", tags=["users"])

# Hosted auth provider glue
app.include_router(auth_provider_router, prefix="/api/auth", tags=["auth"])

# Health, status, web search, Sentry tunnel
app.include_router(meta_router, tags=["meta"])

# Collection and discovery
app.include_router(collection_router, prefix="/api/collection", tags=["collection"])
app.include_router(spirits_router, prefix="/api/spirits", tags=["spirits"])
app.include_router(users_router, prefix="/api", tags=["users"])

# Tastings
app.include_router(videos_router, prefix="/api/videos", tags=["videos"])
app.include_router(mux_router, prefix="/api/mux", tags=["mux"])
app.include_router(mux_webhook_router, prefix="/api/webhooks", tags=["webhooks"])
app.include_router(comments_router, prefix="/api/comments", tags=["comments"])
app.include_router(streams_router, prefix="/api/streams", tags=["streams"])

# Image upload and proxy
app.include_router(images_router, prefix="/api", tags=["images"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
