"""
OSDesk - Ponto de entrada FastAPI
Gestão de ordens de serviço para assistência técnica (celular e informática)
"""
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from osdesk.cache import create_redis_client
from osdesk.config import get_settings
from osdesk.database import engine, Base
from osdesk.logging_config import setup_logging
from osdesk.middleware.rate_limiter import RateLimiter
from osdesk.services.draft_store import create_draft_store
from osdesk.services.media_normalizer import MediaNormalizer
from osdesk.services.media_pipeline import MediaPipeline
from osdesk.services.session_cache import SessionCache, SessionEvent, Session
from osdesk.services.storage_service import create_storage_service

# Routers
from osdesk.routers.auth import router as auth_router
from osdesk.routers.service_orders import router as service_orders_router
from osdesk.routers.media import router as media_router
from osdesk.routers.lookups import router as lookups_router
from osdesk.routers.integration import router as integration_router
from osdesk.routers.tracking import router as tracking_router

# Importar modelos para que sejam registrados
from osdesk.models import *  # noqa

settings = get_settings()
logger = logging.getLogger("osdesk")


def _log_session_event(event: SessionEvent, session: Session) -> None:
    logger.info(f"[Auth] Event: {event.value} (user {session.user_id})")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Cria as tabelas ao iniciar (em desenvolvimento). Em produção usar migrations."""
    setup_logging(settings.LOG_LEVEL)

    redis_client = create_redis_client()
    sessions = SessionCache(redis_client)
    sessions.begin_loading()
    sessions.subscribe(_log_session_event)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    storage = create_storage_service()
    app.state.session_cache = sessions
    app.state.draft_store = create_draft_store(redis_client)
    app.state.storage = storage
    app.state.media_pipeline = MediaPipeline(storage, MediaNormalizer())
    app.state.rate_limiter = RateLimiter(redis_client)
    await sessions.finish_loading()

    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} iniciado")
    yield
    await redis_client.close()
    await engine.dispose()
    logger.info(f"{settings.APP_NAME} parado")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Gestão de ordens de serviço para assistência técnica",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Registrar routers
app.include_router(auth_router)
app.include_router(service_orders_router)
app.include_router(media_router)
app.include_router(lookups_router)
app.include_router(integration_router)
app.include_router(tracking_router)


@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "docs": "/docs"
    }


@app.get("/health")
async def health():
    return {"status": "healthy"}
