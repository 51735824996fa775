"""
OSDesk - Dependencies (FastAPI Depends)
Usuário atual, serviços compartilhados do app.state e setor da rota.
"""
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from osdesk.database import get_db
from osdesk.middleware.auth import ACCESS, read_claims
from osdesk.middleware.rate_limiter import RateLimiter
from osdesk.models.user import User
from osdesk.sectors import Sector, SectorConfig, get_sector
from osdesk.services.draft_store import DraftStore
from osdesk.services.media_pipeline import MediaPipeline
from osdesk.services.session_cache import SessionCache
from osdesk.services.storage_service import StorageService

security = HTTPBearer()


def get_session_cache(request: Request) -> SessionCache:
    return request.app.state.session_cache


def get_draft_store(request: Request) -> DraftStore:
    return request.app.state.draft_store


def get_storage(request: Request) -> StorageService:
    return request.app.state.storage


def get_pipeline(request: Request) -> MediaPipeline:
    return request.app.state.media_pipeline


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_sector_config(sector: Sector) -> SectorConfig:
    """Setor do path (/api/v1/{sector}/...)."""
    return get_sector(sector)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
    sessions: SessionCache = Depends(get_session_cache),
) -> User:
    """
    Extrai e valida o JWT do header Authorization.
    Sessões encerradas por logout (em qualquer worker) são recusadas mesmo
    com token ainda válido.
    """
    claims = read_claims(credentials.credentials, ACCESS)
    if not claims:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token inválido ou expirado.",
        )

    user_id = claims.user_id
    session_id = claims.session_id
    if await sessions.is_signed_out(session_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sessão encerrada.",
        )

    session = await sessions.current_session(session_id)
    if not session or session.user_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sessão expirada.",
        )

    result = await db.execute(
        select(User).where(User.id == user_id, User.is_active == True)  # noqa: E712
    )
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Usuário não encontrado ou inativo.",
        )

    return user
