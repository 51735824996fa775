"""
OSDesk - Router de Autenticação
Login, refresh token, logout e cadastro da conta da loja.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from osdesk.database import get_db
from osdesk.dependencies import get_session_cache, security
from osdesk.models.user import User
from osdesk.models.lookups import Situation, SituacaoInformatica
from osdesk.middleware.auth import (
    verify_password,
    hash_password,
    create_access_token,
    create_refresh_token,
    read_claims,
    REFRESH,
)
from osdesk.schemas import (
    LoginRequest,
    TokenResponse,
    RefreshRequest,
    RegisterRequest,
    UserResponse,
    MessageResponse,
)
from osdesk.services.session_cache import SessionCache, Session

router = APIRouter(prefix="/api/v1/auth", tags=["Auth"])

# Situações criadas junto com a conta; "Em fila" é a padrão das novas OS
DEFAULT_SITUATIONS = (
    ("Em fila", "#6b7280"),
    ("Em andamento", "#3b82f6"),
    ("Finalizado", "#22c55e"),
)


def _tokens(user: User, session: Session) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user.id, session.session_id),
        refresh_token=create_refresh_token(user.id, session.session_id, session.refresh_id),
        user=UserResponse.model_validate(user),
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    data: LoginRequest,
    db: AsyncSession = Depends(get_db),
    sessions: SessionCache = Depends(get_session_cache),
):
    """Autenticação por email + senha. Retorna JWT."""
    result = await db.execute(
        select(User).where(User.email == data.email, User.is_active == True)  # noqa: E712
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Email ou senha incorretos.",
        )

    return _tokens(user, await sessions.sign_in(user.id))


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(
    data: RefreshRequest,
    db: AsyncSession = Depends(get_db),
    sessions: SessionCache = Depends(get_session_cache),
):
    """
    Renova os tokens. Cada refresh token vale uma vez: a rotação troca o
    `rid` da sessão sem avisar os inscritos do cache.
    """
    claims = read_claims(data.refresh_token, REFRESH)
    if not claims:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token inválido ou expirado.",
        )

    user_id = claims.user_id
    session_id = claims.session_id
    refresh_id = claims.refresh_id
    if await sessions.is_signed_out(session_id):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Sessão encerrada.")

    session = await sessions.current_session(session_id)
    if not session or session.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Sessão expirada.")
    if session.refresh_id != refresh_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token já utilizado.")

    user = await db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Usuário não encontrado.")

    rotated = await sessions.rotate_credentials(session_id, expected_refresh_id=refresh_id)
    if not rotated:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Refresh token já utilizado.")

    return _tokens(user, rotated)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    sessions: SessionCache = Depends(get_session_cache),
):
    """Encerra a sessão do token; tokens dela deixam de ser aceitos."""
    claims = read_claims(credentials.credentials)
    if not claims:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token inválido ou expirado.")

    await sessions.sign_out(claims.session_id)
    return MessageResponse(message="Sessão encerrada.")


@router.post("/register", response_model=UserResponse, status_code=201)
async def register(data: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Cadastra a conta da loja com as situações padrão dos dois setores."""
    existing = await db.execute(select(User).where(User.email == data.email))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Email já cadastrado.",
        )

    user = User(
        email=data.email,
        username=data.username,
        hashed_password=hash_password(data.password),
        full_name=data.full_name,
        phone=data.phone,
    )
    db.add(user)
    await db.flush()  # Para obter o ID

    for name, color in DEFAULT_SITUATIONS:
        db.add(Situation(user_id=user.id, name=name, color=color))
        db.add(SituacaoInformatica(user_id=user.id, name=name, color=color))

    await db.commit()
    await db.refresh(user)
    return UserResponse.model_validate(user)
