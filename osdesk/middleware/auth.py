"""
OSDesk - Autenticação JWT
Tokens carregam a conta (`sub`), a sessão (`sid`) e, no refresh, o id da
rotação (`rid`). O cache de sessões decide se a sessão ainda vale.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from passlib.context import CryptContext
from osdesk.config import get_settings

settings = get_settings()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    session_id: str
    token_type: str
    refresh_id: str | None = None


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def _encode(claims: dict, lifetime: timedelta) -> str:
    claims["exp"] = datetime.now(timezone.utc) + lifetime
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_access_token(user_id: int, session_id: str, expires_delta: timedelta | None = None) -> str:
    lifetime = expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    return _encode({"sub": str(user_id), "sid": session_id, "type": ACCESS}, lifetime)


def create_refresh_token(user_id: int, session_id: str, refresh_id: str) -> str:
    """`rid` muda a cada rotação; um refresh token antigo deixa de casar com a sessão."""
    return _encode(
        {"sub": str(user_id), "sid": session_id, "rid": refresh_id, "type": REFRESH},
        timedelta(days=settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_token(token: str) -> dict | None:
    """Payload do JWT, ou None se a assinatura ou a validade falharem."""
    try:
        return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def read_claims(token: str, expected_type: str | None = None) -> TokenClaims | None:
    """
    Lê as claims da sessão. Retorna None se o token for inválido, não tiver
    `sid`/`sub` numérico ou for de outro tipo que o esperado.
    """
    payload = decode_token(token)
    if not payload or not payload.get("sid"):
        return None
    if expected_type and payload.get("type") != expected_type:
        return None
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None
    return TokenClaims(
        user_id=user_id,
        session_id=payload["sid"],
        token_type=payload.get("type", ""),
        refresh_id=payload.get("rid"),
    )
