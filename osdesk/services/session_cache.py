"""
OSDesk - Cache de sessões
Sessões emitidas pelo login ficam no Redis (compartilhadas entre workers e
preservadas entre reinícios); os inscritos do processo são avisados quando
alguém entra ou sai. A rotação de credenciais (refresh) só atualiza o
registro e não gera notificação.

Chaves:
  session:{sid}          JSON da sessão (refresh_id atual), TTL = vida do refresh token
  session:revoked:{sid}  marca de logout, TTL = vida do refresh token

Ciclo de vida do cache:
  UNINITIALIZED → LOADING → AUTHENTICATED | ANONYMOUS
"""
import enum
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

import redis.asyncio as redis

from osdesk.config import get_settings

logger = logging.getLogger("session_cache")

SESSION_PREFIX = "session:"
REVOKED_PREFIX = "session:revoked:"


class SessionState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


class SessionEvent(str, enum.Enum):
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"


@dataclass
class Session:
    session_id: str
    user_id: int
    refresh_id: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    rotated_at: Optional[datetime] = None

    def to_json(self) -> str:
        return json.dumps({
            "user_id": self.user_id,
            "refresh_id": self.refresh_id,
            "created_at": self.created_at.isoformat(),
            "rotated_at": self.rotated_at.isoformat() if self.rotated_at else None,
        })

    @classmethod
    def from_json(cls, session_id: str, raw: str) -> "Session":
        data = json.loads(raw)
        return cls(
            session_id=session_id,
            user_id=int(data["user_id"]),
            refresh_id=data["refresh_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            rotated_at=datetime.fromisoformat(data["rotated_at"]) if data.get("rotated_at") else None,
        )


Subscriber = Callable[[SessionEvent, Session], None]


class SessionCache:
    def __init__(self, client: redis.Redis, ttl_seconds: Optional[int] = None):
        self.redis = client
        self.ttl_seconds = ttl_seconds or get_settings().JWT_REFRESH_TOKEN_EXPIRE_DAYS * 86400
        self.state = SessionState.UNINITIALIZED
        self._subscribers: List[Subscriber] = []

    @staticmethod
    def _session_key(session_id: str) -> str:
        return f"{SESSION_PREFIX}{session_id}"

    @staticmethod
    def _revoked_key(session_id: str) -> str:
        return f"{REVOKED_PREFIX}{session_id}"

    # ── Ciclo de vida ────────────────────────────────────

    def begin_loading(self) -> None:
        self.state = SessionState.LOADING

    async def finish_loading(self) -> None:
        await self._update_state()

    async def _has_sessions(self) -> bool:
        async for key in self.redis.scan_iter(match=f"{SESSION_PREFIX}*", count=100):
            if isinstance(key, bytes):
                key = key.decode("utf-8")
            if not key.startswith(REVOKED_PREFIX):
                return True
        return False

    async def _update_state(self) -> None:
        self.state = SessionState.AUTHENTICATED if await self._has_sessions() else SessionState.ANONYMOUS

    # ── Inscrições ───────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Registra um callback; retorna a função que cancela a inscrição."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self, event: SessionEvent, session: Session) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event, session)
            except Exception as e:
                logger.error(f"[Auth] Erro no inscrito de sessão ({event.value}): {e}")

    # ── Sessões ──────────────────────────────────────────

    async def current_session(self, session_id: str) -> Optional[Session]:
        raw = await self.redis.get(self._session_key(session_id))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return Session.from_json(session_id, raw)

    async def is_signed_out(self, session_id: str) -> bool:
        return bool(await self.redis.exists(self._revoked_key(session_id)))

    async def sign_in(self, user_id: int) -> Session:
        session = Session(
            session_id=str(uuid.uuid4()),
            user_id=user_id,
            refresh_id=str(uuid.uuid4()),
        )
        await self.redis.set(self._session_key(session.session_id), session.to_json(), ex=self.ttl_seconds)
        self.state = SessionState.AUTHENTICATED
        logger.info(f"[Auth] Sessão iniciada para user {user_id}")
        self._notify(SessionEvent.SIGNED_IN, session)
        return session

    async def rotate_credentials(self, session_id: str, expected_refresh_id: Optional[str] = None) -> Optional[Session]:
        """
        Novo refresh_id para a sessão. Silencioso: nenhum inscrito é avisado.
        Com `expected_refresh_id`, só rotaciona se ele ainda for o atual
        (dois refresh concorrentes com o mesmo token: apenas um vence).
        """
        key = self._session_key(session_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                if raw is None:
                    return None
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8")
                session = Session.from_json(session_id, raw)
                if expected_refresh_id is not None and session.refresh_id != expected_refresh_id:
                    return None

                session.refresh_id = str(uuid.uuid4())
                session.rotated_at = datetime.now(timezone.utc)
                pipe.multi()
                pipe.set(key, session.to_json(), ex=self.ttl_seconds)
                await pipe.execute()
            except redis.WatchError:
                logger.warning(f"[Auth] Rotação concorrente recusada (sessão {session_id})")
                return None

        logger.debug(f"[Auth] Credenciais rotacionadas (sessão {session_id})")
        return session

    async def sign_out(self, session_id: str) -> Optional[Session]:
        session = await self.current_session(session_id)
        await self.redis.set(self._revoked_key(session_id), "1", ex=self.ttl_seconds)
        await self.redis.delete(self._session_key(session_id))
        await self._update_state()
        if session:
            logger.info(f"[Auth] Sessão encerrada para user {session.user_id}")
            self._notify(SessionEvent.SIGNED_OUT, session)
        return session
