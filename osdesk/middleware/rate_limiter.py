"""
OSDesk - Limite de tentativas por IP na API de integração
Conta apenas falhas de autenticação: N falhas dentro da janela bloqueiam o IP
pelo tempo de bloqueio; autenticação bem-sucedida zera o contador.

Contador e bloqueio ficam no Redis, compartilhados entre workers e
preservados entre reinícios:
  rate_limit:{scope}:{ip}        INCR + EXPIRE janela
  rate_limit:block:{scope}:{ip}  SET EX bloqueio
"""
import hashlib
import logging
import math
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
from fastapi import Request

from osdesk.config import get_settings

logger = logging.getLogger("rate_limiter")

KEY_PREFIX = "rate_limit"


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_in: int
    blocked: bool

    @property
    def error_message(self) -> str:
        if self.blocked:
            return "Too many failed attempts. Please try again later."
        return "Rate limit exceeded. Please slow down."

    def headers(self) -> dict:
        return {
            "Retry-After": str(self.reset_in),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_in),
        }


def get_client_ip(request: Request) -> str:
    """x-forwarded-for (primeiro IP) → x-real-ip → cf-connecting-ip → hash do user-agent."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip

    user_agent = request.headers.get("user-agent") or "unknown"
    return f"ua-{hashlib.sha1(user_agent.encode()).hexdigest()[:8]}"


def _seconds_left(pttl: int, fallback: int) -> int:
    """PTTL do Redis em segundos (arredondado para cima); -1 = sem expiração."""
    if pttl == -1:
        return fallback
    return max(1, math.ceil(pttl / 1000))


class RateLimiter:
    """
    Uso:
        limiter = RateLimiter(redis_client)
        result = await limiter.check(ip, "reports")
        if not result.allowed: ...
        await limiter.record_failure(ip, "reports")
    """

    def __init__(
        self,
        client: redis.Redis,
        max_attempts: Optional[int] = None,
        window_seconds: Optional[int] = None,
        block_seconds: Optional[int] = None,
    ):
        settings = get_settings()
        self.redis = client
        self.max_attempts = max_attempts or settings.RATE_LIMIT_MAX_ATTEMPTS
        self.window = window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS
        self.block = block_seconds or settings.RATE_LIMIT_BLOCK_SECONDS

    @staticmethod
    def counter_key(client_ip: str, scope: str) -> str:
        return f"{KEY_PREFIX}:{scope}:{client_ip}"

    @staticmethod
    def block_key(client_ip: str, scope: str) -> str:
        return f"{KEY_PREFIX}:block:{scope}:{client_ip}"

    async def check(self, client_ip: str, scope: str) -> RateLimitResult:
        try:
            block_ttl = await self.redis.pttl(self.block_key(client_ip, scope))
            if block_ttl != -2:
                return RateLimitResult(
                    allowed=False, remaining=0,
                    reset_in=_seconds_left(block_ttl, self.block), blocked=True,
                )

            counter = self.counter_key(client_ip, scope)
            attempts = int(await self.redis.get(counter) or 0)
            window_ttl = await self.redis.pttl(counter)
        except redis.RedisError as e:
            # Redis fora do ar: não bloqueia a integração
            logger.error(f"Rate limit check falhou: {e}")
            return RateLimitResult(allowed=True, remaining=self.max_attempts, reset_in=self.window, blocked=False)

        remaining = max(0, self.max_attempts - attempts)
        reset_in = self.window if window_ttl < 0 else _seconds_left(window_ttl, self.window)
        return RateLimitResult(allowed=remaining > 0, remaining=remaining, reset_in=reset_in, blocked=False)

    async def record_failure(self, client_ip: str, scope: str) -> int:
        """Conta uma falha; ao atingir o limite bloqueia o IP. Retorna as falhas na janela."""
        counter = self.counter_key(client_ip, scope)
        try:
            attempts = await self.redis.incr(counter)
            if attempts == 1:
                await self.redis.expire(counter, self.window)

            if attempts >= self.max_attempts:
                await self.redis.set(self.block_key(client_ip, scope), attempts, ex=self.block)
                await self.redis.delete(counter)
                logger.warning(f"Rate limit excedido para {scope}:{client_ip}; bloqueado por {self.block}s")
        except redis.RedisError as e:
            logger.error(f"Falha ao registrar tentativa ({scope}:{client_ip}): {e}")
            return 0
        return attempts

    async def reset(self, client_ip: str, scope: str) -> None:
        try:
            await self.redis.delete(self.counter_key(client_ip, scope))
        except redis.RedisError as e:
            logger.error(f"Falha ao zerar rate limit ({scope}:{client_ip}): {e}")
