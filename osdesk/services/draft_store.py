"""
OSDesk - Armazenamento de rascunhos (Redis)
Chave/valor durável por sessão usado para espelhar a lista de mídias de um
formulário aberto. Cada escrita é aguardada antes de devolver o controle,
então uma queda do cliente logo depois não perde o que já foi gravado.
"""
import logging
from typing import Optional

import redis.asyncio as redis

from osdesk.config import get_settings

logger = logging.getLogger("draft_store")


class DraftStore:
    """
    Wrapper mínimo get/set/remove sobre Redis.

    Uso:
        store = DraftStore(redis.from_url(url, decode_responses=True), ttl_seconds=86400)
        await store.set("os_media_files:1:service_orders_new", "[...]")
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = 86400):
        self.redis = client
        self.ttl_seconds = ttl_seconds

    async def get(self, key: str) -> Optional[str]:
        value = await self.redis.get(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str) -> None:
        await self.redis.set(key, value, ex=self.ttl_seconds)

    async def remove(self, key: str) -> None:
        await self.redis.delete(key)


def create_draft_store(client: redis.Redis) -> DraftStore:
    logger.info("Draft store de mídia inicializado")
    return DraftStore(client, ttl_seconds=get_settings().MEDIA_DRAFT_TTL_SECONDS)
