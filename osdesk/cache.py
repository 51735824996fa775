"""
OSDesk - Cliente Redis compartilhado
Um único pool por processo, usado pelo draft store de mídia, pelo cache de
sessões e pelo rate limiter da integração.
"""
import logging

import redis.asyncio as redis

from osdesk.config import get_settings

logger = logging.getLogger("cache")


def create_redis_client() -> redis.Redis:
    settings = get_settings()
    client = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
    logger.info("Cliente Redis inicializado")
    return client
