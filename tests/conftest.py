"""
Configuração do pytest para os testes do OSDesk
Banco SQLite em memória, Redis (rascunhos, sessões e rate limit) em fakeredis
e storage simulado via httpx.MockTransport. O lifespan do app não roda nos testes.
"""
import io
import json
import os
import uuid
from typing import Dict, Set, Optional

# Antes de qualquer import do osdesk: get_settings() é cacheado
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ["N8N_API_KEY"] = "test-api-key"
os.environ["STORAGE_URL"] = "http://storage.test"
os.environ["STORAGE_BUCKET"] = "service-orders-media"

import httpx
import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from osdesk.database import Base, get_db
from osdesk.middleware.auth import create_access_token
from osdesk.middleware.rate_limiter import RateLimiter
from osdesk.models import User, Situation, SituacaoInformatica, ServiceOrder
from osdesk.services.draft_store import DraftStore
from osdesk.services.media_normalizer import MediaNormalizer
from osdesk.services.media_pipeline import MediaPipeline
from osdesk.services.session_cache import SessionCache
from osdesk.services.storage_service import StorageService

TEST_DATABASE_URL = "sqlite+aiosqlite://"
TEST_API_KEY = "test-api-key"
BUCKET = "service-orders-media"
STORAGE_URL = "http://storage.test"


# =============================================================================
# Storage simulado
# =============================================================================

class FakeStorageServer:
    """
    Imita a API REST do storage em memória. Os conjuntos `fail_*` forçam
    erro em paths específicos.
    """

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.content_types: Dict[str, str] = {}
        self.fail_move: Set[str] = set()
        self.fail_remove: Set[str] = set()
        self.fail_sign: Set[str] = set()
        self.upload_error: Optional[tuple] = None    # (status, message)
        self.list_error = False
        self.sign_count = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        base = "/storage/v1/object/"
        rest = request.url.path[len(base):]

        if request.method == "POST" and rest == "move":
            return self._move(json.loads(request.content))
        if request.method == "POST" and rest.startswith("sign/"):
            return self._sign(rest[len(f"sign/{BUCKET}/"):])
        if request.method == "POST" and rest.startswith("list/"):
            return self._list(json.loads(request.content))
        if request.method == "DELETE":
            return self._remove(json.loads(request.content))
        if request.method == "POST":
            return self._upload(rest[len(f"{BUCKET}/"):], request)
        return httpx.Response(404, json={"message": "not found"})

    def _upload(self, key: str, request: httpx.Request) -> httpx.Response:
        if self.upload_error:
            status, message = self.upload_error
            return httpx.Response(status, json={"message": message})
        if key in self.objects and request.headers.get("x-upsert") != "true":
            return httpx.Response(409, json={"message": "The resource already exists"})
        self.objects[key] = request.content
        self.content_types[key] = request.headers.get("content-type", "")
        return httpx.Response(200, json={"Key": f"{BUCKET}/{key}"})

    def _sign(self, key: str) -> httpx.Response:
        if key in self.fail_sign or key not in self.objects:
            return httpx.Response(400, json={"message": "Object not found"})
        self.sign_count += 1
        return httpx.Response(200, json={"signedURL": f"/object/sign/{BUCKET}/{key}?token=t{self.sign_count}"})

    def _move(self, body: dict) -> httpx.Response:
        source, destination = body["sourceKey"], body["destinationKey"]
        if source in self.fail_move or source not in self.objects:
            return httpx.Response(400, json={"message": "Object not found"})
        self.objects[destination] = self.objects.pop(source)
        self.content_types[destination] = self.content_types.pop(source, "")
        return httpx.Response(200, json={"message": "Successfully moved"})

    def _remove(self, body: dict) -> httpx.Response:
        paths = body.get("prefixes", [])
        if any(p in self.fail_remove for p in paths):
            return httpx.Response(500, json={"message": "Internal error"})
        for path in paths:
            self.objects.pop(path, None)
        return httpx.Response(200, json=[{"name": p} for p in paths])

    def _list(self, body: dict) -> httpx.Response:
        if self.list_error:
            return httpx.Response(500, json={"message": "Internal error"})
        prefix = body["prefix"].strip("/") + "/"
        entries, folders = [], set()
        for key in sorted(self.objects):
            if not key.startswith(prefix):
                continue
            name = key[len(prefix):]
            if "/" in name:
                folders.add(name.split("/")[0])
                continue
            entries.append({"name": name, "id": str(uuid.uuid4()), "metadata": {}})
        entries += [{"name": folder, "id": None} for folder in sorted(folders)]
        return httpx.Response(200, json=entries)


@pytest.fixture
def storage_server():
    return FakeStorageServer()


@pytest.fixture
def storage(storage_server):
    return StorageService(
        base_url=STORAGE_URL,
        service_key="service-key",
        bucket=BUCKET,
        transport=httpx.MockTransport(storage_server.handler),
    )


@pytest.fixture
def normalizer():
    return MediaNormalizer(max_dimension=256, quality=85, max_video_size_mb=1)


@pytest.fixture
def pipeline(storage, normalizer):
    return MediaPipeline(storage, normalizer)


# =============================================================================
# Redis
# =============================================================================

@pytest_asyncio.fixture
async def redis_client():
    client = FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()


@pytest_asyncio.fixture
async def draft_store(redis_client):
    return DraftStore(redis_client, ttl_seconds=60)


# =============================================================================
# Banco de dados
# =============================================================================

@pytest_asyncio.fixture
async def test_engine():
    """Engine SQLite em memória compartilhada por conexão única."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine):
    session_maker = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture
async def user(db_session):
    """Conta da loja com a situação "Em fila" nos dois setores."""
    account = User(
        email="loja@example.com",
        username="loja",
        hashed_password="not-a-real-hash",
        full_name="Loja Teste",
        phone="11999990000",
        city="São Paulo",
        is_active=True,
    )
    db_session.add(account)
    await db_session.flush()
    db_session.add(Situation(user_id=account.id, name="Em fila", color="#6b7280"))
    db_session.add(SituacaoInformatica(user_id=account.id, name="Em fila", color="#6b7280"))
    await db_session.commit()
    await db_session.refresh(account)
    return account


@pytest_asyncio.fixture
async def other_user(db_session):
    account = User(email="outra@example.com", username="outra", hashed_password="x", is_active=True)
    db_session.add(account)
    await db_session.commit()
    await db_session.refresh(account)
    return account


@pytest.fixture
def make_order(db_session):
    """Cria uma OS de celular diretamente no banco."""

    async def _make(user_id: int, os_number: int, **fields) -> ServiceOrder:
        values = {
            "client_name": "Maria Silva",
            "device_model": "iPhone 12",
            "reported_defect": "Tela quebrada",
        }
        values.update(fields)
        order = ServiceOrder(user_id=user_id, os_number=os_number, **values)
        db_session.add(order)
        await db_session.commit()
        await db_session.refresh(order)
        return order

    return _make


# =============================================================================
# Mídia
# =============================================================================

@pytest.fixture
def make_image():
    """Gera bytes de imagem no formato pedido."""

    def _make(size=(64, 48), fmt="PNG", mode="RGB", color=(200, 30, 30)) -> bytes:
        if mode == "RGBA":
            color = color + (128,)
        img = Image.new(mode, size, color)
        buffer = io.BytesIO()
        img.save(buffer, format=fmt)
        return buffer.getvalue()

    return _make


# =============================================================================
# App
# =============================================================================

@pytest_asyncio.fixture
async def session_cache(redis_client):
    cache = SessionCache(redis_client, ttl_seconds=3600)
    cache.begin_loading()
    await cache.finish_loading()
    return cache


@pytest.fixture
def rate_limiter(redis_client):
    return RateLimiter(redis_client, max_attempts=3, window_seconds=60, block_seconds=900)


@pytest_asyncio.fixture
async def client(db_session, draft_store, storage, pipeline, session_cache, rate_limiter):
    """Cliente HTTP do app com dependências de teste (sem lifespan)."""
    from osdesk.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.session_cache = session_cache
    app.state.draft_store = draft_store
    app.state.storage = storage
    app.state.media_pipeline = pipeline
    app.state.rate_limiter = rate_limiter

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def auth_headers(user, session_cache):
    session = await session_cache.sign_in(user.id)
    token = create_access_token(user.id, session.session_id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api_key_headers():
    return {"X-API-Key": TEST_API_KEY}
