"""
OSDesk - Cliente do Storage (Supabase Storage REST)
Upload sem sobrescrita, URLs assinadas temporárias, mover, remover e listar
objetos do bucket de mídia das OS.

Endpoints:
  Upload:  POST   /storage/v1/object/{bucket}/{path}   (x-upsert: false)
  Assinar: POST   /storage/v1/object/sign/{bucket}/{path}
  Mover:   POST   /storage/v1/object/move
  Remover: DELETE /storage/v1/object/{bucket}
  Listar:  POST   /storage/v1/object/list/{bucket}
"""
import logging
from typing import Optional, List, Dict, Any, Union, AsyncIterable
from urllib.parse import quote

import httpx

from osdesk.config import get_settings
from osdesk.schemas.media import MediaFile

logger = logging.getLogger("storage_service")

Content = Union[bytes, AsyncIterable[bytes]]


class StorageError(Exception):
    """Erro de comunicação com o storage."""

    def __init__(self, message: str, status_code: Optional[int] = None, size_limit: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.size_limit = size_limit


class StorageService:
    """
    Cliente para a API REST do Supabase Storage.

    Uso:
        storage = StorageService(url, service_key, "service-orders-media")
        await storage.upload("temp/1700000000000-ab12cd.jpg", data, "image/jpeg")
        url = await storage.create_signed_url("temp/1700000000000-ab12cd.jpg")
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str,
        signed_url_ttl: int = 3600,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.signed_url_ttl = signed_url_ttl
        self.timeout = timeout
        self._transport = transport

        self.api_url = f"{self.base_url}/storage/v1"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def _headers(self, extra: Optional[dict] = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        }
        if extra:
            headers.update(extra)
        return headers

    @staticmethod
    def _quote(path: str) -> str:
        return quote(path.lstrip("/"), safe="/")

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            return str(body.get("message") or body.get("error") or body)
        return str(body)

    def _raise_for_error(self, response: httpx.Response, action: str) -> None:
        if response.status_code < 400:
            return
        message = self._error_message(response)
        size_limit = response.status_code == 413 or "exceeded" in message.lower()
        raise StorageError(
            f"Erro no storage ao {action}: HTTP {response.status_code} - {message}",
            status_code=response.status_code,
            size_limit=size_limit,
        )

    # ================================================================
    # UPLOAD
    # ================================================================

    async def upload(
        self,
        path: str,
        content: Content,
        content_type: str,
        upsert: bool = False,
    ) -> str:
        """
        Envia um objeto. Com upsert=False o storage recusa um path já
        existente em vez de sobrescrever.
        """
        url = f"{self.api_url}/object/{self.bucket}/{self._quote(path)}"
        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    headers=self._headers({
                        "Content-Type": content_type or "application/octet-stream",
                        "x-upsert": "true" if upsert else "false",
                        "cache-control": "3600",
                    }),
                    content=content,
                )
        except httpx.RequestError as e:
            raise StorageError(f"Erro de conexão com o storage: {e}")

        self._raise_for_error(response, f"enviar {path}")
        logger.info(f"Upload concluído: {path}")
        return path

    # ================================================================
    # URLS ASSINADAS
    # ================================================================

    async def create_signed_url(self, path: str, expires_in: Optional[int] = None) -> str:
        expires_in = expires_in or self.signed_url_ttl
        url = f"{self.api_url}/object/sign/{self.bucket}/{self._quote(path)}"
        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    headers=self._headers(),
                    json={"expiresIn": expires_in},
                )
        except httpx.RequestError as e:
            raise StorageError(f"Erro de conexão com o storage: {e}")

        self._raise_for_error(response, f"assinar {path}")
        data = response.json()
        signed = data.get("signedURL") or data.get("signedUrl")
        if not signed:
            raise StorageError(f"Resposta sem URL assinada para {path}")
        if signed.startswith("http"):
            return signed
        return f"{self.api_url}{signed}"

    async def get_signed_url(self, path: str, expires_in: Optional[int] = None) -> Optional[str]:
        """Como create_signed_url, mas devolve None em caso de falha."""
        try:
            return await self.create_signed_url(path, expires_in)
        except StorageError as e:
            logger.error(f"Erro ao criar URL assinada para {path}: {e}")
            return None

    async def get_signed_urls(
        self, files: List[MediaFile], expires_in: Optional[int] = None
    ) -> List[MediaFile]:
        """Renova a URL de cada arquivo; mantém a URL anterior se falhar."""
        signed_files = []
        for media in files:
            signed_url = await self.get_signed_url(media.path, expires_in)
            signed_files.append(media.model_copy(update={"url": signed_url or media.url}))
        return signed_files

    async def upload_and_get_signed_url(
        self, path: str, content: Content, content_type: str
    ) -> Dict[str, str]:
        await self.upload(path, content, content_type, upsert=False)
        signed_url = await self.create_signed_url(path)
        return {"path": path, "signed_url": signed_url}

    # ================================================================
    # MOVER / REMOVER / LISTAR
    # ================================================================

    async def move(self, source: str, destination: str) -> None:
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.api_url}/object/move",
                    headers=self._headers(),
                    json={
                        "bucketId": self.bucket,
                        "sourceKey": source,
                        "destinationKey": destination,
                    },
                )
        except httpx.RequestError as e:
            raise StorageError(f"Erro de conexão com o storage: {e}")

        self._raise_for_error(response, f"mover {source}")
        logger.info(f"Objeto movido: {source} → {destination}")

    async def remove(self, paths: List[str]) -> None:
        if not paths:
            return
        try:
            async with self._client() as client:
                response = await client.request(
                    "DELETE",
                    f"{self.api_url}/object/{self.bucket}",
                    headers=self._headers(),
                    json={"prefixes": paths},
                )
        except httpx.RequestError as e:
            raise StorageError(f"Erro de conexão com o storage: {e}")

        self._raise_for_error(response, "remover objetos")
        logger.info(f"Objetos removidos: {paths}")

    async def list(self, prefix: str, limit: int = 1000) -> List[Dict[str, Any]]:
        """Lista os objetos diretamente abaixo de `prefix` (sem recursão)."""
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self.api_url}/object/list/{self.bucket}",
                    headers=self._headers(),
                    json={
                        "prefix": prefix.strip("/"),
                        "limit": limit,
                        "offset": 0,
                        "sortBy": {"column": "name", "order": "asc"},
                    },
                )
        except httpx.RequestError as e:
            raise StorageError(f"Erro de conexão com o storage: {e}")

        self._raise_for_error(response, f"listar {prefix}")
        return response.json()


def create_storage_service() -> StorageService:
    settings = get_settings()
    return StorageService(
        base_url=settings.STORAGE_URL,
        service_key=settings.STORAGE_SERVICE_KEY,
        bucket=settings.STORAGE_BUCKET,
        signed_url_ttl=settings.SIGNED_URL_TTL_SECONDS,
    )
