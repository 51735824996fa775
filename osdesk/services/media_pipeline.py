"""
OSDesk - Pipeline de mídia persistida
Mantém a lista de anexos de um formulário de OS espelhada no draft store,
normaliza e envia arquivos ao storage, move anexos temporários para a pasta
da OS recém-criada e renova URLs assinadas.

Chaves do rascunho:
  os_media_files:{user_id}:{form_type}_new
  os_media_files:{user_id}:{form_type}_edit_{order_id}
"""
import enum
import json
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Optional, List, Callable

from pydantic import ValidationError

from osdesk.schemas.media import MediaFile, MediaFailure
from osdesk.services.draft_store import DraftStore
from osdesk.services.storage_service import StorageService, StorageError
from osdesk.services.media_normalizer import (
    MediaNormalizer, MediaError, IncomingMedia, ProcessedMedia,
    VIDEO_MIME_BY_EXTENSION, file_extension,
)

logger = logging.getLogger("media_pipeline")

STORAGE_PREFIX = "os_media_files"

# Entradas que o storage devolve na listagem e não são arquivos.
STORAGE_PLACEHOLDERS = {".emptyFolderPlaceholder"}


def draft_key(user_id: int, form_type: str, order_id: Optional[str] = None) -> str:
    if order_id:
        return f"{STORAGE_PREFIX}:{user_id}:{form_type}_edit_{order_id}"
    return f"{STORAGE_PREFIX}:{user_id}:{form_type}_new"


class MediaSetState(str, enum.Enum):
    EMPTY = "empty"
    LOADING = "loading"      # OS existente aguardando a lista do banco
    READY = "ready"


class MediaUploadError(MediaError):
    pass


# ════════════════════════════════════════════════════════
# LISTA PERSISTIDA
# ════════════════════════════════════════════════════════

class PersistedMediaFiles:
    """
    Lista de anexos de uma instância de formulário.

    Toda mutação grava no draft store antes de retornar. Se o cliente cair
    (ex.: o navegador mobile descarrega a página ao abrir a câmera nativa),
    o próximo request encontra exatamente a lista atual.
    """

    def __init__(self, store: DraftStore, form_type: str, user_id: int, order_id: Optional[str] = None):
        self.store = store
        self.form_type = form_type
        self.user_id = user_id
        self.order_id = order_id
        self.storage_key = draft_key(user_id, form_type, order_id)
        self.files: List[MediaFile] = []
        self.state = MediaSetState.EMPTY
        self.loaded_from_db = False

    async def _read(self) -> List[MediaFile]:
        raw = await self.store.get(self.storage_key)
        if not raw:
            return []
        try:
            return [MediaFile.model_validate(item) for item in json.loads(raw)]
        except (ValueError, TypeError, ValidationError) as e:
            logger.error(f"[MediaPersist] Rascunho inválido em {self.storage_key}: {e}")
            return []

    async def _write(self, files: List[MediaFile]) -> None:
        # edição guarda "[]" para distinguir lista esvaziada de rascunho inexistente
        if files or self.order_id:
            payload = json.dumps([f.model_dump() for f in files])
            await self.store.set(self.storage_key, payload)
        else:
            await self.store.remove(self.storage_key)
        self.files = list(files)

    async def has_draft(self) -> bool:
        return await self.store.get(self.storage_key) is not None

    async def current(self) -> List[MediaFile]:
        """Conteúdo atual do rascunho (fonte de verdade entre requests)."""
        return await self._read()

    async def load(self) -> List[MediaFile]:
        """Restaura o rascunho. OS nova fica pronta; OS existente aguarda o banco."""
        self.files = await self._read()
        self.state = MediaSetState.LOADING if self.order_id else MediaSetState.READY
        logger.info(f"[MediaPersist] Inicializando com {len(self.files)} arquivos (key: {self.storage_key})")
        return self.files

    async def set_media_files(self, files: List[MediaFile]) -> List[MediaFile]:
        await self._write(files)
        return self.files

    async def set_media_files_from_db(self, db_files: List[MediaFile]) -> List[MediaFile]:
        """
        Lista vinda do banco mesclada com o que está no rascunho, sem
        duplicar paths. Uploads ainda não salvos na OS não se perdem.
        """
        persisted = await self._read()
        db_paths = {f.path for f in db_files}
        pending = [f for f in persisted if f.path not in db_paths]
        merged = list(db_files) + pending

        if pending:
            logger.info(f"[MediaPersist] Merge: {len(db_files)} DB + {len(pending)} rascunho = {len(merged)}")
        else:
            logger.info(f"[MediaPersist] Carregou {len(db_files)} arquivos do DB")

        await self._write(merged)
        self.state = MediaSetState.READY
        self.loaded_from_db = True
        return self.files

    async def add_media_files(self, new_files: List[MediaFile]) -> List[MediaFile]:
        # Parte do conteúdo atual do rascunho, não da cópia em memória:
        # o upload pode terminar depois de outro request ter alterado a lista.
        current = await self._read()
        known = {f.path for f in current}
        updated = current + [f for f in new_files if f.path not in known]
        await self._write(updated)
        logger.info(f"[MediaPersist] Adicionou {len(new_files)} arquivo(s), total: {len(updated)}")
        return self.files

    async def remove_media_file(self, index: int) -> MediaFile:
        current = await self._read()
        if index < 0 or index >= len(current):
            raise IndexError(f"Índice de mídia inválido: {index}")
        removed = current[index]
        await self._write(current[:index] + current[index + 1:])
        logger.info(f"[MediaPersist] Removeu índice {index}, restam: {len(self.files)}")
        return removed

    async def clear_persisted_files(self) -> None:
        """Limpa após salvar com sucesso. Na edição também limpa o rascunho de OS nova."""
        await self.store.remove(self.storage_key)
        if self.order_id:
            await self.store.remove(draft_key(self.user_id, self.form_type))
        self.files = []
        logger.info(f"[MediaPersist] Rascunho limpo ({self.storage_key})")

    async def refresh_signed_urls(self, storage: StorageService) -> List[MediaFile]:
        """URLs do rascunho podem ter expirado; renova a partir do path."""
        current = await self._read()
        if not current:
            return self.files
        refreshed = await storage.get_signed_urls(current)
        await self._write(refreshed)
        logger.info(f"[MediaPersist] URLs renovadas para {len(refreshed)} arquivos")
        return self.files


# ════════════════════════════════════════════════════════
# PIPELINE
# ════════════════════════════════════════════════════════

BatchProgressCallback = Callable[[str, int], None]


@dataclass
class BatchResult:
    uploaded: List[MediaFile] = field(default_factory=list)
    failures: List[MediaFailure] = field(default_factory=list)


@dataclass
class RelocationResult:
    files: List[MediaFile] = field(default_factory=list)
    failed_paths: List[str] = field(default_factory=list)


class MediaPipeline:
    """
    Orquestra normalização + storage + lista persistida.

    Uso:
        pipeline = MediaPipeline(storage)
        result = await pipeline.process_batch(files, "temp/", media_set)
    """

    def __init__(self, storage: StorageService, normalizer: Optional[MediaNormalizer] = None):
        self.storage = storage
        self.normalizer = normalizer or MediaNormalizer()

    @staticmethod
    def build_file_name(processed: ProcessedMedia) -> str:
        """`{epoch_ms}-{aleatório}.{ext}`; imagens sempre .jpg."""
        ext = processed.extension if processed.media_type == "video" else "jpg"
        return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext}"

    async def upload(self, processed: ProcessedMedia, prefix: str) -> MediaFile:
        path = f"{prefix}{self.build_file_name(processed)}"
        try:
            result = await self.storage.upload_and_get_signed_url(
                path, processed.content, processed.content_type
            )
        except StorageError as e:
            logger.error(f"Erro no upload de {processed.name}: {e}")
            if e.size_limit:
                raise MediaUploadError(
                    processed.name,
                    "O arquivo excede o limite de 5GB. Por favor, use um arquivo menor.",
                )
            raise MediaUploadError(processed.name, f"Falha no upload de {processed.name}")

        return MediaFile(
            url=result["signed_url"],
            path=result["path"],
            type=processed.media_type,
            name=processed.name,
        )

    async def process_batch(
        self,
        files: List[IncomingMedia],
        prefix: str,
        media_set: PersistedMediaFiles,
        on_progress: Optional[BatchProgressCallback] = None,
    ) -> BatchResult:
        """
        Processa um lote em sequência (normaliza → envia → adiciona à lista).
        Falha em um arquivo não interrompe os demais.
        """
        result = BatchResult()

        for raw in files:
            def report(value: int, name: str = raw.name):
                if on_progress:
                    on_progress(name, value)

            try:
                processed = await self.normalizer.normalize(raw, on_progress=report)
                report(70)
                media = await self.upload(processed, prefix)
                report(90)
                await media_set.add_media_files([media])
                report(100)
                result.uploaded.append(media)
            except MediaError as e:
                logger.error(f"Erro ao processar {raw.name}: {e}")
                result.failures.append(MediaFailure(name=raw.name, message=str(e)))

        return result

    async def remove_file(self, media_set: PersistedMediaFiles, index: int) -> MediaFile:
        """
        Remove o objeto do storage e só então tira da lista. Se o storage
        falhar a lista fica como está e o StorageError sobe.
        """
        current = await media_set.current()
        if index < 0 or index >= len(current):
            raise IndexError(f"Índice de mídia inválido: {index}")

        await self.storage.remove([current[index].path])
        return await media_set.remove_media_file(index)

    async def relocate_on_first_save(
        self,
        files: List[MediaFile],
        order_id: str,
        temp_prefix: str = "temp/",
        dest_prefix: str = "",
    ) -> RelocationResult:
        """
        Move anexos de `temp_prefix` para `{dest_prefix}{order_id}/` depois
        que a OS ganhou id. Falhas mantêm o path temporário e ficam no log.
        """
        result = RelocationResult()
        target = f"{dest_prefix}{order_id}/"

        for media in files:
            if not media.path.startswith(temp_prefix):
                result.files.append(media)
                continue

            new_path = target + media.path[len(temp_prefix):]
            try:
                await self.storage.move(media.path, new_path)
            except StorageError as e:
                logger.error(f"Erro ao mover arquivo {media.path} para {new_path} (OS {order_id}): {e}")
                result.files.append(media)
                result.failed_paths.append(media.path)
                continue

            signed_url = await self.storage.get_signed_url(new_path)
            result.files.append(media.model_copy(update={"path": new_path, "url": signed_url or media.url}))

        return result

    async def refresh_signed_urls(self, files: List[MediaFile]) -> List[MediaFile]:
        return await self.storage.get_signed_urls(files)

    async def list_order_files(self, prefix: str) -> List[MediaFile]:
        """
        Recupera anexos direto do storage quando a OS perdeu a lista.
        Aqui o tipo vem só da extensão.
        """
        try:
            entries = await self.storage.list(prefix)
        except StorageError as e:
            logger.error(f"Erro ao listar arquivos de {prefix}: {e}")
            return []

        files = []
        for entry in entries:
            name = entry.get("name")
            # pastas vêm sem id
            if not name or name in STORAGE_PLACEHOLDERS or entry.get("id") is None:
                continue
            path = f"{prefix.rstrip('/')}/{name}"
            media_type = "video" if file_extension(name) in VIDEO_MIME_BY_EXTENSION else "image"
            signed_url = await self.storage.get_signed_url(path)
            files.append(MediaFile(url=signed_url or "", path=path, type=media_type, name=name))

        logger.info(f"Recuperados {len(files)} arquivos do storage em {prefix}")
        return files
