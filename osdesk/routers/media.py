"""
OSDesk - Router de Mídia das OS
Rascunho de anexos do formulário (nova OS ou edição): listar, enviar lote,
remover, carregar da OS salva e limpar.

Sem `order_id` o rascunho é o da nova OS e os uploads vão para a pasta
temporária do setor; com `order_id` vão direto para a pasta da OS.
"""
from typing import List
from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession
from osdesk.database import get_db
from osdesk.dependencies import get_current_user, get_draft_store, get_pipeline, get_sector_config
from osdesk.models.user import User
from osdesk.schemas.common import MessageResponse
from osdesk.schemas.media import MediaFile, MediaDraftResponse, MediaBatchResponse
from osdesk.sectors import SectorConfig
from osdesk.services.draft_store import DraftStore
from osdesk.services.media_normalizer import IncomingMedia
from osdesk.services.media_pipeline import MediaPipeline, PersistedMediaFiles
from osdesk.services.service_order_service import get_owned_order, OrderNotFoundError
from osdesk.services.storage_service import StorageError

router = APIRouter(prefix="/api/v1/{sector}/media", tags=["Media"])


async def _media_set(
    cfg: SectorConfig, user: User, store: DraftStore, db: AsyncSession, order_id: str | None
) -> PersistedMediaFiles:
    if order_id:
        try:
            await get_owned_order(db, cfg, user.id, order_id)
        except OrderNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="OS não encontrada.")
    media_set = PersistedMediaFiles(store, cfg.table, user.id, order_id)
    await media_set.load()
    return media_set


def _draft(media_set: PersistedMediaFiles) -> MediaDraftResponse:
    return MediaDraftResponse(
        storage_key=media_set.storage_key,
        files=media_set.files,
        loaded_from_db=media_set.loaded_from_db,
    )


def _incoming(upload: UploadFile) -> IncomingMedia:
    size = upload.size
    if size is None:
        upload.file.seek(0, 2)
        size = upload.file.tell()
        upload.file.seek(0)
    return IncomingMedia(
        name=upload.filename or "arquivo",
        content_type=upload.content_type,
        size=size,
        file=upload.file,
    )


@router.get("/draft", response_model=MediaDraftResponse)
async def get_draft(
    order_id: str | None = None,
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    store: DraftStore = Depends(get_draft_store),
    pipeline: MediaPipeline = Depends(get_pipeline),
    current_user: User = Depends(get_current_user),
):
    """Restaura o rascunho com URLs assinadas renovadas."""
    media_set = await _media_set(cfg, current_user, store, db, order_id)
    await media_set.refresh_signed_urls(pipeline.storage)
    return _draft(media_set)


@router.post("/draft/upload", response_model=MediaBatchResponse)
async def upload_files(
    files: List[UploadFile] = File(...),
    order_id: str | None = None,
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    store: DraftStore = Depends(get_draft_store),
    pipeline: MediaPipeline = Depends(get_pipeline),
    current_user: User = Depends(get_current_user),
):
    """
    Normaliza e envia um lote de fotos/vídeos, um por vez. Falhas por arquivo
    voltam em `failures` sem interromper os demais.
    """
    media_set = await _media_set(cfg, current_user, store, db, order_id)
    prefix = cfg.order_prefix(order_id) if order_id else cfg.temp_prefix

    result = await pipeline.process_batch([_incoming(f) for f in files], prefix, media_set)
    return MediaBatchResponse(
        files=media_set.files,
        uploaded=result.uploaded,
        failures=result.failures,
    )


@router.delete("/draft/{index}", response_model=MediaDraftResponse)
async def remove_file(
    index: int,
    order_id: str | None = None,
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    store: DraftStore = Depends(get_draft_store),
    pipeline: MediaPipeline = Depends(get_pipeline),
    current_user: User = Depends(get_current_user),
):
    """Apaga o arquivo do storage e tira da lista. Se o storage falhar, a lista não muda."""
    media_set = await _media_set(cfg, current_user, store, db, order_id)
    try:
        await pipeline.remove_file(media_set, index)
    except IndexError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Arquivo não encontrado na lista.")
    except StorageError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Erro ao remover arquivo: {e}",
        )
    return _draft(media_set)


@router.post("/draft/load-from-order/{order_id}", response_model=MediaDraftResponse)
async def load_from_order(
    order_id: str,
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    store: DraftStore = Depends(get_draft_store),
    pipeline: MediaPipeline = Depends(get_pipeline),
    current_user: User = Depends(get_current_user),
):
    """Abre a edição: mídia da OS salva + uploads pendentes do rascunho."""
    media_set = await _media_set(cfg, current_user, store, db, order_id)
    order = await get_owned_order(db, cfg, current_user.id, order_id)

    db_files = [MediaFile.model_validate(m) for m in (order.media_files or [])]
    await media_set.set_media_files_from_db(db_files)
    await media_set.refresh_signed_urls(pipeline.storage)
    return _draft(media_set)


@router.delete("/draft", response_model=MessageResponse)
async def clear_draft(
    order_id: str | None = None,
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    store: DraftStore = Depends(get_draft_store),
    current_user: User = Depends(get_current_user),
):
    """Descarta o rascunho (ex.: formulário cancelado). Os arquivos ficam no storage."""
    media_set = await _media_set(cfg, current_user, store, db, order_id)
    await media_set.clear_persisted_files()
    return MessageResponse(message="Rascunho de mídia limpo.")
