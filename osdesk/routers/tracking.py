"""
OSDesk - Router de Acompanhamento público
Página do cliente: OS de celular pelo tracking_token, OS de informática
pelo id. Sem autenticação; URLs assinadas só para paths da própria OS.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from osdesk.database import get_db
from osdesk.dependencies import get_storage
from osdesk.models.service_order import CHECKLIST_FIELDS
from osdesk.schemas.media import MediaUrlsRequest
from osdesk.schemas.tracking import TrackingResponse, SignedUrlsResponse
from osdesk.sectors import Sector, SectorConfig, get_sector
from osdesk.services.security_utils import is_valid_uuid
from osdesk.services.storage_service import StorageService

router = APIRouter(prefix="/api/v1/tracking", tags=["Tracking"])

NOT_FOUND_MESSAGE = "Ordem de serviço não encontrada ou link inválido."


async def _find_order(db: AsyncSession, cfg: SectorConfig, token: str):
    if not token or not is_valid_uuid(token.strip()):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token inválido")

    model = cfg.model
    key = model.tracking_token if cfg.sector == Sector.CELULAR else model.id
    result = await db.execute(
        select(model).where(key == token.strip().lower(), model.deleted == False)  # noqa: E712
    )
    order = result.scalar_one_or_none()
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND_MESSAGE)
    return order


@router.get("/{token}", response_model=TrackingResponse)
async def get_tracking(
    token: str,
    order_type: Sector = Query(Sector.CELULAR),
    db: AsyncSession = Depends(get_db),
):
    cfg = get_sector(order_type)
    order = await _find_order(db, cfg, token)

    situation = await db.get(cfg.situation_model, order.situation_id) if order.situation_id else None
    withdrawal = (
        await db.get(cfg.withdrawal_model, order.withdrawal_situation_id)
        if order.withdrawal_situation_id else None
    )
    checklist = {}
    if cfg.sector == Sector.CELULAR:
        checklist = {name: getattr(order, name) for name in CHECKLIST_FIELDS}

    return TrackingResponse(
        os_number=order.os_number,
        device=order.device_label,
        defect=getattr(order, cfg.defect_field),
        entry_date=order.entry_date,
        exit_date=order.exit_date,
        withdrawn_by=order.withdrawn_by,
        situation_name=situation.name if situation else None,
        situation_color=situation.color if situation else None,
        withdrawal_name=withdrawal.name if withdrawal else None,
        withdrawal_color=withdrawal.color if withdrawal else None,
        media_files=order.media_files or [],
        checklist=checklist,
    )


@router.post("/media-urls", response_model=SignedUrlsResponse)
async def get_media_signed_urls(
    data: MediaUrlsRequest,
    db: AsyncSession = Depends(get_db),
    storage: StorageService = Depends(get_storage),
):
    """Assina (1 hora) os paths pedidos, desde que todos pertençam à OS do token."""
    cfg = get_sector(data.order_type or Sector.CELULAR)
    order = await _find_order(db, cfg, data.tracking_token)

    valid_paths = {m.get("path") for m in (order.media_files or [])}
    if any(path not in valid_paths for path in data.paths):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="One or more paths do not belong to this order",
        )

    signed_urls = {}
    for path in data.paths:
        url = await storage.get_signed_url(path)
        if url:
            signed_urls[path] = url
    return SignedUrlsResponse(signed_urls=signed_urls)
