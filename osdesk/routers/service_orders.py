"""
OSDesk - Router de Ordens de Serviço
CRUD das OS por setor (/api/v1/celular/orders, /api/v1/informatica/orders),
numeração sugerida e checagem prévia do número.
Todas as consultas filtram por user_id.
"""
from dataclasses import asdict
from datetime import datetime
from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from osdesk.database import get_db
from osdesk.dependencies import get_current_user, get_draft_store, get_pipeline, get_sector_config
from osdesk.models.user import User
from osdesk.schemas.common import MessageResponse
from osdesk.schemas.service_order import (
    ServiceOrderResponse,
    ServiceOrderSaveResponse,
    ServiceOrderListResponse,
    RetryAttemptResponse,
    SituationChange,
    OsNumberCheck,
    OsNumberCheckResponse,
    ExistingOrderResponse,
    NextNumberResponse,
)
from osdesk.sectors import SectorConfig
from osdesk.services.draft_store import DraftStore
from osdesk.services.media_pipeline import MediaPipeline, PersistedMediaFiles
from osdesk.services.os_number_allocator import OsNumberAllocator, OsNumberExhaustedError
from osdesk.services import service_order_service as orders
from osdesk.services.service_order_service import (
    OrderFilters,
    OrderSaveResult,
    OrderNotFoundError,
    OsNumberConflictError,
    PayloadValidationError,
)

router = APIRouter(prefix="/api/v1/{sector}/orders", tags=["Service Orders"])


def _not_found(e: OrderNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="OS não encontrada.")


def _validate(cfg: SectorConfig, data: dict, partial: bool):
    try:
        return orders.validate_payload(cfg.sector.value, data, partial=partial)
    except PayloadValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(e), "errors": e.errors},
        )


def _conflict(e: OsNumberConflictError) -> HTTPException:
    reservation = e.reservation
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "message": reservation.message,
            "new_number": reservation.new_number,
            "conflict": ExistingOrderResponse(**asdict(reservation.conflict)).model_dump(),
        },
    )


def _save_response(result: OrderSaveResult) -> ServiceOrderSaveResponse:
    outcome = result.outcome
    if not outcome.succeeded:
        if outcome.number_unavailable:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Não foi possível encontrar um número de OS disponível. Tente novamente.",
            )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Erro ao salvar OS.",
        )

    return ServiceOrderSaveResponse(
        **ServiceOrderResponse.model_validate(result.order).model_dump(),
        retries=[RetryAttemptResponse(**asdict(a)) for a in outcome.attempts],
        media_relocation_failures=result.media_relocation_failures,
    )


@router.get("", response_model=list[ServiceOrderListResponse])
async def list_orders(
    situation_id: str | None = None,
    withdrawal_situation_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    client_name: str | None = None,
    os_number: int | None = None,
    limit: int = Query(500, ge=1, le=5000),
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Lista as OS não excluídas do setor, com filtros."""
    filters = OrderFilters(
        situation_id=situation_id,
        withdrawal_situation_id=withdrawal_situation_id,
        date_from=date_from,
        date_to=date_to,
        client_name=client_name,
        os_number=os_number,
        limit=limit,
    )
    rows = await orders.list_orders(db, current_user.id, cfg.sector, filters)
    return [
        ServiceOrderListResponse(
            id=o.id,
            os_number=o.os_number,
            client_name=o.client_name,
            device_info=o.device_label or "Não especificado",
            situation_id=o.situation_id,
            withdrawal_situation_id=o.withdrawal_situation_id,
            entry_date=o.entry_date,
            exit_date=o.exit_date,
            value=o.value,
        )
        for o in rows
    ]


@router.get("/next-number", response_model=NextNumberResponse)
async def next_number(
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Número sugerido para o formulário de nova OS."""
    allocator = OsNumberAllocator(db, current_user.id, cfg.table)
    number = await allocator.suggest_next_number()
    await db.commit()
    return NextNumberResponse(os_number=number)


@router.post("/check-number", response_model=OsNumberCheckResponse)
async def check_number(
    data: OsNumberCheck,
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Checagem prévia do número digitado. Só informa; a unicidade é garantida ao salvar."""
    allocator = OsNumberAllocator(db, current_user.id, cfg.table)
    try:
        reservation = await allocator.validate_and_reserve(data.os_number, data.exclude_order_id)
    except OsNumberExhaustedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    await db.commit()

    return OsNumberCheckResponse(
        valid=reservation.valid,
        new_number=reservation.new_number,
        conflict=ExistingOrderResponse(**asdict(reservation.conflict)) if reservation.conflict else None,
        message=reservation.message,
    )


@router.get("/{order_id}", response_model=ServiceOrderResponse)
async def get_order(
    order_id: str,
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    pipeline: MediaPipeline = Depends(get_pipeline),
    current_user: User = Depends(get_current_user),
):
    """OS com URLs de mídia renovadas."""
    try:
        order = await orders.get_order(db, current_user.id, cfg.sector, order_id, pipeline)
    except OrderNotFoundError as e:
        raise _not_found(e)
    return ServiceOrderResponse.model_validate(order)


@router.post("", response_model=ServiceOrderSaveResponse, status_code=201)
async def create_order(
    data: dict = Body(...),
    check_number: bool = Query(True, description="Recusa com 409 se o número informado já existir"),
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    store: DraftStore = Depends(get_draft_store),
    pipeline: MediaPipeline = Depends(get_pipeline),
    current_user: User = Depends(get_current_user),
):
    """
    Cria a OS. Anexos enviados ao rascunho de nova OS vão junto e são
    movidos da pasta temporária para a pasta da OS.
    """
    payload = _validate(cfg, data, partial=False)
    media_set = PersistedMediaFiles(store, cfg.table, current_user.id)

    try:
        result = await orders.create_order(
            db, current_user.id, payload, media_set=media_set, pipeline=pipeline, precheck=check_number
        )
    except OsNumberConflictError as e:
        raise _conflict(e)
    return _save_response(result)


@router.put("/{order_id}", response_model=ServiceOrderSaveResponse)
async def update_order(
    order_id: str,
    data: dict = Body(...),
    check_number: bool = Query(True),
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    store: DraftStore = Depends(get_draft_store),
    current_user: User = Depends(get_current_user),
):
    """Atualiza a OS. Se houver rascunho de mídia da edição, ele vira a lista da OS."""
    patch = _validate(cfg, data, partial=True)
    media_set = PersistedMediaFiles(store, cfg.table, current_user.id, order_id)
    if not await media_set.has_draft():
        media_set = None

    try:
        result = await orders.update_order(
            db, current_user.id, order_id, patch, media_set=media_set, precheck=check_number
        )
    except OrderNotFoundError as e:
        raise _not_found(e)
    except OsNumberConflictError as e:
        raise _conflict(e)
    return _save_response(result)


@router.patch("/{order_id}/situation", response_model=ServiceOrderResponse)
async def change_situation(
    order_id: str,
    data: SituationChange,
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        order = await orders.change_situation(db, current_user.id, cfg.sector, order_id, data)
    except OrderNotFoundError as e:
        raise _not_found(e)
    return ServiceOrderResponse.model_validate(order)


@router.delete("/{order_id}", response_model=MessageResponse)
async def delete_order(
    order_id: str,
    cfg: SectorConfig = Depends(get_sector_config),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Exclusão lógica (deleted=True)."""
    try:
        await orders.soft_delete(db, current_user.id, cfg.sector, order_id)
    except OrderNotFoundError as e:
        raise _not_found(e)
    return MessageResponse(message="OS excluída.")
