"""
OSDesk - Serviço de Ordens de Serviço
Criação e edição com numeração segura (OsNumberAllocator), mudança de
situação, exclusão lógica, listagem com filtros e leitura com recuperação
de anexos órfãos.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Any

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from osdesk.schemas.media import MediaFile
from osdesk.schemas.service_order import NewOrderPayload, OrderPatch, SituationChange
from osdesk.sectors import Sector, SectorConfig, get_sector
from osdesk.services.media_pipeline import MediaPipeline, PersistedMediaFiles
from osdesk.services.os_number_allocator import OsNumberAllocator, Reservation, SaveOutcome
from osdesk.services.security_utils import escape_ilike

logger = logging.getLogger("service_order_service")

DEFAULT_SITUATION_NAME = "Em fila"
DEFAULT_LIST_LIMIT = 500

_NEW_ADAPTER = TypeAdapter(NewOrderPayload)
_PATCH_ADAPTER = TypeAdapter(OrderPatch)


# ════════════════════════════════════════════════════════
# ERROS / RESULTADOS
# ════════════════════════════════════════════════════════

class PayloadValidationError(Exception):
    def __init__(self, message: str, errors: Optional[list] = None):
        self.errors = errors or []
        super().__init__(message)


class OrderNotFoundError(Exception):
    pass


class OsNumberConflictError(Exception):
    """Pré-checagem encontrou o número em uso; `reservation.new_number` é a sugestão."""

    def __init__(self, reservation: Reservation):
        self.reservation = reservation
        super().__init__(reservation.message)


@dataclass
class OrderSaveResult:
    outcome: SaveOutcome
    media_relocation_failures: List[str] = field(default_factory=list)

    @property
    def order(self):
        return self.outcome.record


@dataclass
class OrderFilters:
    situation_id: Optional[str] = None
    withdrawal_situation_id: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    client_name: Optional[str] = None
    os_number: Optional[int] = None
    limit: int = DEFAULT_LIST_LIMIT


# ════════════════════════════════════════════════════════
# VALIDAÇÃO
# ════════════════════════════════════════════════════════

def validate_payload(sector: str, data: dict, partial: bool = False):
    """
    Valida o payload cru para o tipo do setor (NewServiceOrder,
    ServiceOrderInformaticaPatch, ...). Nada vai ao banco antes disso.
    """
    try:
        sector_value = Sector(sector).value
    except ValueError:
        raise PayloadValidationError(f"Setor inválido: {sector}")

    adapter = _PATCH_ADAPTER if partial else _NEW_ADAPTER
    try:
        return adapter.validate_python({**data, "sector": sector_value})
    except ValidationError as e:
        errors = e.errors(include_url=False, include_context=False)
        # loc[0] é a variante da união (ex.: "celular")
        fields = ", ".join(".".join(str(p) for p in err["loc"][1:]) or str(err["loc"][0]) for err in errors)
        raise PayloadValidationError(f"Dados inválidos: {fields}", errors=errors)


def _media_dump(files: List[MediaFile]) -> List[dict]:
    return [f.model_dump() for f in files]


# ════════════════════════════════════════════════════════
# CONSULTAS
# ════════════════════════════════════════════════════════

async def get_owned_order(db: AsyncSession, cfg: SectorConfig, user_id: int, order_id: str):
    model = cfg.model
    result = await db.execute(
        select(model).where(model.id == order_id, model.user_id == user_id, model.deleted == False)  # noqa: E712
    )
    order = result.scalar_one_or_none()
    if not order:
        raise OrderNotFoundError(f"OS não encontrada: {order_id}")
    return order


async def _default_situation_id(db: AsyncSession, cfg: SectorConfig, user_id: int) -> Optional[str]:
    model = cfg.situation_model
    result = await db.execute(
        select(model.id).where(
            model.user_id == user_id,
            model.name == DEFAULT_SITUATION_NAME,
            model.deleted == False,  # noqa: E712
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def list_orders(db: AsyncSession, user_id: int, sector: Sector, filters: Optional[OrderFilters] = None):
    cfg = get_sector(sector)
    model = cfg.model
    filters = filters or OrderFilters()

    query = select(model).where(model.user_id == user_id, model.deleted == False)  # noqa: E712

    if filters.situation_id:
        query = query.where(model.situation_id == filters.situation_id)
    if filters.withdrawal_situation_id:
        query = query.where(model.withdrawal_situation_id == filters.withdrawal_situation_id)
    if filters.date_from:
        query = query.where(model.entry_date >= filters.date_from)
    if filters.date_to:
        query = query.where(model.entry_date <= filters.date_to)
    if filters.client_name:
        query = query.where(model.client_name.ilike(f"%{escape_ilike(filters.client_name)}%", escape="\\"))
    if filters.os_number:
        query = query.where(model.os_number == filters.os_number)

    query = query.order_by(model.os_number.desc()).limit(filters.limit)
    result = await db.execute(query)
    return result.scalars().all()


async def get_order(
    db: AsyncSession,
    user_id: int,
    sector: Sector,
    order_id: str,
    pipeline: Optional[MediaPipeline] = None,
):
    """
    OS com URLs de mídia renovadas. Se a lista de mídia estiver vazia,
    procura arquivos órfãos na pasta da OS e grava o que encontrar.
    """
    cfg = get_sector(sector)
    order = await get_owned_order(db, cfg, user_id, order_id)
    if not pipeline:
        return order

    files = [MediaFile.model_validate(m) for m in (order.media_files or [])]
    if files:
        # só a resposta recebe as URLs novas; o banco guarda o path
        order.media_files = _media_dump(await pipeline.refresh_signed_urls(files))
        db.expunge(order)
        return order

    recovered = await pipeline.list_order_files(cfg.order_prefix(order.id))
    if recovered:
        logger.warning(f"OS #{order.os_number} sem media_files; {len(recovered)} arquivo(s) recuperado(s) do storage")
        order.media_files = _media_dump(recovered)
        await db.commit()
        await db.refresh(order)
    return order


# ════════════════════════════════════════════════════════
# ESCRITA
# ════════════════════════════════════════════════════════

async def create_order(
    db: AsyncSession,
    user_id: int,
    payload: Any,
    media_set: Optional[PersistedMediaFiles] = None,
    pipeline: Optional[MediaPipeline] = None,
    precheck: bool = True,
) -> OrderSaveResult:
    """
    Cria a OS. Fluxo:
      1. situação padrão "Em fila" e número sugerido quando ausentes
      2. pré-checagem do número informado (OsNumberConflictError)
      3. insert com nova tentativa em colisão
      4. anexos de temp/ movidos para a pasta da OS
      5. rascunho de mídia limpo
    """
    cfg = get_sector(payload.sector)
    allocator = OsNumberAllocator(db, user_id, cfg.table)
    data = payload.model_dump(exclude={"sector"}, exclude_none=True)

    if not data.get("situation_id"):
        data["situation_id"] = await _default_situation_id(db, cfg, user_id)

    if data.get("os_number") is None:
        data["os_number"] = await allocator.suggest_next_number()
    elif precheck:
        reservation = await allocator.validate_and_reserve(data["os_number"])
        if not reservation.valid:
            raise OsNumberConflictError(reservation)

    media_files = await media_set.current() if media_set else []
    data["media_files"] = _media_dump(media_files)

    async def insert(values: dict):
        order = cfg.model(user_id=user_id, **values)
        db.add(order)
        await db.flush()
        return order

    outcome = await allocator.save_with_retry(data, insert)
    result = OrderSaveResult(outcome=outcome)
    if not outcome.succeeded:
        return result

    await db.commit()
    order = outcome.record
    logger.info(f"OS #{order.os_number} criada ({cfg.table}, user {user_id})")

    if media_files and pipeline:
        relocation = await pipeline.relocate_on_first_save(
            media_files, order.id, cfg.temp_prefix, cfg.media_prefix
        )
        order.media_files = _media_dump(relocation.files)
        result.media_relocation_failures = relocation.failed_paths
        await db.commit()

    await db.refresh(order)
    if media_set:
        await media_set.clear_persisted_files()
    return result


async def update_order(
    db: AsyncSession,
    user_id: int,
    order_id: str,
    patch: Any,
    media_set: Optional[PersistedMediaFiles] = None,
    precheck: bool = True,
) -> OrderSaveResult:
    cfg = get_sector(patch.sector)
    order = await get_owned_order(db, cfg, user_id, order_id)
    allocator = OsNumberAllocator(db, user_id, cfg.table)

    data = patch.model_dump(exclude={"sector"}, exclude_unset=True)
    if data.get("os_number") is None:
        data["os_number"] = order.os_number
    elif precheck and data["os_number"] != order.os_number:
        reservation = await allocator.validate_and_reserve(data["os_number"], exclude_order_id=order_id)
        if not reservation.valid:
            raise OsNumberConflictError(reservation)

    if media_set:
        data["media_files"] = _media_dump(await media_set.current())

    async def apply(values: dict):
        for key, value in values.items():
            setattr(order, key, value)
        await db.flush()
        return order

    outcome = await allocator.save_with_retry(data, apply, exclude_order_id=order_id)
    if outcome.succeeded:
        await db.commit()
        await db.refresh(order)
        logger.info(f"OS #{order.os_number} atualizada ({cfg.table})")
        if media_set:
            await media_set.clear_persisted_files()
    return OrderSaveResult(outcome=outcome)


async def change_situation(
    db: AsyncSession, user_id: int, sector: Sector, order_id: str, change: SituationChange
):
    cfg = get_sector(sector)
    order = await get_owned_order(db, cfg, user_id, order_id)
    for key, value in change.model_dump(exclude_unset=True).items():
        setattr(order, key, value)
    await db.commit()
    await db.refresh(order)
    logger.info(f"OS #{order.os_number}: situação alterada ({cfg.table})")
    return order


async def soft_delete(db: AsyncSession, user_id: int, sector: Sector, order_id: str) -> None:
    cfg = get_sector(sector)
    order = await get_owned_order(db, cfg, user_id, order_id)
    order.deleted = True
    await db.commit()
    logger.info(f"OS #{order.os_number} excluída ({cfg.table})")
