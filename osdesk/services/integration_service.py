"""
OSDesk - API de integração (n8n)
Ações de OS, relatórios e notificações executadas com chave de serviço,
sem usuário logado. O escopo do dono vem de `filters.user_id` / `data.user_id`.
"""
import logging
from collections import defaultdict
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import Optional, Any, Dict, List

from dateutil.parser import isoparse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from osdesk.models.lookups import Employee, EquipmentLocation
from osdesk.models.user import User
from osdesk.schemas.lookups import LookupResponse, EmployeeResponse
from osdesk.schemas.service_order import ServiceOrderResponse
from osdesk.sectors import SectorConfig, get_sector_by_table, TABLE_TO_SECTOR
from osdesk.services.os_number_allocator import OsNumberAllocator
from osdesk.services.security_utils import escape_ilike, is_valid_uuid, sanitize_string, safe_error_message
from osdesk.services.service_order_service import validate_payload, PayloadValidationError

logger = logging.getLogger("integration_service")

SERVICE_ORDER_ACTIONS = (
    "list", "get", "create", "update", "delete",
    "get_situations", "get_withdrawal_situations", "get_employees", "get_equipment_locations",
)
REPORT_ACTIONS = ("summary", "daily_report", "export", "employees_summary")
NOTIFICATION_ACTIONS = ("get_pending_notifications", "mark_notified", "get_order_for_notification")

EXPORT_DEFAULT_LIMIT = 1000

# Campos que a integração não pode sobrescrever no update
PROTECTED_FIELDS = {"id", "created_at", "updated_at", "user_id", "deleted", "tracking_token"}


class IntegrationError(Exception):
    def __init__(self, message: str, status_code: int = 400, extra: Optional[dict] = None):
        self.message = message
        self.status_code = status_code
        self.extra = extra or {}
        super().__init__(message)


def resolve_table(table: str) -> SectorConfig:
    if table not in TABLE_TO_SECTOR:
        raise IntegrationError("Invalid table name")
    return get_sector_by_table(table)


def order_to_dict(order) -> dict:
    return ServiceOrderResponse.model_validate(order).model_dump(mode="json")


def _to_number(value) -> float:
    if value is None:
        return 0.0
    return float(value) if isinstance(value, (Decimal, int, float)) else 0.0


def _owner_filter(model, filters: dict) -> list:
    conditions = [model.deleted == False]  # noqa: E712
    if filters.get("user_id") is not None:
        conditions.append(model.user_id == int(filters["user_id"]))
    return conditions


def _parse_date(value):
    if isinstance(value, datetime):
        return value
    try:
        return isoparse(str(value))
    except ValueError:
        raise IntegrationError(f"Invalid date: {value}")


def _date_filters(model, filters: dict) -> list:
    conditions = []
    if filters.get("date_from"):
        conditions.append(model.entry_date >= _parse_date(filters["date_from"]))
    if filters.get("date_to"):
        conditions.append(model.entry_date <= _parse_date(filters["date_to"]))
    return conditions


async def _lookup_map(db: AsyncSession, model, ids) -> Dict[str, dict]:
    ids = {i for i in ids if i}
    if not ids:
        return {}
    result = await db.execute(select(model).where(model.id.in_(ids)))
    return {row.id: {"id": row.id, "name": row.name, "color": getattr(row, "color", None)} for row in result.scalars()}


async def _with_relations(db: AsyncSession, cfg: SectorConfig, orders: List[Any]) -> List[dict]:
    """Anexa situation / withdrawal_situation / received_by como no select com joins."""
    situations = await _lookup_map(db, cfg.situation_model, [o.situation_id for o in orders])
    withdrawals = await _lookup_map(db, cfg.withdrawal_model, [o.withdrawal_situation_id for o in orders])
    employees = await _lookup_map(
        db, Employee,
        [o.received_by_id for o in orders] + [getattr(o, "technician_id", None) for o in orders],
    )

    items = []
    for order in orders:
        item = order_to_dict(order)
        item["situation"] = situations.get(order.situation_id)
        item["withdrawal_situation"] = withdrawals.get(order.withdrawal_situation_id)
        item["received_by"] = employees.get(order.received_by_id)
        if hasattr(order, "technician_id"):
            item["technician"] = employees.get(order.technician_id)
        items.append(item)
    return items


async def _get_active_order(db: AsyncSession, cfg: SectorConfig, order_id: str):
    if not is_valid_uuid(order_id):
        raise IntegrationError("Invalid ID format")
    model = cfg.model
    result = await db.execute(select(model).where(model.id == order_id, model.deleted == False))  # noqa: E712
    return result.scalar_one_or_none()


# ════════════════════════════════════════════════════════
# ORDENS DE SERVIÇO
# ════════════════════════════════════════════════════════

async def handle_service_orders(
    db: AsyncSession,
    action: str,
    table: str = "service_orders",
    filters: Optional[dict] = None,
    data: Optional[dict] = None,
    order_id: Optional[str] = None,
) -> dict:
    cfg = resolve_table(table)
    model = cfg.model
    filters = filters or {}

    if action == "list":
        query = select(model).where(*_owner_filter(model, filters), *_date_filters(model, filters))
        if filters.get("situation_id"):
            query = query.where(model.situation_id == filters["situation_id"])
        if filters.get("withdrawal_situation_id"):
            query = query.where(model.withdrawal_situation_id == filters["withdrawal_situation_id"])
        if filters.get("client_name"):
            name = escape_ilike(sanitize_string(filters["client_name"]))
            query = query.where(model.client_name.ilike(f"%{name}%", escape="\\"))
        if filters.get("os_number"):
            query = query.where(model.os_number == int(filters["os_number"]))
        query = query.order_by(model.created_at.desc())
        if filters.get("limit"):
            query = query.limit(int(filters["limit"]))

        result = await db.execute(query)
        orders = await _with_relations(db, cfg, result.scalars().all())
        return {"success": True, "data": orders, "count": len(orders)}

    if action == "get":
        if not order_id:
            raise IntegrationError("ID is required for get action")
        order = await _get_active_order(db, cfg, order_id)
        if not order:
            raise IntegrationError("Order not found", status_code=404)
        return {"success": True, "data": (await _with_relations(db, cfg, [order]))[0]}

    if action == "create":
        return await _create_order(db, cfg, data)

    if action == "update":
        if not order_id:
            raise IntegrationError("ID is required for update action")
        if not isinstance(data, dict) or not data:
            raise IntegrationError("Data object is required for update action")
        order = await _get_active_order(db, cfg, order_id)
        if not order:
            raise IntegrationError("Order not found", status_code=404)

        patch = _coerce(cfg, data, partial=True)
        for key, value in patch.model_dump(exclude={"sector"}, exclude_unset=True).items():
            setattr(order, key, value)
        await db.commit()
        await db.refresh(order)
        logger.info(f"Integração: OS #{order.os_number} atualizada ({table})")
        return {"success": True, "data": order_to_dict(order)}

    if action == "delete":
        if not order_id:
            raise IntegrationError("ID is required for delete action")
        order = await _get_active_order(db, cfg, order_id)
        if not order:
            raise IntegrationError("Order not found", status_code=404)
        order.deleted = True
        await db.commit()
        logger.info(f"Integração: OS #{order.os_number} excluída ({table})")
        return {"success": True, "data": {"id": order.id, "deleted": True}}

    if action in ("get_situations", "get_withdrawal_situations"):
        lookup = cfg.situation_model if action == "get_situations" else cfg.withdrawal_model
        return {"success": True, "data": await _list_lookup(db, lookup, filters, LookupResponse)}

    if action == "get_employees":
        return {"success": True, "data": await _list_lookup(db, Employee, filters, EmployeeResponse)}

    if action == "get_equipment_locations":
        return {"success": True, "data": await _list_lookup(db, EquipmentLocation, filters, LookupResponse)}

    raise IntegrationError(f"Invalid action. Use: {', '.join(SERVICE_ORDER_ACTIONS)}")


def _coerce(cfg: SectorConfig, data: dict, partial: bool):
    """Converte tipos (datas, decimais) pelo payload do setor; campos protegidos são ignorados."""
    clean = {k: v for k, v in data.items() if k not in PROTECTED_FIELDS}
    try:
        return validate_payload(cfg.sector.value, clean, partial=partial)
    except PayloadValidationError as e:
        raise IntegrationError(str(e))


async def _list_lookup(db: AsyncSession, model, filters: dict, schema) -> List[dict]:
    result = await db.execute(select(model).where(*_owner_filter(model, filters)).order_by(model.name))
    return [schema.model_validate(row).model_dump(mode="json") for row in result.scalars().all()]


async def _create_order(db: AsyncSession, cfg: SectorConfig, data: Optional[dict]) -> dict:
    if not isinstance(data, dict):
        raise IntegrationError("Data object is required for create action")

    required = ("user_id",) + cfg.required_fields
    missing = [name for name in required if data.get(name) in (None, "")]
    if missing:
        raise IntegrationError(f"Missing required fields: {', '.join(missing)}")

    user_id = int(data["user_id"])
    payload = _coerce(cfg, data, partial=False)
    values = payload.model_dump(exclude={"sector"}, exclude_none=True)

    allocator = OsNumberAllocator(db, user_id, cfg.table)
    if not values.get("os_number"):
        values["os_number"] = await allocator.suggest_next_number()

    async def insert(payload: dict):
        order = cfg.model(user_id=user_id, **payload)
        db.add(order)
        await db.flush()
        return order

    outcome = await allocator.save_with_retry(values, insert)
    if not outcome.succeeded:
        if outcome.number_unavailable:
            raise IntegrationError("Could not allocate OS number", status_code=500)
        raise IntegrationError(safe_error_message(outcome.error), status_code=500)

    await db.commit()
    order = outcome.record
    await db.refresh(order)
    logger.info(f"Integração: OS #{order.os_number} criada ({cfg.table}, user {user_id})")
    return {
        "success": True,
        "data": order_to_dict(order),
        "retries": [asdict(a) for a in outcome.attempts],
    }


# ════════════════════════════════════════════════════════
# RELATÓRIOS
# ════════════════════════════════════════════════════════

async def handle_reports(
    db: AsyncSession, action: str, table: str = "service_orders", filters: Optional[dict] = None
) -> dict:
    cfg = resolve_table(table)
    model = cfg.model
    filters = filters or {}
    base = [*_owner_filter(model, filters), *_date_filters(model, filters)]

    if action == "summary":
        result = await db.execute(select(model).where(*base))
        orders = result.scalars().all()

        total_orders = len(orders)
        total_value = sum(_to_number(o.value) for o in orders)
        completed = sum(1 for o in orders if o.exit_date is not None)
        by_situation: Dict[str, int] = defaultdict(int)
        for order in orders:
            by_situation[order.situation_id or "sem_situacao"] += 1

        return {"success": True, "data": {
            "total_orders": total_orders,
            "completed_orders": completed,
            "pending_orders": total_orders - completed,
            "total_value": total_value,
            "average_value": total_value / total_orders if total_orders else 0,
            "by_situation": dict(by_situation),
        }}

    if action == "daily_report":
        query = select(model).where(*base).order_by(model.entry_date.desc())
        if filters.get("limit"):
            query = query.limit(int(filters["limit"]))
        result = await db.execute(query)

        daily: Dict[str, dict] = {}
        for order in result.scalars().all():
            day = order.entry_date.date().isoformat() if order.entry_date else "unknown"
            bucket = daily.setdefault(day, {"count": 0, "value": 0.0, "completed": 0})
            bucket["count"] += 1
            bucket["value"] += _to_number(order.value)
            if order.exit_date:
                bucket["completed"] += 1
        return {"success": True, "data": daily}

    if action == "export":
        query = select(model).where(*base)
        if filters.get("situation_id"):
            query = query.where(model.situation_id == filters["situation_id"])
        query = query.order_by(model.created_at.desc()).limit(int(filters.get("limit") or EXPORT_DEFAULT_LIMIT))
        result = await db.execute(query)
        orders = [order_to_dict(o) for o in result.scalars().all()]
        return {"success": True, "data": orders, "count": len(orders)}

    if action == "employees_summary":
        result = await db.execute(select(model).where(*base))
        orders = result.scalars().all()
        employees_result = await db.execute(select(Employee).where(*_owner_filter(Employee, filters)))

        stats = {
            emp.id: {"name": emp.name, "type": emp.type, "orders_received": 0, "orders_completed": 0, "total_value": 0.0}
            for emp in employees_result.scalars().all()
        }
        for order in orders:
            if order.received_by_id in stats:
                stats[order.received_by_id]["orders_received"] += 1
            technician = getattr(order, "technician_id", None)
            if technician in stats and order.exit_date:
                stats[technician]["orders_completed"] += 1
                stats[technician]["total_value"] += _to_number(order.value)
        return {"success": True, "data": list(stats.values())}

    raise IntegrationError("Invalid action", extra={"available_actions": list(REPORT_ACTIONS)})


# ════════════════════════════════════════════════════════
# NOTIFICAÇÕES
# ════════════════════════════════════════════════════════

async def handle_notifications(
    db: AsyncSession,
    action: str,
    table: str = "service_orders",
    filters: Optional[dict] = None,
    order_id: Optional[str] = None,
    notification_type: Optional[str] = None,
) -> dict:
    cfg = resolve_table(table)
    model = cfg.model
    filters = filters or {}
    notified = getattr(model, cfg.notified_field)

    if action == "get_pending_notifications":
        query = select(model).where(
            *_owner_filter(model, filters),
            notified == False,  # noqa: E712
            model.exit_date.is_not(None),
        )
        if filters.get("situation_id"):
            query = query.where(model.situation_id == filters["situation_id"])
        result = await db.execute(query)
        orders = [order_to_dict(o) for o in result.scalars().all()]
        logger.info(f"{len(orders)} notificações pendentes ({table})")
        return {"success": True, "data": orders, "count": len(orders)}

    if action == "mark_notified":
        if not order_id:
            raise IntegrationError("order_id is required")
        order = await _get_active_order(db, cfg, order_id)
        if not order:
            raise IntegrationError("Order not found", status_code=404)

        setattr(order, cfg.notified_field, True)
        if cfg.table == "service_orders" and notification_type == "delivered":
            order.mensagem_entregue = True
        await db.commit()
        await db.refresh(order)
        logger.info(f"OS {order_id} marcada como notificada")
        return {"success": True, "data": order_to_dict(order)}

    if action == "get_order_for_notification":
        if not order_id:
            raise IntegrationError("order_id is required")
        order = await _get_active_order(db, cfg, order_id)
        if not order:
            return {"success": True, "data": None}

        item = (await _with_relations(db, cfg, [order]))[0]
        owner = await db.get(User, order.user_id)
        item["profile"] = {
            "full_name": owner.full_name,
            "phone": owner.phone,
            "street": owner.street,
            "number": owner.number,
            "neighborhood": owner.neighborhood,
            "city": owner.city,
            "state": owner.state,
        } if owner else None
        return {"success": True, "data": item}

    raise IntegrationError("Invalid action", extra={"available_actions": list(NOTIFICATION_ACTIONS)})
