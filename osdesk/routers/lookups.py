"""
OSDesk - Router de Tabelas auxiliares
Situações e situações de retirada (por setor), funcionários e locais de
equipamento. CRUD simples com exclusão lógica.
"""
from typing import Callable
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from osdesk.database import get_db
from osdesk.dependencies import get_current_user
from osdesk.models.user import User
from osdesk.models.lookups import Employee, EquipmentLocation
from osdesk.schemas.common import MessageResponse
from osdesk.schemas.lookups import (
    LookupCreate, LookupUpdate, LookupResponse,
    EmployeeCreate, EmployeeUpdate, EmployeeResponse,
)
from osdesk.sectors import Sector, get_sector

router = APIRouter(prefix="/api/v1", tags=["Lookups"])


def _situation_model(sector: Sector):
    return get_sector(sector).situation_model


def _withdrawal_model(sector: Sector):
    return get_sector(sector).withdrawal_model


def _employee_model():
    return Employee


def _location_model():
    return EquipmentLocation


async def _get_owned(db: AsyncSession, model, item_id: str, user_id: int):
    result = await db.execute(
        select(model).where(model.id == item_id, model.user_id == user_id, model.deleted == False)  # noqa: E712
    )
    item = result.scalar_one_or_none()
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Registro não encontrado.")
    return item


def register_crud(path: str, resolve_model: Callable, create_schema, update_schema, response_schema):
    """Registra list/create/update/delete de uma tabela auxiliar em `path`."""

    @router.get(path, response_model=list[response_schema], name=f"list{path}")
    async def list_items(
        model=Depends(resolve_model),
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
    ):
        result = await db.execute(
            select(model)
            .where(model.user_id == current_user.id, model.deleted == False)  # noqa: E712
            .order_by(model.name)
        )
        return [response_schema.model_validate(i) for i in result.scalars().all()]

    @router.post(path, response_model=response_schema, status_code=201, name=f"create{path}")
    async def create_item(
        data: create_schema,
        model=Depends(resolve_model),
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
    ):
        item = model(user_id=current_user.id, **data.model_dump())
        db.add(item)
        await db.commit()
        await db.refresh(item)
        return response_schema.model_validate(item)

    @router.put(path + "/{item_id}", response_model=response_schema, name=f"update{path}")
    async def update_item(
        item_id: str,
        data: update_schema,
        model=Depends(resolve_model),
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
    ):
        item = await _get_owned(db, model, item_id, current_user.id)
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(item, key, value)
        await db.commit()
        await db.refresh(item)
        return response_schema.model_validate(item)

    @router.delete(path + "/{item_id}", response_model=MessageResponse, name=f"delete{path}")
    async def delete_item(
        item_id: str,
        model=Depends(resolve_model),
        db: AsyncSession = Depends(get_db),
        current_user: User = Depends(get_current_user),
    ):
        """Exclusão lógica; OS que apontam para o registro continuam válidas."""
        item = await _get_owned(db, model, item_id, current_user.id)
        item.deleted = True
        await db.commit()
        return MessageResponse(message="Registro excluído.")


register_crud("/{sector}/situations", _situation_model, LookupCreate, LookupUpdate, LookupResponse)
register_crud("/{sector}/withdrawal-situations", _withdrawal_model, LookupCreate, LookupUpdate, LookupResponse)
register_crud("/employees", _employee_model, EmployeeCreate, EmployeeUpdate, EmployeeResponse)
register_crud("/equipment-locations", _location_model, LookupCreate, LookupUpdate, LookupResponse)
