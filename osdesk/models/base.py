"""
OSDesk - Modelo base por dono
Todas as tabelas que pertencem a uma conta (loja) herdam de OwnerBase.
"""
import uuid
from sqlalchemy import Column, Integer, DateTime, func, ForeignKey
from sqlalchemy.orm import declared_attr
from osdesk.database import Base


def new_uuid() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    """Adiciona created_at e updated_at a qualquer modelo."""
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class OwnerBase(Base, TimestampMixin):
    """
    Classe base para todas as tabelas que pertencem a uma conta.
    Adiciona automaticamente user_id como FK (escopo do dono).
    """
    __abstract__ = True

    @declared_attr
    def user_id(cls):
        return Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
