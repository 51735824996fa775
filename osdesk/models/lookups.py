"""
OSDesk - Tabelas auxiliares
Situações, situações de retirada, funcionários e locais de equipamento.
Sem ciclo de vida próprio além do CRUD; exclusão é lógica (deleted=True).
"""
from sqlalchemy import Column, String, Boolean
from osdesk.models.base import OwnerBase, new_uuid


class _LookupMixin:
    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(100), nullable=False)
    color = Column(String(20), nullable=False, default="#6b7280")
    deleted = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


class Situation(_LookupMixin, OwnerBase):
    """Situações das OS de celular ("Em fila", "Em reparo", ...)."""
    __tablename__ = "situations"


class WithdrawalSituation(_LookupMixin, OwnerBase):
    __tablename__ = "withdrawal_situations"


class SituacaoInformatica(_LookupMixin, OwnerBase):
    """Situações das OS de informática."""
    __tablename__ = "situacao_informatica"


class RetiradaInformatica(_LookupMixin, OwnerBase):
    __tablename__ = "retirada_informatica"


class EquipmentLocation(_LookupMixin, OwnerBase):
    """Onde o equipamento está guardado na loja."""
    __tablename__ = "local_equipamento"


class Employee(OwnerBase):
    __tablename__ = "employees"

    id = Column(String(36), primary_key=True, default=new_uuid)
    name = Column(String(150), nullable=False)
    type = Column(String(50), nullable=False)          # "Técnico", "Atendente"
    contact = Column(String(50), nullable=True)
    deleted = Column(Boolean, nullable=False, default=False)

    def __repr__(self):
        return f"<Employee {self.name} ({self.type})>"


class SystemSetting(OwnerBase):
    """Configurações por conta (ex.: os_starting_number)."""
    __tablename__ = "system_settings"

    id = Column(String(36), primary_key=True, default=new_uuid)
    key = Column(String(100), nullable=False)
    value = Column(String(500), nullable=False)
