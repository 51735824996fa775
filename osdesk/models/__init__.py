"""
OSDesk - Models
Importa todos os modelos para que o SQLAlchemy os registre.
"""
# Base
from osdesk.models.base import OwnerBase, TimestampMixin

# Core
from osdesk.models.user import User

# Auxiliares
from osdesk.models.lookups import (
    Situation, WithdrawalSituation, SituacaoInformatica, RetiradaInformatica,
    EquipmentLocation, Employee, SystemSetting
)

# Ordens de serviço
from osdesk.models.service_order import (
    ServiceOrder, ServiceOrderInformatica, OsNumberCounter, CHECKLIST_FIELDS
)

__all__ = [
    # Base
    "OwnerBase", "TimestampMixin",
    # Core
    "User",
    # Auxiliares
    "Situation", "WithdrawalSituation", "SituacaoInformatica", "RetiradaInformatica",
    "EquipmentLocation", "Employee", "SystemSetting",
    # OS
    "ServiceOrder", "ServiceOrderInformatica", "OsNumberCounter", "CHECKLIST_FIELDS",
]
