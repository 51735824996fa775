"""
OSDesk - Setores
Cada setor (celular / informática) tem sua tabela de OS, suas tabelas de
situação e seus prefixos de armazenamento.
"""
import enum
from dataclasses import dataclass
from typing import Type

from osdesk.models.lookups import (
    Situation, WithdrawalSituation, SituacaoInformatica, RetiradaInformatica
)
from osdesk.models.service_order import ServiceOrder, ServiceOrderInformatica


class Sector(str, enum.Enum):
    CELULAR = "celular"
    INFORMATICA = "informatica"


@dataclass(frozen=True)
class SectorConfig:
    sector: Sector
    table: str
    model: Type
    situation_model: Type
    withdrawal_model: Type
    device_field: str            # campo exibido como "aparelho" no aviso de conflito
    defect_field: str
    temp_prefix: str             # uploads antes da OS existir
    media_prefix: str            # prefixo final: f"{media_prefix}{order_id}/"
    notified_field: str          # flag de cliente avisado
    required_fields: tuple

    def order_prefix(self, order_id: str) -> str:
        return f"{self.media_prefix}{order_id}/"


SECTORS = {
    Sector.CELULAR: SectorConfig(
        sector=Sector.CELULAR,
        table="service_orders",
        model=ServiceOrder,
        situation_model=Situation,
        withdrawal_model=WithdrawalSituation,
        device_field="device_model",
        defect_field="reported_defect",
        temp_prefix="temp/",
        media_prefix="",
        notified_field="mensagem_finalizada",
        required_fields=("client_name", "device_model", "reported_defect"),
    ),
    Sector.INFORMATICA: SectorConfig(
        sector=Sector.INFORMATICA,
        table="service_orders_informatica",
        model=ServiceOrderInformatica,
        situation_model=SituacaoInformatica,
        withdrawal_model=RetiradaInformatica,
        device_field="equipment",
        defect_field="defect",
        temp_prefix="informatica/temp/",
        media_prefix="informatica/",
        notified_field="client_notified",
        required_fields=("client_name", "equipment", "defect"),
    ),
}

TABLE_TO_SECTOR = {cfg.table: cfg.sector for cfg in SECTORS.values()}


def get_sector(sector: Sector) -> SectorConfig:
    return SECTORS[Sector(sector)]


def get_sector_by_table(table: str) -> SectorConfig:
    """'service_orders' → config do celular. KeyError se a tabela não existir."""
    return SECTORS[TABLE_TO_SECTOR[table]]
