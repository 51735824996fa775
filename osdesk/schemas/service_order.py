"""
OSDesk - Schemas: Ordens de Serviço
Payloads de criação/edição por variante (celular / informática) como união
discriminada pelo campo `sector`.
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal, Union, Annotated
from datetime import datetime
from decimal import Decimal
from osdesk.schemas.media import MediaFile


# ── Celular ──────────────────────────────────────────────

class _ServiceOrderFields(BaseModel):
    client_cpf: Optional[str] = Field(None, max_length=20)
    client_address: Optional[str] = Field(None, max_length=300)
    device_brand: Optional[str] = Field(None, max_length=100)
    device_password: Optional[str] = Field(None, max_length=100)
    device_pattern: Optional[str] = Field(None, max_length=50)
    device_chip: Optional[str] = Field(None, max_length=50)
    memory_card_size: Optional[str] = Field(None, max_length=20)
    client_message: Optional[str] = None
    technical_info: Optional[str] = None
    part_order_date: Optional[datetime] = None
    technician_id: Optional[str] = None
    mensagem_finalizada: Optional[bool] = None
    mensagem_entregue: Optional[bool] = None
    checklist_houve_queda: Optional[bool] = None
    checklist_face_id: Optional[bool] = None
    checklist_carrega: Optional[bool] = None
    checklist_tela_quebrada: Optional[bool] = None
    checklist_vidro_trincado: Optional[bool] = None
    checklist_manchas_tela: Optional[bool] = None
    checklist_carcaca_torta: Optional[bool] = None
    checklist_riscos_tampa: Optional[bool] = None
    checklist_riscos_laterais: Optional[bool] = None
    checklist_vidro_camera: Optional[bool] = None
    checklist_acompanha_chip: Optional[bool] = None
    checklist_acompanha_sd: Optional[bool] = None
    checklist_acompanha_capa: Optional[bool] = None
    checklist_esta_ligado: Optional[bool] = None


class _CommonFields(BaseModel):
    contact: Optional[str] = Field(None, max_length=50)
    other_contacts: Optional[str] = Field(None, max_length=200)
    entry_date: Optional[datetime] = None
    service_date: Optional[datetime] = None
    exit_date: Optional[datetime] = None
    value: Optional[Decimal] = Field(None, ge=0)
    withdrawn_by: Optional[str] = Field(None, max_length=200)
    situation_id: Optional[str] = None
    withdrawal_situation_id: Optional[str] = None
    received_by_id: Optional[str] = None


class NewServiceOrder(_ServiceOrderFields, _CommonFields):
    sector: Literal["celular"] = "celular"
    os_number: Optional[int] = Field(None, gt=0)
    client_name: str = Field(..., min_length=1, max_length=200)
    device_model: str = Field(..., min_length=1, max_length=200)
    reported_defect: str = Field(..., min_length=1)


class ServiceOrderPatch(_ServiceOrderFields, _CommonFields):
    sector: Literal["celular"] = "celular"
    os_number: Optional[int] = Field(None, gt=0)
    client_name: Optional[str] = Field(None, min_length=1, max_length=200)
    device_model: Optional[str] = Field(None, min_length=1, max_length=200)
    reported_defect: Optional[str] = Field(None, min_length=1)


# ── Informática ──────────────────────────────────────────

class _InformaticaFields(BaseModel):
    accessories: Optional[str] = Field(None, max_length=300)
    senha: Optional[str] = Field(None, max_length=100)
    more_details: Optional[str] = None
    observations: Optional[str] = None
    equipment_location_id: Optional[str] = None
    client_notified: Optional[bool] = None


class NewServiceOrderInformatica(_InformaticaFields, _CommonFields):
    sector: Literal["informatica"] = "informatica"
    os_number: Optional[int] = Field(None, gt=0)
    client_name: str = Field(..., min_length=1, max_length=200)
    equipment: str = Field(..., min_length=1, max_length=200)
    defect: str = Field(..., min_length=1)


class ServiceOrderInformaticaPatch(_InformaticaFields, _CommonFields):
    sector: Literal["informatica"] = "informatica"
    os_number: Optional[int] = Field(None, gt=0)
    client_name: Optional[str] = Field(None, min_length=1, max_length=200)
    equipment: Optional[str] = Field(None, min_length=1, max_length=200)
    defect: Optional[str] = Field(None, min_length=1)


NewOrderPayload = Annotated[
    Union[NewServiceOrder, NewServiceOrderInformatica],
    Field(discriminator="sector"),
]
OrderPatch = Annotated[
    Union[ServiceOrderPatch, ServiceOrderInformaticaPatch],
    Field(discriminator="sector"),
]


# ── Ações ────────────────────────────────────────────────

class SituationChange(BaseModel):
    situation_id: Optional[str] = None
    withdrawal_situation_id: Optional[str] = None


class OsNumberCheck(BaseModel):
    os_number: int = Field(..., gt=0)
    exclude_order_id: Optional[str] = None


class ExistingOrderResponse(BaseModel):
    os_number: int
    client_name: str
    device_info: str


class OsNumberCheckResponse(BaseModel):
    valid: bool
    new_number: Optional[int] = None
    conflict: Optional[ExistingOrderResponse] = None
    message: Optional[str] = None


class NextNumberResponse(BaseModel):
    os_number: int


class RetryAttemptResponse(BaseModel):
    attempt: int
    previous_number: int
    new_number: int


# ── Respostas ────────────────────────────────────────────

class ServiceOrderResponse(BaseModel):
    id: str
    user_id: int
    os_number: int
    client_name: str
    contact: Optional[str]
    other_contacts: Optional[str]
    entry_date: datetime
    service_date: Optional[datetime]
    exit_date: Optional[datetime]
    value: Optional[Decimal]
    withdrawn_by: Optional[str]
    situation_id: Optional[str]
    withdrawal_situation_id: Optional[str]
    received_by_id: Optional[str]
    media_files: List[MediaFile] = []
    deleted: bool
    created_at: datetime
    updated_at: datetime

    # Celular
    client_cpf: Optional[str] = None
    client_address: Optional[str] = None
    device_model: Optional[str] = None
    device_brand: Optional[str] = None
    device_password: Optional[str] = None
    device_pattern: Optional[str] = None
    device_chip: Optional[str] = None
    memory_card_size: Optional[str] = None
    reported_defect: Optional[str] = None
    client_message: Optional[str] = None
    technical_info: Optional[str] = None
    part_order_date: Optional[datetime] = None
    technician_id: Optional[str] = None
    mensagem_finalizada: Optional[bool] = None
    mensagem_entregue: Optional[bool] = None
    tracking_token: Optional[str] = None

    # Informática
    equipment: Optional[str] = None
    defect: Optional[str] = None
    accessories: Optional[str] = None
    senha: Optional[str] = None
    more_details: Optional[str] = None
    observations: Optional[str] = None
    equipment_location_id: Optional[str] = None
    client_notified: Optional[bool] = None

    @field_validator("media_files", mode="before")
    @classmethod
    def media_files_default(cls, v):
        """OS antigas ou criadas pela integração podem ter media_files nulo."""
        return v or []

    class Config:
        from_attributes = True


class ServiceOrderSaveResponse(ServiceOrderResponse):
    """OS salva + tentativas de renumeração feitas durante o salvamento."""
    retries: List[RetryAttemptResponse] = []
    media_relocation_failures: List[str] = []


class ServiceOrderListResponse(BaseModel):
    id: str
    os_number: int
    client_name: str
    device_info: str
    situation_id: Optional[str]
    withdrawal_situation_id: Optional[str]
    entry_date: datetime
    exit_date: Optional[datetime]
    value: Optional[Decimal]
