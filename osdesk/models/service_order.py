"""
OSDesk - Modelo: Ordens de Serviço
Duas variantes paralelas: celular (service_orders) e informática
(service_orders_informatica). O os_number é sequencial por dono e único
entre as OS não excluídas (índice parcial).
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, Text, DateTime, Numeric, JSON,
    ForeignKey, Index, DDL, event, func, text
)
from sqlalchemy.orm import declared_attr
from osdesk.database import Base
from osdesk.models.base import OwnerBase, new_uuid


CHECKLIST_FIELDS = (
    "checklist_houve_queda",
    "checklist_face_id",
    "checklist_carrega",
    "checklist_tela_quebrada",
    "checklist_vidro_trincado",
    "checklist_manchas_tela",
    "checklist_carcaca_torta",
    "checklist_riscos_tampa",
    "checklist_riscos_laterais",
    "checklist_vidro_camera",
    "checklist_acompanha_chip",
    "checklist_acompanha_sd",
    "checklist_acompanha_capa",
    "checklist_esta_ligado",
)


class _OrderMixin:
    """Campos comuns às duas variantes de OS."""

    id = Column(String(36), primary_key=True, default=new_uuid)
    os_number = Column(Integer, nullable=False)

    # --- Cliente ---
    client_name = Column(String(200), nullable=False)
    contact = Column(String(50), nullable=True)
    other_contacts = Column(String(200), nullable=True)

    # --- Datas ---
    entry_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    service_date = Column(DateTime(timezone=True), nullable=True)
    exit_date = Column(DateTime(timezone=True), nullable=True)

    # --- Valores / retirada ---
    value = Column(Numeric(10, 2), nullable=True)
    withdrawn_by = Column(String(200), nullable=True)

    # --- Mídia: lista de {url, path, type, name} ---
    media_files = Column(JSON, nullable=True)

    # --- Estado ---
    deleted = Column(Boolean, nullable=False, default=False)

    @declared_attr
    def __table_args__(cls):
        return (
            Index(
                f"uq_{cls.__tablename__}_user_os_number",
                "user_id", "os_number",
                unique=True,
                postgresql_where=text("deleted = false"),
                sqlite_where=text("deleted = 0"),
            ),
        )

    def __repr__(self):
        return f"<{type(self).__name__} OS #{self.os_number} ({self.client_name})>"


class ServiceOrder(_OrderMixin, OwnerBase):
    """OS de celular."""
    __tablename__ = "service_orders"

    client_cpf = Column(String(20), nullable=True)
    client_address = Column(String(300), nullable=True)

    # --- Aparelho ---
    device_model = Column(String(200), nullable=False)
    device_brand = Column(String(100), nullable=True)
    device_password = Column(String(100), nullable=True)
    device_pattern = Column(String(50), nullable=True)       # "1-2-3-6-9"
    device_chip = Column(String(50), nullable=True)
    memory_card_size = Column(String(20), nullable=True)

    reported_defect = Column(Text, nullable=False)
    client_message = Column(Text, nullable=True)
    technical_info = Column(Text, nullable=True)
    part_order_date = Column(DateTime(timezone=True), nullable=True)

    # --- Vínculos ---
    situation_id = Column(String(36), ForeignKey("situations.id"), nullable=True)
    withdrawal_situation_id = Column(String(36), ForeignKey("withdrawal_situations.id"), nullable=True)
    technician_id = Column(String(36), ForeignKey("employees.id"), nullable=True)
    received_by_id = Column(String(36), ForeignKey("employees.id"), nullable=True)

    # --- Notificações ---
    mensagem_finalizada = Column(Boolean, nullable=False, default=False)
    mensagem_entregue = Column(Boolean, nullable=False, default=False)

    # --- Acompanhamento público ---
    tracking_token = Column(String(36), nullable=True, unique=True, default=new_uuid)

    # --- Checklist de entrada ---
    checklist_houve_queda = Column(Boolean, default=False)
    checklist_face_id = Column(Boolean, default=False)
    checklist_carrega = Column(Boolean, default=False)
    checklist_tela_quebrada = Column(Boolean, default=False)
    checklist_vidro_trincado = Column(Boolean, default=False)
    checklist_manchas_tela = Column(Boolean, default=False)
    checklist_carcaca_torta = Column(Boolean, default=False)
    checklist_riscos_tampa = Column(Boolean, default=False)
    checklist_riscos_laterais = Column(Boolean, default=False)
    checklist_vidro_camera = Column(Boolean, default=False)
    checklist_acompanha_chip = Column(Boolean, default=False)
    checklist_acompanha_sd = Column(Boolean, default=False)
    checklist_acompanha_capa = Column(Boolean, default=False)
    checklist_esta_ligado = Column(Boolean, default=False)

    @property
    def device_label(self) -> str:
        return self.device_model


class ServiceOrderInformatica(_OrderMixin, OwnerBase):
    """OS de informática."""
    __tablename__ = "service_orders_informatica"

    equipment = Column(String(200), nullable=False)
    defect = Column(Text, nullable=False)
    accessories = Column(String(300), nullable=True)
    senha = Column(String(100), nullable=True)
    more_details = Column(Text, nullable=True)
    observations = Column(Text, nullable=True)

    situation_id = Column(String(36), ForeignKey("situacao_informatica.id"), nullable=True)
    withdrawal_situation_id = Column(String(36), ForeignKey("retirada_informatica.id"), nullable=True)
    equipment_location_id = Column(String(36), ForeignKey("local_equipamento.id"), nullable=True)
    received_by_id = Column(String(36), ForeignKey("employees.id"), nullable=True)

    client_notified = Column(Boolean, nullable=False, default=False)

    @property
    def device_label(self) -> str:
        return self.equipment


class OsNumberCounter(Base):
    """Último número entregue pela função next_os_number, por dono e tabela."""
    __tablename__ = "os_number_counters"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    table_name = Column(String(50), primary_key=True)
    last_number = Column(Integer, nullable=False)


# ── Oráculo de numeração (somente PostgreSQL) ────────────────────
# Serializa por (dono, tabela) com advisory lock e nunca devolve um número
# menor ou igual ao maior os_number ativo.
NEXT_OS_NUMBER_FUNCTION = DDL("""
CREATE OR REPLACE FUNCTION next_os_number(p_user_id integer, p_table text)
RETURNS integer AS $$
DECLARE
    v_max integer;
    v_start integer;
    v_next integer;
BEGIN
    IF p_table NOT IN ('service_orders', 'service_orders_informatica') THEN
        RAISE EXCEPTION 'invalid table %%', p_table;
    END IF;

    PERFORM pg_advisory_xact_lock(hashtext(p_table || ':' || p_user_id::text));

    EXECUTE format(
        'SELECT COALESCE(MAX(os_number), 0) FROM %%I WHERE user_id = $1 AND deleted = false',
        p_table
    ) INTO v_max USING p_user_id;

    SELECT value::integer INTO v_start
    FROM system_settings
    WHERE user_id = p_user_id AND key = 'os_starting_number'
    LIMIT 1;

    INSERT INTO os_number_counters (user_id, table_name, last_number)
    VALUES (p_user_id, p_table, GREATEST(v_max + 1, COALESCE(v_start, 1)))
    ON CONFLICT (user_id, table_name) DO UPDATE
        SET last_number = GREATEST(os_number_counters.last_number + 1, v_max + 1)
    RETURNING last_number INTO v_next;

    RETURN v_next;
END;
$$ LANGUAGE plpgsql;
""")

event.listen(
    Base.metadata,
    "after_create",
    NEXT_OS_NUMBER_FUNCTION.execute_if(dialect="postgresql"),
)
