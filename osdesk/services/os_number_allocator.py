"""
OSDesk - Alocação de número de OS
Número sequencial por dono e tabela, seguro sob criação concorrente:
insert otimista + detecção de violação de unicidade + nova tentativa,
com a função next_os_number do banco como caminho rápido.

A garantia final é o índice único parcial (user_id, os_number) WHERE NOT
deleted. A pré-checagem só serve para avisar o usuário antes de salvar.
"""
import asyncio
import enum
import logging
import random
from dataclasses import dataclass, field
from typing import Optional, List, Any, Callable, Awaitable

from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from osdesk.config import get_settings
from osdesk.models.lookups import SystemSetting
from osdesk.sectors import get_sector_by_table

logger = logging.getLogger("os_number_allocator")

UNIQUE_VIOLATION_SQLSTATE = "23505"
OS_STARTING_NUMBER_KEY = "os_starting_number"


class OsNumberExhaustedError(Exception):
    """Nenhum número livre dentro da janela de sondagem."""

    def __init__(self, starting_from: int, attempts: int):
        self.starting_from = starting_from
        self.attempts = attempts
        super().__init__(
            f"Não foi possível encontrar um número de OS disponível "
            f"entre {starting_from} e {starting_from + attempts - 1}."
        )


@dataclass
class ExistingOrderSummary:
    os_number: int
    client_name: str
    device_info: str


@dataclass
class Reservation:
    valid: bool
    new_number: Optional[int] = None
    conflict: Optional[ExistingOrderSummary] = None

    @property
    def message(self) -> Optional[str]:
        if not self.conflict:
            return None
        return (
            f"Este número de OS já foi cadastrado para o cliente "
            f"'{self.conflict.client_name}', aparelho '{self.conflict.device_info}'."
        )


@dataclass
class RetryAttempt:
    attempt: int
    previous_number: int
    new_number: int


class SaveStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class SaveOutcome:
    status: SaveStatus
    record: Any = None
    final_os_number: Optional[int] = None
    attempts: List[RetryAttempt] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SaveStatus.SUCCEEDED

    @property
    def number_unavailable(self) -> bool:
        """Falhou por falta de número livre (colisões esgotaram as tentativas)."""
        if self.succeeded or self.error is None:
            return False
        return isinstance(self.error, OsNumberExhaustedError) or is_unique_violation(self.error)


def is_unique_violation(exc: Exception) -> bool:
    """SQLSTATE 23505 (PostgreSQL) ou 'unique' na mensagem (demais bancos)."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == UNIQUE_VIOLATION_SQLSTATE:
        return True
    return "unique" in str(exc).lower()


SaveOperation = Callable[[dict], Awaitable[Any]]


class OsNumberAllocator:
    """
    Uso:
        allocator = OsNumberAllocator(db, user.id, "service_orders")
        reservation = await allocator.validate_and_reserve(42)
        outcome = await allocator.save_with_retry(payload, insert_order)
    """

    def __init__(self, db: AsyncSession, user_id: int, table: str):
        settings = get_settings()
        self.db = db
        self.user_id = user_id
        self.table = table
        self.sector = get_sector_by_table(table)
        self.model = self.sector.model
        self.scan_max_attempts = settings.OS_SCAN_MAX_ATTEMPTS
        self.max_retries = settings.OS_SAVE_MAX_RETRIES

    def _active(self):
        return (self.model.user_id == self.user_id, self.model.deleted == False)  # noqa: E712

    # ── Consultas ────────────────────────────────────────

    async def check_number_exists(
        self, number: int, exclude_order_id: Optional[str] = None
    ) -> Optional[ExistingOrderSummary]:
        query = select(self.model).where(*self._active(), self.model.os_number == number)
        if exclude_order_id:
            query = query.where(self.model.id != exclude_order_id)

        result = await self.db.execute(query.limit(1))
        order = result.scalar_one_or_none()
        if not order:
            return None

        return ExistingOrderSummary(
            os_number=order.os_number,
            client_name=order.client_name,
            device_info=getattr(order, self.sector.device_field) or "Não especificado",
        )

    async def next_number_from_oracle(self) -> Optional[int]:
        """
        Chama next_os_number(user_id, tabela). Só existe no PostgreSQL;
        em qualquer falha retorna None e a sondagem linear assume.
        """
        if self.db.get_bind().dialect.name != "postgresql":
            return None

        try:
            # savepoint: erro na função não pode abortar a transação do request
            async with self.db.begin_nested():
                result = await self.db.execute(
                    select(func.next_os_number(self.user_id, self.table))
                )
                return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.warning(f"Oráculo de numeração indisponível ({self.table}, user {self.user_id}): {e}")
            return None

    async def _max_os_number(self) -> Optional[int]:
        result = await self.db.execute(select(func.max(self.model.os_number)).where(*self._active()))
        return result.scalar()

    async def _starting_number_setting(self) -> Optional[int]:
        result = await self.db.execute(
            select(SystemSetting.value).where(
                SystemSetting.user_id == self.user_id,
                SystemSetting.key == OS_STARTING_NUMBER_KEY,
            ).limit(1)
        )
        value = result.scalar_one_or_none()
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning(f"os_starting_number inválido para user {self.user_id}: {value!r}")
            return None

    # ── Alocação ─────────────────────────────────────────

    async def find_next_available(self, starting_from: int, exclude_order_id: Optional[str] = None) -> int:
        """
        Primeiro número livre >= starting_from. Tenta o oráculo e, se ele não
        servir, sonda até scan_max_attempts números consecutivos.

        Na edição, `exclude_order_id` faz o número atual da própria OS contar
        como livre: pedir #5 (ocupado) numa OS #6 devolve #6, não #7.
        """
        oracle = await self.next_number_from_oracle()
        if oracle is not None and oracle >= starting_from:
            if not await self.check_number_exists(oracle, exclude_order_id):
                return oracle
            logger.warning(f"Oráculo devolveu número já em uso: {oracle} ({self.table})")

        start = max(starting_from, oracle or starting_from)
        end = start + self.scan_max_attempts - 1

        query = select(self.model.os_number).where(
            *self._active(),
            self.model.os_number >= start,
            self.model.os_number <= end,
        )
        if exclude_order_id:
            query = query.where(self.model.id != exclude_order_id)

        result = await self.db.execute(query)
        taken = set(result.scalars().all())

        for candidate in range(start, end + 1):
            if candidate not in taken:
                return candidate

        logger.error(f"Sondagem esgotada a partir de {start} ({self.table}, user {self.user_id})")
        raise OsNumberExhaustedError(start, self.scan_max_attempts)

    async def validate_and_reserve(
        self, number: int, exclude_order_id: Optional[str] = None
    ) -> Reservation:
        """Pré-checagem para o formulário: número livre ou sugestão do próximo."""
        existing = await self.check_number_exists(number, exclude_order_id)
        if not existing:
            return Reservation(valid=True, new_number=number)

        new_number = await self.find_next_available(number + 1, exclude_order_id)
        logger.info(f"OS #{number} já existe ({self.table}); sugerindo #{new_number}")
        return Reservation(valid=False, new_number=new_number, conflict=existing)

    async def suggest_next_number(self) -> int:
        """Número inicial do formulário de nova OS."""
        oracle = await self.next_number_from_oracle()
        if oracle is not None:
            return oracle

        current_max = await self._max_os_number()
        if current_max is not None:
            return current_max + 1

        starting = await self._starting_number_setting()
        return starting if starting is not None else 1

    async def save_with_retry(
        self,
        payload: dict,
        save_operation: SaveOperation,
        max_retries: Optional[int] = None,
        exclude_order_id: Optional[str] = None,
    ) -> SaveOutcome:
        """
        Executa save_operation(payload). Em violação de unicidade faz
        rollback, escolhe o próximo número livre, espera 100-300 ms e tenta
        de novo, no máximo max_retries tentativas. Outros erros encerram
        com FAILED e o erro em `outcome.error`.

        `exclude_order_id` é a OS em edição (ver find_next_available).
        """
        if max_retries is None:
            max_retries = self.max_retries
        current = dict(payload)
        attempts: List[RetryAttempt] = []
        last_error: Optional[Exception] = None

        for attempt in range(1, max_retries + 1):
            try:
                record = await save_operation(current)
            except SQLAlchemyError as e:
                await self.db.rollback()
                last_error = e

                if not is_unique_violation(e):
                    logger.error(f"Erro ao salvar OS ({self.table}): {e}")
                    return SaveOutcome(status=SaveStatus.FAILED, attempts=attempts, error=e)

                if attempt == max_retries:
                    break

                previous = current["os_number"]
                try:
                    new_number = await self.find_next_available(previous + 1, exclude_order_id)
                except OsNumberExhaustedError as exhausted:
                    return SaveOutcome(status=SaveStatus.FAILED, attempts=attempts, error=exhausted)

                logger.warning(
                    f"Número de OS {previous} já está em uso. Tentando com {new_number}... "
                    f"(tentativa {attempt}/{max_retries})"
                )
                attempts.append(RetryAttempt(attempt=attempt, previous_number=previous, new_number=new_number))
                current["os_number"] = new_number
                await asyncio.sleep(random.uniform(0.1, 0.3))
                continue
            except Exception as e:
                await self.db.rollback()
                logger.exception(f"Erro inesperado ao salvar OS ({self.table}): {e}")
                return SaveOutcome(status=SaveStatus.FAILED, attempts=attempts, error=e)

            if attempts:
                logger.info(f"OS salva com o número {current['os_number']}")
            return SaveOutcome(
                status=SaveStatus.SUCCEEDED,
                record=record,
                final_os_number=current["os_number"],
                attempts=attempts,
            )

        logger.error(f"Não foi possível encontrar um número de OS disponível após {max_retries} tentativas")
        return SaveOutcome(status=SaveStatus.FAILED, attempts=attempts, error=last_error)
