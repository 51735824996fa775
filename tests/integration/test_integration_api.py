"""
Testes da API de integração (n8n)
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from osdesk.models import Employee
from osdesk.services.os_number_allocator import (
    OsNumberAllocator,
    OsNumberExhaustedError,
    SaveOutcome,
    SaveStatus,
)

SERVICE_ORDERS = "/api/integrations/service-orders"
REPORTS = "/api/integrations/reports"
NOTIFICATIONS = "/api/integrations/notifications"


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_sem_api_key(self, client):
        response = await client.post(SERVICE_ORDERS, json={"action": "list"})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized - Invalid API key"}

    @pytest.mark.asyncio
    async def test_bloqueio_apos_falhas(self, client):
        """Limite de 3 falhas na fixture do rate limiter."""
        for _ in range(3):
            response = await client.post(SERVICE_ORDERS, json={"action": "list"}, headers={"X-API-Key": "errada"})
            assert response.status_code == 401

        blocked = await client.post(SERVICE_ORDERS, json={"action": "list"}, headers={"X-API-Key": "errada"})

        assert blocked.status_code == 429
        assert blocked.headers["Retry-After"] == "900"
        assert blocked.json()["error"] == "Too many failed attempts. Please try again later."

    @pytest.mark.asyncio
    async def test_bloqueio_vale_mesmo_com_chave_certa(self, client, api_key_headers):
        for _ in range(3):
            await client.post(REPORTS, json={"action": "summary"}, headers={"X-API-Key": "errada"})

        response = await client.post(REPORTS, json={"action": "summary"}, headers=api_key_headers)
        assert response.status_code == 429

    @pytest.mark.asyncio
    async def test_sucesso_zera_o_contador(self, client, api_key_headers, rate_limiter):
        for _ in range(2):
            await client.post(REPORTS, json={"action": "summary"}, headers={"X-API-Key": "errada"})
        await client.post(REPORTS, json={"action": "summary"}, headers=api_key_headers)

        response = await client.post(REPORTS, json={"action": "summary"}, headers={"X-API-Key": "errada"})
        assert response.status_code == 401


class TestServiceOrders:
    @pytest.mark.asyncio
    async def test_cria_com_numero_sugerido(self, client, api_key_headers, user, make_order):
        await make_order(user.id, 20)

        response = await client.post(SERVICE_ORDERS, headers=api_key_headers, json={
            "action": "create",
            "data": {
                "user_id": user.id,
                "client_name": "Paula",
                "device_model": "Redmi Note 11",
                "reported_defect": "Bateria",
                "entry_date": "2024-03-01T10:00:00Z",
                "deleted": True,
            },
        })

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["os_number"] == 21
        assert body["data"]["deleted"] is False
        assert body["retries"] == []

    @pytest.mark.asyncio
    async def test_campos_obrigatorios(self, client, api_key_headers, user):
        response = await client.post(SERVICE_ORDERS, headers=api_key_headers, json={
            "action": "create",
            "data": {"user_id": user.id, "client_name": "Paula"},
        })

        assert response.status_code == 400
        assert response.json()["error"] == "Missing required fields: device_model, reported_defect"

    @pytest.mark.asyncio
    async def test_falha_que_nao_e_de_numeracao(self, client, api_key_headers, user):
        failed = SaveOutcome(status=SaveStatus.FAILED, error=ValueError("column situation_id: detalhe interno"))

        with patch.object(OsNumberAllocator, "save_with_retry", AsyncMock(return_value=failed)):
            response = await client.post(SERVICE_ORDERS, headers=api_key_headers, json={
                "action": "create",
                "data": {
                    "user_id": user.id,
                    "client_name": "Paula",
                    "device_model": "Redmi Note 11",
                    "reported_defect": "Bateria",
                },
            })

        assert response.status_code == 500
        assert response.json()["error"] == "An error occurred processing your request"

    @pytest.mark.asyncio
    async def test_numero_indisponivel(self, client, api_key_headers, user):
        failed = SaveOutcome(status=SaveStatus.FAILED, error=OsNumberExhaustedError(1, 100))

        with patch.object(OsNumberAllocator, "save_with_retry", AsyncMock(return_value=failed)):
            response = await client.post(SERVICE_ORDERS, headers=api_key_headers, json={
                "action": "create",
                "data": {
                    "user_id": user.id,
                    "client_name": "Paula",
                    "device_model": "Redmi Note 11",
                    "reported_defect": "Bateria",
                },
            })

        assert response.status_code == 500
        assert response.json()["error"] == "Could not allocate OS number"

    @pytest.mark.asyncio
    async def test_lista_com_relacoes(self, client, api_key_headers, db_session, user, make_order):
        employee = Employee(user_id=user.id, name="Rafael", type="Técnico")
        db_session.add(employee)
        await db_session.commit()
        await make_order(user.id, 1, technician_id=employee.id, client_name="Ana_Paula")
        await make_order(user.id, 2, client_name="Bruno")

        response = await client.post(SERVICE_ORDERS, headers=api_key_headers, json={
            "action": "list",
            "filters": {"user_id": user.id, "client_name": "a_p"},
        })

        body = response.json()
        assert body["count"] == 1
        assert body["data"][0]["technician"]["name"] == "Rafael"
        assert body["data"][0]["situation"] is None

    @pytest.mark.asyncio
    async def test_get_com_id_invalido(self, client, api_key_headers):
        response = await client.post(SERVICE_ORDERS, headers=api_key_headers, json={
            "action": "get", "id": "1 OR 1=1",
        })
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid ID format"

    @pytest.mark.asyncio
    async def test_update_ignora_campos_protegidos(self, client, api_key_headers, user, make_order):
        order = await make_order(user.id, 1)

        response = await client.post(SERVICE_ORDERS, headers=api_key_headers, json={
            "action": "update",
            "id": order.id,
            "data": {"technical_info": "Trocado conector", "user_id": 999, "tracking_token": "x"},
        })

        data = response.json()["data"]
        assert data["technical_info"] == "Trocado conector"
        assert data["user_id"] == user.id
        assert data["tracking_token"] == order.tracking_token

    @pytest.mark.asyncio
    async def test_delete_logico(self, client, api_key_headers, user, make_order):
        order = await make_order(user.id, 1)

        response = await client.post(SERVICE_ORDERS, headers=api_key_headers, json={
            "action": "delete", "id": order.id,
        })

        assert response.json()["data"] == {"id": order.id, "deleted": True}
        listing = await client.post(SERVICE_ORDERS, headers=api_key_headers, json={
            "action": "list", "filters": {"user_id": user.id},
        })
        assert listing.json()["count"] == 0

    @pytest.mark.asyncio
    async def test_tabela_invalida(self, client, api_key_headers):
        response = await client.post(SERVICE_ORDERS, headers=api_key_headers, json={
            "action": "list", "table": "users",
        })
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid table name"

    @pytest.mark.asyncio
    async def test_acao_invalida(self, client, api_key_headers):
        response = await client.post(SERVICE_ORDERS, headers=api_key_headers, json={"action": "drop"})
        assert response.status_code == 400
        assert response.json()["error"].startswith("Invalid action. Use: list, get")

    @pytest.mark.asyncio
    async def test_situacoes(self, client, api_key_headers, user):
        response = await client.post(SERVICE_ORDERS, headers=api_key_headers, json={
            "action": "get_situations", "filters": {"user_id": user.id},
        })
        assert [s["name"] for s in response.json()["data"]] == ["Em fila"]


class TestReports:
    @pytest.mark.asyncio
    async def test_resumo(self, client, api_key_headers, user, make_order):
        await make_order(user.id, 1, value=100)
        await make_order(user.id, 2, value=50, exit_date=None)
        await make_order(user.id, 3, value=30, deleted=True)

        response = await client.post(REPORTS, headers=api_key_headers, json={
            "action": "summary", "filters": {"user_id": user.id},
        })

        data = response.json()["data"]
        assert data["total_orders"] == 2
        assert data["total_value"] == 150.0
        assert data["average_value"] == 75.0
        assert data["pending_orders"] == 2

    @pytest.mark.asyncio
    async def test_acao_invalida_lista_disponiveis(self, client, api_key_headers):
        response = await client.post(REPORTS, headers=api_key_headers, json={"action": "nada"})
        assert response.status_code == 400
        assert response.json()["available_actions"] == ["summary", "daily_report", "export", "employees_summary"]


class TestNotifications:
    @pytest.mark.asyncio
    async def test_pendentes_e_marcar(self, client, api_key_headers, user, make_order):
        finished = await make_order(user.id, 1, exit_date=datetime(2024, 3, 2, tzinfo=timezone.utc))
        await make_order(user.id, 2)

        pending = await client.post(NOTIFICATIONS, headers=api_key_headers, json={
            "action": "get_pending_notifications", "filters": {"user_id": user.id},
        })
        assert [o["os_number"] for o in pending.json()["data"]] == [1]

        marked = await client.post(NOTIFICATIONS, headers=api_key_headers, json={
            "action": "mark_notified", "order_id": finished.id, "notification_type": "delivered",
        })
        assert marked.json()["data"]["mensagem_finalizada"] is True
        assert marked.json()["data"]["mensagem_entregue"] is True

        pending = await client.post(NOTIFICATIONS, headers=api_key_headers, json={
            "action": "get_pending_notifications", "filters": {"user_id": user.id},
        })
        assert pending.json()["count"] == 0

    @pytest.mark.asyncio
    async def test_os_para_notificacao_traz_perfil(self, client, api_key_headers, user, make_order):
        order = await make_order(user.id, 1)

        response = await client.post(NOTIFICATIONS, headers=api_key_headers, json={
            "action": "get_order_for_notification", "order_id": order.id,
        })

        profile = response.json()["data"]["profile"]
        assert profile["full_name"] == "Loja Teste"
        assert profile["city"] == "São Paulo"
