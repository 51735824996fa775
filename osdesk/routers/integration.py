"""
OSDesk - Router: API de integração (n8n)
Endpoints server-to-server protegidos por X-API-Key, com bloqueio por IP
após tentativas de autenticação falhas.
NÃO usa autenticação JWT.
"""
import hmac
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from osdesk.config import get_settings
from osdesk.database import get_db
from osdesk.dependencies import get_rate_limiter
from osdesk.middleware.rate_limiter import RateLimiter, get_client_ip
from osdesk.schemas.integration import IntegrationRequest, NotificationRequest
from osdesk.services import integration_service
from osdesk.services.integration_service import IntegrationError
from osdesk.services.security_utils import safe_error_message

logger = logging.getLogger("integration")

router = APIRouter(prefix="/api/integrations", tags=["Integrations"])


async def _authorize(request: Request, limiter: RateLimiter, scope: str) -> JSONResponse | None:
    """None se autorizado; senão a resposta 429/401 pronta."""
    client_ip = get_client_ip(request)

    limit = await limiter.check(client_ip, scope)
    if not limit.allowed:
        logger.warning(f"Rate limit excedido para {client_ip} em {scope}")
        return JSONResponse(
            status_code=429,
            content={"error": limit.error_message, "retry_after": limit.reset_in},
            headers=limit.headers(),
        )

    expected = get_settings().N8N_API_KEY
    api_key = request.headers.get("x-api-key") or ""
    if not expected or not hmac.compare_digest(api_key.encode(), expected.encode()):
        await limiter.record_failure(client_ip, scope)
        logger.error(f"API key inválida ou ausente de {client_ip} ({scope})")
        return JSONResponse(status_code=401, content={"error": "Unauthorized - Invalid API key"})

    await limiter.reset(client_ip, scope)
    return None


async def _run(scope: str, handler, **kwargs) -> JSONResponse:
    try:
        result = await handler(**kwargs)
    except IntegrationError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message, **e.extra})
    except (SQLAlchemyError, ValueError) as e:
        logger.error(f"{scope} erro: {e}")
        return JSONResponse(status_code=500, content={"error": safe_error_message(e)})

    logger.info(f"{scope}: concluído com sucesso")
    return JSONResponse(content=result)


@router.post("/service-orders")
async def service_orders(
    data: IntegrationRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Ações: list, get, create, update, delete, get_situations, get_withdrawal_situations, get_employees, get_equipment_locations."""
    denied = await _authorize(request, limiter, "n8n-service-orders")
    if denied:
        return denied

    logger.info(f"n8n-service-orders: action={data.action}, table={data.table}")
    return await _run(
        "n8n-service-orders",
        integration_service.handle_service_orders,
        db=db, action=data.action, table=data.table,
        filters=data.filters, data=data.data, order_id=data.id,
    )


@router.post("/reports")
async def reports(
    data: IntegrationRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Ações: summary, daily_report, export, employees_summary."""
    denied = await _authorize(request, limiter, "n8n-reports")
    if denied:
        return denied

    logger.info(f"n8n-reports: action={data.action}, table={data.table}")
    return await _run(
        "n8n-reports",
        integration_service.handle_reports,
        db=db, action=data.action, table=data.table, filters=data.filters,
    )


@router.post("/notifications")
async def notifications(
    data: NotificationRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Ações: get_pending_notifications, mark_notified, get_order_for_notification."""
    denied = await _authorize(request, limiter, "n8n-notifications")
    if denied:
        return denied

    logger.info(f"n8n-notifications: action={data.action}, table={data.table}")
    return await _run(
        "n8n-notifications",
        integration_service.handle_notifications,
        db=db, action=data.action, table=data.table, filters=data.filters,
        order_id=data.order_id, notification_type=data.notification_type,
    )
