"""
OSDesk - Schemas: API de integração (n8n)
"""
from pydantic import BaseModel
from typing import Optional, Any, Dict


class IntegrationRequest(BaseModel):
    action: str
    table: str = "service_orders"
    filters: Optional[Dict[str, Any]] = None
    data: Optional[Dict[str, Any]] = None
    id: Optional[str] = None


class NotificationRequest(BaseModel):
    action: str
    table: str = "service_orders"
    filters: Optional[Dict[str, Any]] = None
    order_id: Optional[str] = None
    notification_type: Optional[str] = None
