"""
OSDesk - Schemas: Acompanhamento público da OS
Somente dados não sensíveis (sem contato, CPF ou senha do aparelho).
"""
from pydantic import BaseModel
from typing import Optional, List, Dict
from datetime import datetime
from osdesk.schemas.media import MediaFile


class TrackingResponse(BaseModel):
    os_number: int
    device: Optional[str] = None
    defect: Optional[str] = None
    entry_date: datetime
    exit_date: Optional[datetime] = None
    withdrawn_by: Optional[str] = None
    situation_name: Optional[str] = None
    situation_color: Optional[str] = None
    withdrawal_name: Optional[str] = None
    withdrawal_color: Optional[str] = None
    media_files: List[MediaFile] = []
    checklist: Dict[str, Optional[bool]] = {}


class SignedUrlsResponse(BaseModel):
    signed_urls: Dict[str, str]
