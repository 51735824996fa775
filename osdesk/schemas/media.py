"""
OSDesk - Schemas: Mídia das OS
"""
from pydantic import BaseModel
from typing import Literal, List, Optional


class MediaFile(BaseModel):
    """
    Anexo de uma OS. `path` é a identidade durável no storage; `url` é uma
    URL assinada temporária e precisa ser renovada a partir do path.
    """
    url: str
    path: str
    type: Literal["image", "video"]
    name: str


class MediaFailure(BaseModel):
    name: str
    message: str


class MediaDraftResponse(BaseModel):
    storage_key: str
    files: List[MediaFile]
    loaded_from_db: bool = False


class MediaBatchResponse(BaseModel):
    files: List[MediaFile]
    uploaded: List[MediaFile]
    failures: List[MediaFailure] = []


class MediaUrlsRequest(BaseModel):
    tracking_token: str
    paths: List[str]
    order_type: Optional[Literal["celular", "informatica"]] = "celular"
