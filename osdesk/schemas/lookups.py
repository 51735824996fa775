"""
OSDesk - Schemas: Tabelas auxiliares
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class LookupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    color: str = Field("#6b7280", max_length=20)


class LookupUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    color: Optional[str] = Field(None, max_length=20)


class LookupResponse(BaseModel):
    id: str
    user_id: int
    name: str
    color: str
    deleted: bool
    created_at: datetime

    class Config:
        from_attributes = True


class EmployeeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150)
    type: str = Field(..., max_length=50)
    contact: Optional[str] = Field(None, max_length=50)


class EmployeeUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    type: Optional[str] = Field(None, max_length=50)
    contact: Optional[str] = Field(None, max_length=50)


class EmployeeResponse(BaseModel):
    id: str
    user_id: int
    name: str
    type: str
    contact: Optional[str]
    deleted: bool
    created_at: datetime

    class Config:
        from_attributes = True
