from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import DistributionStatus, RequestStatus, Role
from .pagination import PageMeta


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    username: str
    password: str


class UserProfile(BaseModel):
    id: uuid.UUID
    username: str
    name: str
    email: Optional[str] = None
    role: Role
    branch_id: Optional[uuid.UUID] = None
    active: bool
    created_at: dt.datetime


class UserCreate(BaseModel):
    username: str = Field(min_length=3, max_length=64)
    name: str = Field(min_length=1, max_length=128)
    email: Optional[str] = Field(default=None, max_length=255)
    password: str = Field(min_length=8, max_length=128)
    role: Role
    branch_id: Optional[uuid.UUID] = None


class UserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, min_length=8, max_length=128)
    role: Optional[Role] = None
    branch_id: Optional[uuid.UUID] = None
    is_active: Optional[bool] = None


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    username: str
    name: str
    email: Optional[str] = None
    role: Role
    branch_id: Optional[uuid.UUID] = None
    is_active: bool
    created_at: dt.datetime


class UserPage(BaseModel):
    data: list[UserResponse]
    meta: PageMeta


# Directory


class BranchCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    address: Optional[str] = Field(default=None, max_length=255)
    is_center: bool = False
    is_active: bool = True


class BranchUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    address: Optional[str] = Field(default=None, max_length=255)
    is_center: Optional[bool] = None
    is_active: Optional[bool] = None


class BranchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    address: Optional[str] = None
    is_center: bool
    is_active: bool


class BranchPage(BaseModel):
    data: list[BranchResponse]
    meta: PageMeta


class MaterialCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    unit: str = Field(min_length=1, max_length=32)
    is_active: bool = True


class MaterialUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=32)
    is_active: Optional[bool] = None


class MaterialResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    unit: str
    is_active: bool


class MaterialPage(BaseModel):
    data: list[MaterialResponse]
    meta: PageMeta


class SchoolCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    address: Optional[str] = Field(default=None, max_length=255)
    is_active: bool = True


class SchoolResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    address: Optional[str] = None
    is_active: bool


class SchoolPage(BaseModel):
    data: list[SchoolResponse]
    meta: PageMeta


# Stock ledger


class StockOpnameRequest(BaseModel):
    branch_id: uuid.UUID
    material_id: uuid.UUID
    qty: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    reason: str = Field(min_length=1, max_length=255)


class StockEntry(BaseModel):
    id: uuid.UUID
    material_id: uuid.UUID
    material_name: str
    unit: str
    branch_id: uuid.UUID
    branch_name: str
    is_center: bool
    qty: Decimal
    updated_at: dt.datetime


class StockPage(BaseModel):
    data: list[StockEntry]
    meta: PageMeta


# Requests


class RequestItemInput(BaseModel):
    material_id: uuid.UUID
    qty: Decimal = Field(gt=0, max_digits=12, decimal_places=2)


class RequestCreate(BaseModel):
    items: list[RequestItemInput] = Field(min_length=1)
    notes: Optional[str] = None


class ItemApproval(BaseModel):
    item_id: uuid.UUID
    qty_approved: Decimal = Field(ge=0, max_digits=12, decimal_places=2)


class RequestApprove(BaseModel):
    items: list[ItemApproval] = Field(default_factory=list)


class RequestReject(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class RequestItemResponse(BaseModel):
    id: uuid.UUID
    material_id: uuid.UUID
    material_name: str
    unit: str
    qty: Decimal
    qty_approved: Optional[Decimal] = None
    effective_qty: Decimal


class RequestResponse(BaseModel):
    id: uuid.UUID
    code: str
    branch_id: uuid.UUID
    branch_name: str
    status: RequestStatus
    notes: Optional[str] = None
    processed_by_id: Optional[uuid.UUID] = None
    processed_by_name: Optional[str] = None
    processed_at: Optional[dt.datetime] = None
    request_date: dt.datetime
    items: list[RequestItemResponse] = Field(default_factory=list)


class RequestPage(BaseModel):
    data: list[RequestResponse]
    meta: PageMeta


# Distributions


class DistributionCreate(BaseModel):
    school_id: uuid.UUID
    courier_name: str = Field(min_length=1, max_length=128)
    container_count: int = Field(ge=1)


class DistributionReturnUpdate(BaseModel):
    returned_container: int = Field(ge=0)


class DistributionResponse(BaseModel):
    id: uuid.UUID
    branch_id: uuid.UUID
    branch_name: str
    school_id: uuid.UUID
    school_name: str
    courier_name: str
    container_count: int
    returned_container: int
    status: DistributionStatus
    sent_at: dt.datetime
    returned_at: Optional[dt.datetime] = None


class DistributionPage(BaseModel):
    data: list[DistributionResponse]
    meta: PageMeta


# Audit


class AuditEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    action: str
    details: dict[str, Any]
    timestamp: dt.datetime


class AuditPage(BaseModel):
    data: list[AuditEntry]
    meta: PageMeta
