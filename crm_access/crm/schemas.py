from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class OwnerScopedRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_user_id: UUID
    created_at: datetime
    updated_at: datetime


class CustomerCreate(BaseModel):
    name: str = Field(min_length=1)
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    status: str = "Active"
    owner_user_id: UUID | None = None


class CustomerUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    status: str | None = None
    owner_user_id: UUID | None = None


class CustomerRead(OwnerScopedRead):
    name: str
    email: str | None
    phone: str | None
    company: str | None
    status: str


class LeadCreate(BaseModel):
    status: str = "New"
    source: str | None = None
    company_name: str | None = None
    contact_name: str | None = None
    email: str | None = None
    phone: str | None = None
    notes: str | None = None
    owner_user_id: UUID | None = None


class LeadUpdate(BaseModel):
    status: str | None = None
    source: str | None = None
    company_name: str | None = None
    contact_name: str | None = None
    email: str | None = None
    phone: str | None = None
    notes: str | None = None
    owner_user_id: UUID | None = None


class LeadRead(OwnerScopedRead):
    status: str
    source: str | None
    company_name: str | None
    contact_name: str | None
    email: str | None
    phone: str | None
    notes: str | None


class OpportunityCreate(BaseModel):
    name: str = Field(min_length=1)
    customer_id: UUID | None = None
    stage: str = "Prospecting"
    amount: Decimal = Decimal("0")
    probability: int | None = Field(default=None, ge=0, le=100)
    expected_close_date: date | None = None
    owner_user_id: UUID | None = None


class OpportunityUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    customer_id: UUID | None = None
    stage: str | None = None
    amount: Decimal | None = None
    probability: int | None = Field(default=None, ge=0, le=100)
    expected_close_date: date | None = None
    owner_user_id: UUID | None = None


class OpportunityRead(OwnerScopedRead):
    name: str
    customer_id: UUID | None
    stage: str
    amount: Decimal
    probability: int | None
    expected_close_date: date | None


class ActivityCreate(BaseModel):
    activity_type: str = Field(min_length=1)
    entity_type: str | None = None
    entity_id: UUID | None = None
    subject: str | None = None
    body: str | None = None
    due_at: datetime | None = None
    status: str = "Open"
    owner_user_id: UUID | None = None


class ActivityUpdate(BaseModel):
    activity_type: str | None = Field(default=None, min_length=1)
    subject: str | None = None
    body: str | None = None
    due_at: datetime | None = None
    status: str | None = None
    owner_user_id: UUID | None = None


class ActivityRead(OwnerScopedRead):
    activity_type: str
    entity_type: str | None
    entity_id: UUID | None
    subject: str | None
    body: str | None
    due_at: datetime | None
    status: str
