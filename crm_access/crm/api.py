from __future__ import annotations

import uuid
from collections.abc import Generator

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from crm_access.access.schemas import AckRead
from crm_access.core.config import get_settings
from crm_access.core.database import get_db
from crm_access.crm.schemas import (
    ActivityCreate,
    ActivityRead,
    ActivityUpdate,
    CustomerCreate,
    CustomerRead,
    CustomerUpdate,
    LeadCreate,
    LeadRead,
    LeadUpdate,
    OpportunityCreate,
    OpportunityRead,
    OpportunityUpdate,
)
from crm_access.crm.service import activity_service, customer_service, lead_service, opportunity_service
from crm_access.directory.api import get_current_viewer
from crm_access.directory.service import Viewer
from crm_access.platform.security.context import VisibilityScope
from crm_access.platform.security.resolver import resolve_visibility_scope
from crm_access.platform.security.session import visibility_scope


customers_router = APIRouter(prefix="/api/crm", tags=["crm.customers"])
leads_router = APIRouter(prefix="/api/crm", tags=["crm.leads"])
opportunities_router = APIRouter(prefix="/api/crm", tags=["crm.opportunities"])
activities_router = APIRouter(prefix="/api/crm", tags=["crm.activities"])


def get_visibility_scope(
    viewer: Viewer = Depends(get_current_viewer),
    db: Session = Depends(get_db),
) -> Generator[VisibilityScope, None, None]:
    scope = resolve_visibility_scope(db, viewer.user_id, correlation_id=viewer.correlation_id)
    if not get_settings().rls_enforcement_enabled:
        yield scope
        return
    with visibility_scope(db, scope):
        yield scope


@customers_router.get("/customers", response_model=list[CustomerRead])
def list_customers(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> list[CustomerRead]:
    rows = customer_service.list_records(db, scope, limit=limit, offset=offset)
    return [CustomerRead.model_validate(row) for row in rows]


@customers_router.post("/customers", response_model=CustomerRead, status_code=status.HTTP_201_CREATED)
def create_customer(
    dto: CustomerCreate,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> CustomerRead:
    return CustomerRead.model_validate(customer_service.create_record(db, scope, dto.model_dump(exclude_none=True)))


@customers_router.get("/customers/{record_id}", response_model=CustomerRead)
def get_customer(
    record_id: uuid.UUID,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> CustomerRead:
    return CustomerRead.model_validate(customer_service.get_record(db, scope, record_id))


@customers_router.patch("/customers/{record_id}", response_model=CustomerRead)
def update_customer(
    record_id: uuid.UUID,
    dto: CustomerUpdate,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> CustomerRead:
    record = customer_service.update_record(db, scope, record_id, dto.model_dump(exclude_unset=True))
    return CustomerRead.model_validate(record)


@customers_router.delete("/customers/{record_id}", response_model=AckRead)
def delete_customer(
    record_id: uuid.UUID,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> AckRead:
    customer_service.delete_record(db, scope, record_id)
    return AckRead()


@leads_router.get("/leads", response_model=list[LeadRead])
def list_leads(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> list[LeadRead]:
    rows = lead_service.list_records(db, scope, limit=limit, offset=offset)
    return [LeadRead.model_validate(row) for row in rows]


@leads_router.post("/leads", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    dto: LeadCreate,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> LeadRead:
    return LeadRead.model_validate(lead_service.create_record(db, scope, dto.model_dump(exclude_none=True)))


@leads_router.get("/leads/{record_id}", response_model=LeadRead)
def get_lead(
    record_id: uuid.UUID,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> LeadRead:
    return LeadRead.model_validate(lead_service.get_record(db, scope, record_id))


@leads_router.patch("/leads/{record_id}", response_model=LeadRead)
def update_lead(
    record_id: uuid.UUID,
    dto: LeadUpdate,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> LeadRead:
    return LeadRead.model_validate(lead_service.update_record(db, scope, record_id, dto.model_dump(exclude_unset=True)))


@leads_router.delete("/leads/{record_id}", response_model=AckRead)
def delete_lead(
    record_id: uuid.UUID,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> AckRead:
    lead_service.delete_record(db, scope, record_id)
    return AckRead()


@opportunities_router.get("/opportunities", response_model=list[OpportunityRead])
def list_opportunities(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> list[OpportunityRead]:
    rows = opportunity_service.list_records(db, scope, limit=limit, offset=offset)
    return [OpportunityRead.model_validate(row) for row in rows]


@opportunities_router.post("/opportunities", response_model=OpportunityRead, status_code=status.HTTP_201_CREATED)
def create_opportunity(
    dto: OpportunityCreate,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> OpportunityRead:
    record = opportunity_service.create_record(db, scope, dto.model_dump(exclude_none=True))
    return OpportunityRead.model_validate(record)


@opportunities_router.get("/opportunities/{record_id}", response_model=OpportunityRead)
def get_opportunity(
    record_id: uuid.UUID,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> OpportunityRead:
    return OpportunityRead.model_validate(opportunity_service.get_record(db, scope, record_id))


@opportunities_router.patch("/opportunities/{record_id}", response_model=OpportunityRead)
def update_opportunity(
    record_id: uuid.UUID,
    dto: OpportunityUpdate,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> OpportunityRead:
    record = opportunity_service.update_record(db, scope, record_id, dto.model_dump(exclude_unset=True))
    return OpportunityRead.model_validate(record)


@opportunities_router.delete("/opportunities/{record_id}", response_model=AckRead)
def delete_opportunity(
    record_id: uuid.UUID,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> AckRead:
    opportunity_service.delete_record(db, scope, record_id)
    return AckRead()


@activities_router.get("/activities", response_model=list[ActivityRead])
def list_activities(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> list[ActivityRead]:
    rows = activity_service.list_records(db, scope, limit=limit, offset=offset)
    return [ActivityRead.model_validate(row) for row in rows]


@activities_router.post("/activities", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def create_activity(
    dto: ActivityCreate,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> ActivityRead:
    return ActivityRead.model_validate(activity_service.create_record(db, scope, dto.model_dump(exclude_none=True)))


@activities_router.get("/activities/{record_id}", response_model=ActivityRead)
def get_activity(
    record_id: uuid.UUID,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> ActivityRead:
    return ActivityRead.model_validate(activity_service.get_record(db, scope, record_id))


@activities_router.patch("/activities/{record_id}", response_model=ActivityRead)
def update_activity(
    record_id: uuid.UUID,
    dto: ActivityUpdate,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> ActivityRead:
    record = activity_service.update_record(db, scope, record_id, dto.model_dump(exclude_unset=True))
    return ActivityRead.model_validate(record)


@activities_router.delete("/activities/{record_id}", response_model=AckRead)
def delete_activity(
    record_id: uuid.UUID,
    scope: VisibilityScope = Depends(get_visibility_scope),
    db: Session = Depends(get_db),
) -> AckRead:
    activity_service.delete_record(db, scope, record_id)
    return AckRead()
