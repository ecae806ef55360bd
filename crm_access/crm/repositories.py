from __future__ import annotations

from crm_access.crm.models import CRMActivity, CRMCustomer, CRMLead, CRMOpportunity
from crm_access.platform.security.repository import OwnerScopedRepository


class CustomerRepository(OwnerScopedRepository[CRMCustomer]):
    model = CRMCustomer
    resource = "crm.customer"


class LeadRepository(OwnerScopedRepository[CRMLead]):
    model = CRMLead
    resource = "crm.lead"


class OpportunityRepository(OwnerScopedRepository[CRMOpportunity]):
    model = CRMOpportunity
    resource = "crm.opportunity"


class ActivityRepository(OwnerScopedRepository[CRMActivity]):
    model = CRMActivity
    resource = "crm.activity"


customer_repository = CustomerRepository()
lead_repository = LeadRepository()
opportunity_repository = OpportunityRepository()
activity_repository = ActivityRepository()
