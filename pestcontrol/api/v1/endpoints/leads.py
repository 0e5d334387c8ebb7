# pestcontrol/api/v1/endpoints/leads.py
# type: ignore

from datetime import date, datetime, time, timedelta
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from pestcontrol.api.v1.dependencies import (
    OwnershipPolicy,
    OwnershipScope,
    check_ownership,
    ensure_company_access,
    get_current_user,
    require_permission,
)
from pestcontrol.core.errors import BadRequest, NotFound
from pestcontrol.core.logger import get_logger
from pestcontrol.database import get_db
from pestcontrol.models.auth import Role, Staff
from pestcontrol.models.leads import Lead, LeadStatus, ServiceType, UrgencyLevel
from pestcontrol.models.platform import Branch
from pestcontrol.schemas.auth import CurrentUser
from pestcontrol.schemas.leads import LeadAssign, LeadCreate, LeadInDB, LeadUpdate
from pestcontrol.schemas.platform import paginate

logger = get_logger("leads")

router = APIRouter()

ownership_gate = check_ownership("assigned_to")

SORT_FIELDS = {
    "customer_name": Lead.customer_name,
    "created_at": Lead.created_at,
    "status": Lead.status,
    "urgency_level": Lead.urgency_level,
}


def lead_policy(request: Request, current_user: CurrentUser = Depends(get_current_user)) -> OwnershipPolicy:
    """SUPERADMIN works across every tenant; other roles go through the ownership gate."""
    if current_user.role == Role.SUPERADMIN:
        return OwnershipPolicy(user=current_user, scope=OwnershipScope.ALL)
    return ownership_gate(request, current_user)


def scoped_leads(db: Session, current_user: CurrentUser, policy: OwnershipPolicy):
    """Leads the caller may see: own tenant, narrowed by the ownership policy."""
    query = db.query(Lead)
    if current_user.role != Role.SUPERADMIN:
        query = query.filter(Lead.company_id == current_user.company_id)
    return policy.apply(query, Lead)


def get_lead_or_404(db: Session, lead_id: str) -> Lead:
    lead = (
        db.query(Lead)
        .options(joinedload(Lead.branch), joinedload(Lead.assignee), joinedload(Lead.creator))
        .filter(Lead.id == lead_id)
        .first()
    )
    if not lead:
        raise NotFound("Lead not found")
    return lead


def load_lead(db: Session, lead_id: str, current_user: CurrentUser, policy: OwnershipPolicy, request: Request) -> Lead:
    lead = get_lead_or_404(db, lead_id)
    ensure_company_access(current_user, lead.company_id, request)
    policy.enforce(lead, request)
    return lead


def get_active_branch(db: Session, branch_id: str) -> Branch:
    branch = db.query(Branch).filter(Branch.id == branch_id, Branch.is_active.is_(True)).first()
    if not branch:
        raise BadRequest("Invalid or inactive branch selected")
    return branch


def get_assignee(db: Session, staff_id: str, company_id: str) -> Staff:
    staff = (
        db.query(Staff)
        .filter(Staff.id == staff_id, Staff.company_id == company_id, Staff.is_active.is_(True))
        .first()
    )
    if not staff:
        raise BadRequest("Assigned staff must be an active member of the lead's company")
    return staff


# ***************************************************************
# 1. Read
# ***************************************************************
@router.get("", tags=["Leads"])
def list_leads(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    status_filter: Optional[LeadStatus] = Query(None, alias="status"),
    service_type: Optional[ServiceType] = None,
    urgency_level: Optional[UrgencyLevel] = None,
    city: Optional[str] = None,
    assigned_to: Optional[str] = None,
    branch_id: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    sort_by: Literal["customer_name", "created_at", "status", "urgency_level"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("lead", "view")),
    policy: OwnershipPolicy = Depends(lead_policy),
):
    """
    Lists leads in the caller's scope: a TECHNICIAN sees the leads assigned
    to them, an AREA_MANAGER their branch's, managers the whole company.
    """
    query = scoped_leads(db, current_user, policy).options(
        joinedload(Lead.branch), joinedload(Lead.assignee), joinedload(Lead.creator)
    )

    if status_filter is not None:
        query = query.filter(Lead.status == status_filter)
    if service_type is not None:
        query = query.filter(Lead.service_type == service_type)
    if urgency_level is not None:
        query = query.filter(Lead.urgency_level == urgency_level)
    if city:
        query = query.filter(Lead.city.ilike(f"%{city.strip()}%"))
    if assigned_to:
        query = query.filter(Lead.assigned_to == assigned_to)
    if branch_id:
        query = query.filter(Lead.branch_id == branch_id)
    if date_from:
        query = query.filter(Lead.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        # inclusive of the whole end day
        query = query.filter(Lead.created_at < datetime.combine(date_to + timedelta(days=1), time.min))
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Lead.customer_name.ilike(pattern),
            Lead.customer_phone.ilike(pattern),
            Lead.customer_email.ilike(pattern),
            Lead.city.ilike(pattern),
        ))

    column = SORT_FIELDS[sort_by]
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc(), Lead.id)

    leads, pagination = paginate(query, page, limit)
    return {
        "success": True,
        "data": [LeadInDB.model_validate(lead) for lead in leads],
        "pagination": pagination,
    }


@router.get("/stats/dashboard", tags=["Leads"])
def lead_stats(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("lead", "view")),
    policy: OwnershipPolicy = Depends(lead_policy),
):
    """Lead counts by status and urgency within the caller's scope."""
    query = scoped_leads(db, current_user, policy)

    by_status = dict.fromkeys((s.value for s in LeadStatus), 0)
    for value, count in query.with_entities(Lead.status, func.count(Lead.id)).group_by(Lead.status).all():
        by_status[value.value] = count

    by_urgency = dict.fromkeys((u.value for u in UrgencyLevel), 0)
    for value, count in query.with_entities(Lead.urgency_level, func.count(Lead.id)).group_by(Lead.urgency_level).all():
        by_urgency[value.value] = count

    return {
        "success": True,
        "data": {
            "total_leads": sum(by_status.values()),
            "unassigned_leads": query.filter(Lead.assigned_to.is_(None)).count(),
            "status_breakdown": by_status,
            "urgency_breakdown": by_urgency,
        },
    }


@router.get("/{lead_id}", tags=["Leads"])
def read_lead(
    lead_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("lead", "view")),
    policy: OwnershipPolicy = Depends(lead_policy),
):
    lead = load_lead(db, lead_id, current_user, policy, request)
    return {"success": True, "data": LeadInDB.model_validate(lead)}


# ***************************************************************
# 2. Write
# ***************************************************************
@router.post("", status_code=status.HTTP_201_CREATED, tags=["Leads"])
def create_lead(
    lead_in: LeadCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("lead", "create")),
    policy: OwnershipPolicy = Depends(lead_policy),
):
    """Creates a lead; its company is the one owning the chosen branch."""
    branch = get_active_branch(db, lead_in.branch_id)
    ensure_company_access(current_user, branch.company_id, request)

    data = lead_in.model_dump()
    if lead_in.assigned_to:
        get_assignee(db, lead_in.assigned_to, branch.company_id)

    lead = Lead(**data, company_id=branch.company_id, created_by=current_user.id)
    policy.enforce(lead, request)

    db.add(lead)
    db.commit()
    lead = get_lead_or_404(db, lead.id)

    logger.info("Lead created", extra={"context": {"lead_id": lead.id, "created_by": current_user.id}})
    return {
        "success": True,
        "message": "Lead created successfully",
        "data": LeadInDB.model_validate(lead),
    }


@router.put("/{lead_id}", tags=["Leads"])
def update_lead(
    lead_id: str,
    lead_in: LeadUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("lead", "edit")),
    policy: OwnershipPolicy = Depends(lead_policy),
):
    lead = load_lead(db, lead_id, current_user, policy, request)
    update_data = lead_in.model_dump(exclude_unset=True)

    if update_data.get("branch_id") and update_data["branch_id"] != lead.branch_id:
        branch = get_active_branch(db, update_data["branch_id"])
        if branch.company_id != lead.company_id:
            raise BadRequest("Branch does not belong to the lead's company")

    required = ("customer_name", "customer_phone", "address", "city", "state", "pincode",
                "service_type", "property_type", "urgency_level", "status", "source", "branch_id")
    for key, value in update_data.items():
        if value is None and key in required:
            continue
        setattr(lead, key, value)

    # the lead must stay inside the caller's scope after the change
    policy.enforce(lead, request)

    db.commit()
    lead = get_lead_or_404(db, lead.id)

    logger.info("Lead updated", extra={"context": {"lead_id": lead.id, "updated_by": current_user.id}})
    return {
        "success": True,
        "message": "Lead updated successfully",
        "data": LeadInDB.model_validate(lead),
    }


@router.delete("/{lead_id}", tags=["Leads"])
def delete_lead(
    lead_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("lead", "delete")),
    policy: OwnershipPolicy = Depends(lead_policy),
):
    lead = load_lead(db, lead_id, current_user, policy, request)
    db.delete(lead)
    db.commit()

    logger.info("Lead deleted", extra={"context": {"lead_id": lead_id, "deleted_by": current_user.id}})
    return {"success": True, "message": "Lead deleted successfully"}


@router.post("/{lead_id}/assign", tags=["Leads"])
def assign_lead(
    lead_id: str,
    payload: LeadAssign,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("lead", "assign")),
    policy: OwnershipPolicy = Depends(lead_policy),
):
    """Assigns the lead to an active staff member of the same company."""
    lead = load_lead(db, lead_id, current_user, policy, request)
    staff = get_assignee(db, payload.assigned_to, lead.company_id)

    if current_user.role == Role.AREA_MANAGER and staff.branch_id != current_user.branch_id:
        raise BadRequest("Leads can only be assigned to staff of your branch")

    lead.assigned_to = staff.id
    db.commit()
    lead = get_lead_or_404(db, lead.id)

    logger.info(
        "Lead assigned",
        extra={"context": {"lead_id": lead.id, "assigned_to": staff.id, "assigned_by": current_user.id}},
    )
    return {
        "success": True,
        "message": "Lead assigned successfully",
        "data": LeadInDB.model_validate(lead),
    }
