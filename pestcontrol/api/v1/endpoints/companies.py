# pestcontrol/api/v1/endpoints/companies.py
# type: ignore

from typing import Literal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from pestcontrol.api.v1.dependencies import authorize, authorize_company, require_permission
from pestcontrol.core.errors import BadRequest, Conflict, NotFound
from pestcontrol.core.logger import get_logger
from pestcontrol.database import get_db
from pestcontrol.models.auth import Role, Staff
from pestcontrol.models.platform import Branch, Company, SubscriptionPlan
from pestcontrol.schemas.auth import CurrentUser
from pestcontrol.schemas.platform import CompanyCreate, CompanyInDB, CompanyOption, CompanyUpdate, paginate

logger = get_logger("companies")

router = APIRouter()

SORT_FIELDS = {
    "name": Company.name,
    "city": Company.city,
    "created_at": Company.created_at,
}


def get_company_or_404(db: Session, company_id: str) -> Company:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise NotFound("Company not found")
    return company


def company_counts(db: Session, company_ids):
    """{company_id: {total_branches, active_branches, total_staff, active_staff}}"""
    counts = {
        cid: {"total_branches": 0, "active_branches": 0, "total_staff": 0, "active_staff": 0}
        for cid in company_ids
    }
    if not counts:
        return counts

    for model, prefix in ((Branch, "branches"), (Staff, "staff")):
        rows = (
            db.query(model.company_id, model.is_active, func.count(model.id))
            .filter(model.company_id.in_(counts.keys()))
            .group_by(model.company_id, model.is_active)
            .all()
        )
        for company_id, is_active, total in rows:
            counts[company_id][f"total_{prefix}"] += total
            if is_active:
                counts[company_id][f"active_{prefix}"] += total
    return counts


def ensure_email_free(db: Session, email: str, exclude_id: str = None) -> None:
    query = db.query(Company.id).filter(Company.email == email)
    if exclude_id:
        query = query.filter(Company.id != exclude_id)
    if query.first():
        raise Conflict("Company with this email already exists")


# ***************************************************************
# 1. Public
# ***************************************************************
@router.get("/active", tags=["Companies"])
def list_active_companies(db: Session = Depends(get_db)):
    """Active companies (id/name) for the signup form."""
    companies = db.query(Company).filter(Company.is_active.is_(True)).order_by(Company.name).all()
    return {"success": True, "data": [CompanyOption.model_validate(c) for c in companies]}


# ***************************************************************
# 2. Read
# ***************************************************************
@router.get("", tags=["Companies"])
def list_companies(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    status_filter: Literal["all", "active", "inactive"] = Query("all", alias="status"),
    subscription_plan: str = "all",
    sort_by: Literal["name", "created_at", "city"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("company", "view")),
):
    """
    Lists companies.
    - SUPERADMIN: every company.
    - Everyone else: only their own.
    """
    query = db.query(Company)
    if current_user.role != Role.SUPERADMIN:
        query = query.filter(Company.id == current_user.company_id)

    search = search.strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Company.name.ilike(pattern),
            Company.email.ilike(pattern),
            Company.city.ilike(pattern),
            Company.state.ilike(pattern),
        ))
    if status_filter != "all":
        query = query.filter(Company.is_active.is_(status_filter == "active"))
    if subscription_plan != "all":
        try:
            query = query.filter(Company.subscription_plan == SubscriptionPlan(subscription_plan))
        except ValueError as e:
            raise BadRequest("Invalid subscription plan") from e

    column = SORT_FIELDS[sort_by]
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc())

    companies, pagination = paginate(query, page, limit)
    counts = company_counts(db, [c.id for c in companies])

    return {
        "success": True,
        "data": [
            {**CompanyInDB.model_validate(c).model_dump(mode="json"), **counts[c.id]}
            for c in companies
        ],
        "pagination": pagination,
    }


@router.get("/stats/overview", tags=["Companies"])
def company_stats(
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(authorize(Role.SUPERADMIN)),
):
    """Platform-wide company, branch and staff totals."""

    def totals(query, is_active):
        total = query.count()
        active = query.filter(is_active.is_(True)).count()
        return {"total": total, "active": active, "inactive": total - active}

    staff = db.query(Staff).filter(Staff.role != Role.SUPERADMIN)
    return {
        "success": True,
        "data": {
            "companies": totals(db.query(Company), Company.is_active),
            "branches": totals(db.query(Branch), Branch.is_active),
            "staff": totals(staff, Staff.is_active),
        },
    }


@router.get("/{company_id}", tags=["Companies"])
def read_company(
    company_id: str,
    db: Session = Depends(get_db),
    perm: CurrentUser = Depends(require_permission("company", "view")),
    current_user: CurrentUser = Depends(authorize_company()),
):
    company = get_company_or_404(db, company_id)
    data = CompanyInDB.model_validate(company).model_dump(mode="json")
    data.update(company_counts(db, [company.id])[company.id])
    return {"success": True, "data": data}


# ***************************************************************
# 3. Write
# ***************************************************************
@router.post("", status_code=status.HTTP_201_CREATED, tags=["Companies"])
def create_company(
    company_in: CompanyCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(require_permission("company", "create")),
):
    ensure_email_free(db, company_in.email)

    company = Company(**company_in.model_dump())
    db.add(company)
    db.commit()
    db.refresh(company)

    logger.info("Company created", extra={"context": {"company_id": company.id, "created_by": current_user.email}})
    return {
        "success": True,
        "message": "Company created successfully",
        "data": CompanyInDB.model_validate(company),
    }


@router.put("/{company_id}", tags=["Companies"])
def update_company(
    company_id: str,
    company_in: CompanyUpdate,
    db: Session = Depends(get_db),
    perm: CurrentUser = Depends(require_permission("company", "edit")),
    current_user: CurrentUser = Depends(authorize_company()),
):
    company = get_company_or_404(db, company_id)
    update_data = company_in.model_dump(exclude_unset=True)

    if update_data.get("email") and update_data["email"] != company.email:
        ensure_email_free(db, update_data["email"], exclude_id=company.id)

    for key, value in update_data.items():
        if value is None and key in ("name", "email", "subscription_plan"):
            continue
        setattr(company, key, value)

    db.commit()
    db.refresh(company)

    logger.info("Company updated", extra={"context": {"company_id": company.id, "updated_by": current_user.email}})
    return {
        "success": True,
        "message": "Company updated successfully",
        "data": CompanyInDB.model_validate(company),
    }


@router.patch("/{company_id}/activate", tags=["Companies"])
def activate_company(
    company_id: str,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(authorize(Role.SUPERADMIN)),
):
    company = get_company_or_404(db, company_id)
    company.is_active = True
    db.commit()
    db.refresh(company)

    logger.info("Company activated", extra={"context": {"company_id": company.id, "activated_by": admin.email}})
    return {
        "success": True,
        "message": "Company activated successfully",
        "data": CompanyInDB.model_validate(company),
    }


@router.patch("/{company_id}/deactivate", tags=["Companies"])
def deactivate_company(
    company_id: str,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(authorize(Role.SUPERADMIN)),
):
    """Deactivates the company together with all of its branches and staff."""
    company = get_company_or_404(db, company_id)
    company.is_active = False
    db.query(Branch).filter(Branch.company_id == company.id).update(
        {Branch.is_active: False}, synchronize_session=False
    )
    db.query(Staff).filter(Staff.company_id == company.id).update(
        {Staff.is_active: False}, synchronize_session=False
    )
    db.commit()
    db.refresh(company)

    logger.info("Company deactivated", extra={"context": {"company_id": company.id, "deactivated_by": admin.email}})
    return {
        "success": True,
        "message": "Company and all associated branches/staff deactivated successfully",
        "data": CompanyInDB.model_validate(company),
    }


@router.delete("/{company_id}", tags=["Companies"])
def delete_company(
    company_id: str,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(authorize(Role.SUPERADMIN)),
):
    """
    Soft-deletes a company (marks it inactive). Refused while it still has
    active branches or staff.
    """
    company = get_company_or_404(db, company_id)

    active_branches = db.query(Branch.id).filter(Branch.company_id == company.id, Branch.is_active.is_(True)).count()
    active_staff = db.query(Staff.id).filter(Staff.company_id == company.id, Staff.is_active.is_(True)).count()
    if active_branches or active_staff:
        raise BadRequest("Cannot delete company with active branches or staff. Please deactivate them first.")

    company.is_active = False
    db.commit()

    logger.info("Company deleted (deactivated)", extra={"context": {"company_id": company.id, "deleted_by": admin.email}})
    return {"success": True, "message": "Company deleted successfully"}
