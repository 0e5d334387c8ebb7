# pestcontrol/api/v1/endpoints/branches.py
# type: ignore

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from pestcontrol.api.v1.dependencies import authorize, authorize_branch, authorize_company, get_current_user
from pestcontrol.core.errors import BadRequest, Conflict, NotFound
from pestcontrol.core.logger import get_logger
from pestcontrol.database import get_db
from pestcontrol.models.auth import Role, Staff
from pestcontrol.models.platform import Branch, BranchType, Company
from pestcontrol.schemas.auth import CurrentUser
from pestcontrol.schemas.platform import BranchCreate, BranchInDB, BranchOption, BranchUpdate, paginate

logger = get_logger("branches")

# Signup forms list branches before anyone is logged in
public_router = APIRouter()

# Everything else is for SUPERADMIN / company ADMIN only
router = APIRouter(dependencies=[Depends(authorize(Role.SUPERADMIN, Role.ADMIN))])

SORT_FIELDS = {
    "name": Branch.name,
    "city": Branch.city,
    "created_at": Branch.created_at,
}


def get_branch_or_404(db: Session, branch_id: str) -> Branch:
    branch = db.query(Branch).filter(Branch.id == branch_id).first()
    if not branch:
        raise NotFound("Branch not found")
    return branch


def ensure_name_free(db: Session, company_id: str, name: str, exclude_id: Optional[str] = None) -> None:
    query = db.query(Branch.id).filter(Branch.company_id == company_id, Branch.name == name)
    if exclude_id:
        query = query.filter(Branch.id != exclude_id)
    if query.first():
        raise Conflict("Branch with this name already exists for the company")


def ensure_single_main_branch(db: Session, company_id: str, exclude_id: Optional[str] = None) -> None:
    """At most one MAIN_BRANCH per company."""
    query = db.query(Branch.id).filter(
        Branch.company_id == company_id,
        Branch.branch_type == BranchType.MAIN_BRANCH,
    )
    if exclude_id:
        query = query.filter(Branch.id != exclude_id)
    if query.first():
        raise Conflict("A main branch already exists for this company. Only one main branch is allowed per company.")


def staff_counts(db: Session, branch_ids):
    rows = (
        db.query(Staff.branch_id, func.count(Staff.id))
        .filter(Staff.branch_id.in_(branch_ids), Staff.is_active.is_(True))
        .group_by(Staff.branch_id)
        .all()
    )
    counts = dict.fromkeys(branch_ids, 0)
    counts.update(dict(rows))
    return counts


def branch_data(branch: Branch, staff_count: int) -> dict:
    return {**BranchInDB.model_validate(branch).model_dump(mode="json"), "active_staff": staff_count}


# ***************************************************************
# 1. Public
# ***************************************************************
@public_router.get("/by-company/{company_id}/public", tags=["Branches"])
def list_public_branches(company_id: str, db: Session = Depends(get_db)):
    """Active branches of an active company, for the signup form."""
    company = db.query(Company).filter(Company.id == company_id, Company.is_active.is_(True)).first()
    if not company:
        raise NotFound("Active company not found")

    branches = (
        db.query(Branch)
        .filter(Branch.company_id == company.id, Branch.is_active.is_(True))
        .order_by(Branch.branch_type, Branch.name)
        .all()
    )
    return {"success": True, "data": [BranchOption.model_validate(b) for b in branches]}


# ***************************************************************
# 2. Read
# ***************************************************************
@router.get("", tags=["Branches"])
def list_branches(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    status_filter: Literal["all", "active", "inactive"] = Query("all", alias="status"),
    branch_type: Optional[BranchType] = None,
    company_id: Optional[str] = None,
    sort_by: Literal["name", "city", "created_at"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Lists branches; a company ADMIN only ever sees their own company's."""
    query = db.query(Branch)

    if current_user.role != Role.SUPERADMIN:
        query = query.filter(Branch.company_id == current_user.company_id)
    elif company_id:
        query = query.filter(Branch.company_id == company_id)

    search = search.strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            Branch.name.ilike(pattern),
            Branch.city.ilike(pattern),
            Branch.state.ilike(pattern),
            Branch.address.ilike(pattern),
        ))
    if status_filter != "all":
        query = query.filter(Branch.is_active.is_(status_filter == "active"))
    if branch_type is not None:
        query = query.filter(Branch.branch_type == branch_type)

    column = SORT_FIELDS[sort_by]
    query = query.order_by(column.asc() if sort_order == "asc" else column.desc())

    branches, pagination = paginate(query, page, limit)
    counts = staff_counts(db, [b.id for b in branches])
    return {
        "success": True,
        "data": [branch_data(b, counts[b.id]) for b in branches],
        "pagination": pagination,
    }


@router.get("/stats/overview", tags=["Branches"])
def branch_stats(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    query = db.query(Branch)
    if current_user.role != Role.SUPERADMIN:
        query = query.filter(Branch.company_id == current_user.company_id)

    total = query.count()
    active = query.filter(Branch.is_active.is_(True)).count()
    main = query.filter(Branch.branch_type == BranchType.MAIN_BRANCH).count()
    return {
        "success": True,
        "data": {"total": total, "active": active, "inactive": total - active, "main_branches": main},
    }


@router.get("/active", tags=["Branches"])
def list_active_branches(
    company_id: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Active branches of active companies, for dropdowns."""
    query = (
        db.query(Branch)
        .join(Company, Branch.company_id == Company.id)
        .filter(Branch.is_active.is_(True), Company.is_active.is_(True))
    )
    if current_user.role != Role.SUPERADMIN:
        query = query.filter(Branch.company_id == current_user.company_id)
    elif company_id:
        query = query.filter(Branch.company_id == company_id)

    branches = query.order_by(Branch.name).all()
    return {"success": True, "data": [BranchOption.model_validate(b) for b in branches]}


@router.get("/my-company", tags=["Branches"])
def list_my_company_branches(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    if current_user.company_id is None:
        raise NotFound("User company not found")

    branches = (
        db.query(Branch)
        .filter(Branch.company_id == current_user.company_id, Branch.is_active.is_(True))
        .order_by(Branch.name)
        .all()
    )
    return {"success": True, "data": [BranchOption.model_validate(b) for b in branches]}


@router.get("/by-company/{company_id}", tags=["Branches"])
def list_company_branches(
    company_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize_company()),
):
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        raise NotFound("Company not found")

    branches = db.query(Branch).filter(Branch.company_id == company.id).order_by(Branch.name).all()
    counts = staff_counts(db, [b.id for b in branches])
    return {"success": True, "data": [branch_data(b, counts[b.id]) for b in branches]}


@router.get("/{branch_id}", tags=["Branches"])
def read_branch(
    branch_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize_branch()),
):
    branch = get_branch_or_404(db, branch_id)
    return {"success": True, "data": branch_data(branch, staff_counts(db, [branch.id])[branch.id])}


# ***************************************************************
# 3. Write
# ***************************************************************
@router.post("", status_code=status.HTTP_201_CREATED, tags=["Branches"])
def create_branch(
    branch_in: BranchCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize_company()),
):
    company = db.query(Company).filter(Company.id == branch_in.company_id).first()
    if not company:
        raise NotFound("Company not found")
    if not company.is_active:
        raise BadRequest("Cannot create branch for inactive company")

    ensure_name_free(db, company.id, branch_in.name)
    if branch_in.branch_type == BranchType.MAIN_BRANCH:
        ensure_single_main_branch(db, company.id)

    branch = Branch(**branch_in.model_dump())
    db.add(branch)
    db.commit()
    db.refresh(branch)

    logger.info("Branch created", extra={"context": {"branch_id": branch.id, "company_id": company.id, "created_by": current_user.id}})
    return {
        "success": True,
        "message": "Branch created successfully",
        "data": BranchInDB.model_validate(branch),
    }


@router.put("/{branch_id}", tags=["Branches"])
def update_branch(
    branch_id: str,
    branch_in: BranchUpdate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize_branch()),
):
    branch = get_branch_or_404(db, branch_id)
    update_data = {k: v for k, v in branch_in.model_dump(exclude_unset=True).items() if v is not None or k in ("phone", "email")}

    if "name" in update_data and update_data["name"] != branch.name:
        ensure_name_free(db, branch.company_id, update_data["name"], exclude_id=branch.id)
    if update_data.get("branch_type") == BranchType.MAIN_BRANCH and branch.branch_type != BranchType.MAIN_BRANCH:
        ensure_single_main_branch(db, branch.company_id, exclude_id=branch.id)

    for key, value in update_data.items():
        setattr(branch, key, value)
    db.commit()
    db.refresh(branch)

    logger.info("Branch updated", extra={"context": {"branch_id": branch.id, "updated_by": current_user.id}})
    return {
        "success": True,
        "message": "Branch updated successfully",
        "data": BranchInDB.model_validate(branch),
    }


@router.patch("/{branch_id}/activate", tags=["Branches"])
def activate_branch(
    branch_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize_branch()),
):
    branch = get_branch_or_404(db, branch_id)
    if not branch.company.is_active:
        raise BadRequest("Cannot activate branch of inactive company")

    branch.is_active = True
    db.commit()
    db.refresh(branch)

    logger.info("Branch activated", extra={"context": {"branch_id": branch.id, "activated_by": current_user.id}})
    return {
        "success": True,
        "message": "Branch activated successfully",
        "data": BranchInDB.model_validate(branch),
    }


@router.patch("/{branch_id}/deactivate", tags=["Branches"])
def deactivate_branch(
    branch_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize_branch()),
):
    """Deactivates the branch and every staff member assigned to it."""
    branch = get_branch_or_404(db, branch_id)
    branch.is_active = False
    db.query(Staff).filter(Staff.branch_id == branch.id).update(
        {Staff.is_active: False}, synchronize_session=False
    )
    db.commit()
    db.refresh(branch)

    logger.info("Branch deactivated", extra={"context": {"branch_id": branch.id, "deactivated_by": current_user.id}})
    return {
        "success": True,
        "message": "Branch and all associated staff deactivated successfully",
        "data": BranchInDB.model_validate(branch),
    }


@router.delete("/{branch_id}", tags=["Branches"])
def delete_branch(
    branch_id: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize_branch()),
):
    """Soft-deletes a branch. Refused while it still has active staff."""
    branch = get_branch_or_404(db, branch_id)

    active_staff = db.query(Staff.id).filter(Staff.branch_id == branch.id, Staff.is_active.is_(True)).count()
    if active_staff:
        raise BadRequest("Cannot delete branch with active staff. Please deactivate them first.")

    branch.is_active = False
    db.commit()

    logger.info("Branch deleted (deactivated)", extra={"context": {"branch_id": branch.id, "deleted_by": current_user.id}})
    return {"success": True, "message": "Branch deleted successfully"}
