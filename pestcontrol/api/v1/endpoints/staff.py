# pestcontrol/api/v1/endpoints/staff.py
# type: ignore

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from pestcontrol.api.v1.dependencies import authorize, authorize_company, ensure_company_access, get_current_user
from pestcontrol.core.email import EmailDeliveryError, send_welcome_email
from pestcontrol.core.errors import BadRequest, Conflict, Forbidden, NotFound
from pestcontrol.core.logger import get_logger, log_security_event, request_context
from pestcontrol.core.rate_limit import sensitive_op_limiter
from pestcontrol.core.security import get_password_hash, validate_password_strength, verify_password
from pestcontrol.database import get_db
from pestcontrol.models.auth import MANAGER_ROLES, STAFF_ROLES, Role, Staff
from pestcontrol.models.platform import Branch, Company
from pestcontrol.schemas.auth import (
    AdminChangePasswordRequest,
    ChangePasswordRequest,
    CurrentUser,
    StaffCreate,
    StaffInDB,
    StaffUpdate,
)
from pestcontrol.schemas.platform import BranchOption, paginate

logger = get_logger("staff")

router = APIRouter()

admin_password_limiter = sensitive_op_limiter(max_attempts=5, window_seconds=15 * 60)

SELF_EDITABLE_FIELDS = ("name", "mobile")


# ***************************************************************
# Helpers
# ***************************************************************
def assignable_roles(role: Role):
    """Roles a caller may give to the staff they create or edit."""
    if role in (Role.SUPERADMIN, Role.ADMIN):
        return STAFF_ROLES
    if role == Role.REGIONAL_MANAGER:
        return (Role.REGIONAL_MANAGER, Role.AREA_MANAGER, Role.TECHNICIAN)
    return ()


def get_staff_or_404(db: Session, staff_id: str) -> Staff:
    staff = (
        db.query(Staff)
        .options(joinedload(Staff.company), joinedload(Staff.branch))
        .filter(Staff.id == staff_id)
        .first()
    )
    if not staff:
        raise NotFound("Staff member not found")
    return staff


def ensure_staff_access(current_user: CurrentUser, staff: Staff, request: Request) -> None:
    """
    Self, or a manager inside the same tenant. AREA_MANAGERs are limited to
    their own branch; TECHNICIANs only ever reach themselves.
    """
    if current_user.id == staff.id or current_user.role == Role.SUPERADMIN:
        return

    ensure_company_access(current_user, staff.company_id, request)

    if current_user.role in MANAGER_ROLES:
        return
    if current_user.role == Role.AREA_MANAGER and staff.branch_id is not None \
            and staff.branch_id == current_user.branch_id:
        return

    log_security_event(
        "Unauthorized staff access attempt",
        user_id=current_user.id,
        user_role=current_user.role.value,
        target_staff_id=staff.id,
        **request_context(request),
    )
    raise Forbidden("Access denied")


def ensure_manages(current_user: CurrentUser, staff: Staff) -> None:
    """Nobody but SUPERADMIN acts on a staff member who outranks them."""
    if current_user.role != Role.SUPERADMIN and staff.role.outranks(current_user.role):
        raise Forbidden("You cannot manage staff with a higher role than yours")


def ensure_branch_in_company(db: Session, branch_id: str, company_id: str, message: str) -> Branch:
    branch = (
        db.query(Branch)
        .filter(Branch.id == branch_id, Branch.company_id == company_id, Branch.is_active.is_(True))
        .first()
    )
    if not branch:
        raise BadRequest(message)
    return branch


def ensure_contact_free(db: Session, email: Optional[str], mobile: Optional[str], exclude_id: Optional[str] = None) -> None:
    for column, value, message in (
        (Staff.email, email, "Email already registered"),
        (Staff.mobile, mobile, "Mobile number already registered"),
    ):
        if value is None:
            continue
        query = db.query(Staff.id).filter(column == value)
        if exclude_id:
            query = query.filter(Staff.id != exclude_id)
        if query.first():
            raise Conflict(message)


def check_new_password(password: str, message: str = "Password does not meet security requirements") -> None:
    errors = validate_password_strength(password)
    if errors:
        raise BadRequest(message, details={"errors": errors})


# ***************************************************************
# 1. Read
# ***************************************************************
@router.get("", tags=["Staff"])
def list_staff(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: Optional[Role] = None,
    is_active: Optional[bool] = None,
    branch_id: Optional[str] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(
        authorize(Role.SUPERADMIN, Role.ADMIN, Role.REGIONAL_MANAGER, Role.AREA_MANAGER)
    ),
):
    """
    Lists staff within the caller's company (SUPERADMIN: every company).
    AREA_MANAGERs only see their own branch.
    """
    query = db.query(Staff).options(joinedload(Staff.branch))

    if current_user.role != Role.SUPERADMIN:
        query = query.filter(Staff.company_id == current_user.company_id)
    if current_user.role == Role.AREA_MANAGER:
        query = query.filter(Staff.branch_id == current_user.branch_id)

    if role is not None:
        query = query.filter(Staff.role == role)
    if is_active is not None:
        query = query.filter(Staff.is_active.is_(is_active))
    if branch_id:
        query = query.filter(Staff.branch_id == branch_id)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Staff.name.ilike(pattern),
            Staff.email.ilike(pattern),
            Staff.mobile.ilike(pattern),
        ))

    staff, pagination = paginate(query.order_by(Staff.created_at.desc()), page, limit)
    return {
        "success": True,
        "data": [StaffInDB.model_validate(s) for s in staff],
        "pagination": pagination,
    }


@router.get("/stats/dashboard", tags=["Staff"])
def staff_stats(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(
        authorize(Role.SUPERADMIN, Role.ADMIN, Role.REGIONAL_MANAGER, Role.AREA_MANAGER)
    ),
):
    query = db.query(Staff).filter(Staff.role != Role.SUPERADMIN)
    if current_user.role != Role.SUPERADMIN:
        query = query.filter(Staff.company_id == current_user.company_id)
    if current_user.role == Role.AREA_MANAGER:
        query = query.filter(Staff.branch_id == current_user.branch_id)

    total = query.count()
    active_query = query.filter(Staff.is_active.is_(True))
    active = active_query.count()

    role_rows = (
        active_query.with_entities(Staff.role, func.count(Staff.id))
        .group_by(Staff.role)
        .all()
    )
    stats = {
        "total_staff": total,
        "active_staff": active,
        "inactive_staff": total - active,
        "role_breakdown": {role.value: count for role, count in role_rows},
    }

    if current_user.role != Role.AREA_MANAGER:
        branch_rows = (
            active_query.with_entities(Staff.branch_id, func.count(Staff.id))
            .group_by(Staff.branch_id)
            .all()
        )
        stats["branch_breakdown"] = {branch_id or "unassigned": count for branch_id, count in branch_rows}

    return {"success": True, "data": stats}


@router.get("/list", tags=["Staff"])
def list_active_staff(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = "",
    role: Optional[Role] = None,
    branch_id: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize(Role.SUPERADMIN, Role.ADMIN)),
):
    """Active staff for assignment pickers; ADMINs see their own company."""
    query = (
        db.query(Staff)
        .options(joinedload(Staff.company), joinedload(Staff.branch))
        .filter(Staff.is_active.is_(True))
    )
    if current_user.role != Role.SUPERADMIN:
        query = query.filter(Staff.company_id == current_user.company_id)

    search = search.strip()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Staff.name.ilike(pattern), Staff.email.ilike(pattern)))
    if role is not None:
        query = query.filter(Staff.role == role)
    if branch_id:
        query = query.filter(Staff.branch_id == branch_id)

    staff, pagination = paginate(query.order_by(Staff.created_at.desc()), page, limit)
    return {
        "success": True,
        "data": [StaffInDB.model_validate(s) for s in staff],
        "pagination": pagination,
    }


@router.get("/branches", tags=["Staff"])
def list_assignable_branches(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize(Role.SUPERADMIN, Role.ADMIN)),
):
    """Branches staff can be assigned to."""
    query = db.query(Branch)
    if current_user.role != Role.SUPERADMIN:
        query = query.filter(Branch.company_id == current_user.company_id)
    branches = query.order_by(Branch.name).all()
    return {"success": True, "data": [BranchOption.model_validate(b) for b in branches]}


@router.get("/{staff_id}", tags=["Staff"])
def read_staff(
    staff_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    staff = get_staff_or_404(db, staff_id)
    ensure_staff_access(current_user, staff, request)
    return {"success": True, "data": StaffInDB.model_validate(staff)}


# ***************************************************************
# 2. Create / update
# ***************************************************************
@router.post("", status_code=status.HTTP_201_CREATED, tags=["Staff"])
def create_staff(
    staff_in: StaffCreate,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize(Role.SUPERADMIN, Role.ADMIN, Role.REGIONAL_MANAGER)),
    scoped: CurrentUser = Depends(authorize_company()),
):
    """Creates a staff member inside the caller's company."""
    if staff_in.role not in assignable_roles(current_user.role):
        raise Forbidden(f"You cannot create staff with role {staff_in.role.value}")

    check_new_password(staff_in.password)
    ensure_contact_free(db, staff_in.email, staff_in.mobile)

    company = db.query(Company).filter(Company.id == staff_in.company_id, Company.is_active.is_(True)).first()
    if not company:
        raise BadRequest("Invalid company selected")
    if staff_in.branch_id:
        ensure_branch_in_company(
            db, staff_in.branch_id, company.id,
            "Invalid branch selected or branch does not belong to the specified company",
        )

    staff = Staff(
        name=staff_in.name,
        email=staff_in.email,
        mobile=staff_in.mobile,
        role=staff_in.role,
        password_hash=get_password_hash(staff_in.password),
        company_id=company.id,
        branch_id=staff_in.branch_id,
        is_active=True,
    )
    db.add(staff)
    db.commit()
    staff = get_staff_or_404(db, staff.id)

    try:
        send_welcome_email(staff.email, staff.name, staff.role.value)
    except EmailDeliveryError as e:
        logger.error("Failed to send welcome email", extra={"context": {"email": staff.email, "error": str(e)}})

    logger.info("Staff member created", extra={"context": {"staff_id": staff.id, "created_by": current_user.id}})
    return {
        "success": True,
        "message": "Staff member created successfully",
        "data": StaffInDB.model_validate(staff),
    }


@router.put("/{staff_id}", tags=["Staff"])
def update_staff(
    staff_id: str,
    staff_in: StaffUpdate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    staff = get_staff_or_404(db, staff_id)
    ensure_staff_access(current_user, staff, request)

    update_data = staff_in.model_dump(exclude_unset=True)
    is_self = current_user.id == staff.id

    if is_self and current_user.role not in MANAGER_ROLES:
        restricted = [field for field in update_data if field not in SELF_EDITABLE_FIELDS]
        if restricted:
            raise Forbidden(f"You can only update: {', '.join(SELF_EDITABLE_FIELDS)}")
    elif not is_self:
        ensure_manages(current_user, staff)

    if "role" in update_data and update_data["role"] != staff.role:
        if update_data["role"] is None or update_data["role"] not in assignable_roles(current_user.role):
            raise Forbidden("Insufficient permissions to assign this role")

    if update_data.get("is_active") is False and is_self:
        raise BadRequest("You cannot deactivate your own account")

    ensure_contact_free(db, update_data.get("email"), update_data.get("mobile"), exclude_id=staff.id)

    if update_data.get("branch_id"):
        ensure_branch_in_company(db, update_data["branch_id"], staff.company_id, "Invalid branch selected")

    for key, value in update_data.items():
        if value is None and key in ("name", "email", "mobile", "role", "is_active"):
            continue
        setattr(staff, key, value)
    db.commit()
    staff = get_staff_or_404(db, staff.id)

    logger.info("Staff member updated", extra={"context": {"staff_id": staff.id, "updated_by": current_user.id}})
    return {
        "success": True,
        "message": "Staff member updated successfully",
        "data": StaffInDB.model_validate(staff),
    }


# ***************************************************************
# 3. Activation
# ***************************************************************
@router.delete("/{staff_id}", tags=["Staff"])
def delete_staff(
    staff_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize(Role.SUPERADMIN, Role.ADMIN, Role.REGIONAL_MANAGER)),
):
    """Soft delete: the account is deactivated, never removed."""
    if staff_id == current_user.id:
        raise BadRequest("You cannot delete your own account")

    staff = get_staff_or_404(db, staff_id)
    ensure_staff_access(current_user, staff, request)
    ensure_manages(current_user, staff)

    staff.is_active = False
    db.commit()

    logger.info("Staff member deactivated", extra={"context": {"staff_id": staff.id, "deactivated_by": current_user.id}})
    return {"success": True, "message": "Staff member deactivated successfully"}


@router.post("/{staff_id}/activate", tags=["Staff"])
def activate_staff(
    staff_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize(Role.SUPERADMIN, Role.ADMIN, Role.REGIONAL_MANAGER)),
):
    staff = get_staff_or_404(db, staff_id)
    ensure_staff_access(current_user, staff, request)
    ensure_manages(current_user, staff)

    staff.is_active = True
    db.commit()
    staff = get_staff_or_404(db, staff.id)

    logger.info("Staff member activated", extra={"context": {"staff_id": staff.id, "activated_by": current_user.id}})
    return {
        "success": True,
        "message": "Staff member activated successfully",
        "data": StaffInDB.model_validate(staff),
    }


# ***************************************************************
# 4. Passwords
# ***************************************************************
@router.post("/change-password", tags=["Staff"])
def change_password(
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    staff = db.query(Staff).filter(Staff.id == current_user.id).first()
    if not staff:
        raise NotFound("User not found")

    if not verify_password(payload.current_password, staff.password_hash):
        raise BadRequest("Current password is incorrect")

    check_new_password(payload.new_password, "New password does not meet security requirements")

    if verify_password(payload.new_password, staff.password_hash):
        raise BadRequest("New password must be different from current password")

    staff.password_hash = get_password_hash(payload.new_password)
    db.commit()

    logger.info("Password changed", extra={"context": {"staff_id": staff.id}})
    return {"success": True, "message": "Password changed successfully"}


@router.put("/admin/change-password", tags=["Staff"])
def admin_change_password(
    payload: AdminChangePasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(authorize(Role.SUPERADMIN, Role.ADMIN)),
    _limit: None = Depends(admin_password_limiter),
):
    """Sets another staff member's password (SUPERADMIN, or ADMIN within their company)."""
    staff = db.query(Staff).filter(Staff.id == payload.staff_id).first()
    if not staff:
        raise NotFound("Staff member not found")

    if current_user.role == Role.ADMIN and staff.company_id != current_user.company_id:
        log_security_event(
            "Cross-company password change attempt",
            user_id=current_user.id,
            target_staff_id=staff.id,
            **request_context(request),
        )
        raise Forbidden("You can only manage staff from your company")

    if staff.role == Role.SUPERADMIN:
        raise Forbidden("You cannot change superadmin password")

    check_new_password(payload.new_password)

    staff.password_hash = get_password_hash(payload.new_password)
    db.commit()

    logger.info(
        "Password changed by administrator",
        extra={"context": {"staff_id": staff.id, "changed_by": current_user.id}},
    )
    return {"success": True, "message": "Password changed successfully"}
