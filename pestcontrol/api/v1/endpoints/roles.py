# pestcontrol/api/v1/endpoints/roles.py
# type: ignore

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session, joinedload

from pestcontrol.api.v1.dependencies import authorize, get_current_user
from pestcontrol.core.errors import BadRequest, Conflict, NotFound
from pestcontrol.core.logger import get_logger
from pestcontrol.core.permission_defaults import has_permission, permissions_for_role, seed_permissions
from pestcontrol.database import get_db
from pestcontrol.models.auth import Permission, Role, RolePermission
from pestcontrol.schemas.auth import (
    CurrentUser,
    PermissionCreate,
    PermissionInDB,
    RolePermissionAssign,
    RolePermissionInDB,
)

logger = get_logger("roles")

router = APIRouter()

superadmin_only = authorize(Role.SUPERADMIN)


def parse_role(value: str) -> Role:
    try:
        return Role(value.upper())
    except ValueError as e:
        raise BadRequest("Invalid role specified") from e


# ***************************************************************
# 1. Roles
# ***************************************************************
@router.get("", tags=["Roles"])
def list_roles(_: CurrentUser = Depends(get_current_user)):
    """Every role, highest privilege first."""
    return {
        "success": True,
        "data": [{"name": role.value, "rank": role.rank} for role in Role],
    }


# ***************************************************************
# 2. Permission catalogue
# ***************************************************************
@router.get("/permissions", tags=["Roles"])
def list_permissions(
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(superadmin_only),
):
    permissions = db.query(Permission).order_by(Permission.module, Permission.action).all()
    return {"success": True, "data": [PermissionInDB.model_validate(p) for p in permissions]}


@router.post("/permissions", status_code=status.HTTP_201_CREATED, tags=["Roles"])
def create_permission(
    permission_in: PermissionCreate,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(superadmin_only),
):
    exists = (
        db.query(Permission.id)
        .filter(Permission.module == permission_in.module, Permission.action == permission_in.action)
        .first()
    )
    if exists:
        raise Conflict("Permission already exists")

    permission = Permission(
        name=f"{permission_in.module}.{permission_in.action}",
        module=permission_in.module,
        action=permission_in.action,
        description=permission_in.description,
    )
    db.add(permission)
    db.commit()
    db.refresh(permission)

    logger.info("Permission created", extra={"context": {"permission": permission.name, "created_by": admin.id}})
    return {
        "success": True,
        "message": "Permission created successfully",
        "data": PermissionInDB.model_validate(permission),
    }


@router.post("/permissions/seed", tags=["Roles"])
def seed_default_permissions(
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(superadmin_only),
):
    """Re-installs any missing default permissions and role bindings."""
    created = seed_permissions(db)
    return {"success": True, "message": "Default permissions seeded", "data": {"role_bindings_created": created}}


# ***************************************************************
# 3. Role -> permission bindings
# ***************************************************************
@router.get("/role-permissions/{role}", tags=["Roles"])
def read_role_permissions(
    role: str,
    db: Session = Depends(get_db),
    _: CurrentUser = Depends(superadmin_only),
):
    role = parse_role(role)
    bindings = (
        db.query(RolePermission)
        .options(joinedload(RolePermission.permission))
        .filter(RolePermission.role == role)
        .all()
    )
    return {
        "success": True,
        "data": {
            "role": role.value,
            "permissions": [RolePermissionInDB.model_validate(b) for b in bindings],
        },
    }


@router.post("/role-permissions", tags=["Roles"])
def assign_role_permissions(
    payload: RolePermissionAssign,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(superadmin_only),
):
    """Replaces the role's permission set with ``permission_ids``."""
    if payload.role == Role.SUPERADMIN:
        raise BadRequest("SUPERADMIN permissions cannot be changed")

    permission_ids = set(payload.permission_ids)
    found = db.query(Permission.id).filter(Permission.id.in_(permission_ids)).count()
    if found != len(permission_ids):
        raise BadRequest("One or more permission IDs are invalid")

    db.query(RolePermission).filter(RolePermission.role == payload.role).delete(synchronize_session=False)
    for permission_id in sorted(permission_ids):
        db.add(RolePermission(role=payload.role, permission_id=permission_id))
    db.commit()

    bindings = (
        db.query(RolePermission)
        .options(joinedload(RolePermission.permission))
        .filter(RolePermission.role == payload.role)
        .all()
    )
    logger.info(
        "Role permissions updated",
        extra={"context": {"role": payload.role.value, "count": len(bindings), "updated_by": admin.id}},
    )
    return {
        "success": True,
        "message": "Role permissions updated successfully",
        "data": [RolePermissionInDB.model_validate(b) for b in bindings],
    }


@router.delete("/role-permissions/{role}/{permission_id}", tags=["Roles"])
def remove_role_permission(
    role: str,
    permission_id: str,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(superadmin_only),
):
    role = parse_role(role)
    binding = (
        db.query(RolePermission)
        .filter(RolePermission.role == role, RolePermission.permission_id == permission_id)
        .first()
    )
    if not binding:
        raise NotFound("Role permission not found")

    db.delete(binding)
    db.commit()

    logger.info(
        "Permission removed from role",
        extra={"context": {"role": role.value, "permission_id": permission_id, "removed_by": admin.id}},
    )
    return {"success": True, "message": "Permission removed from role successfully"}


# ***************************************************************
# 4. Caller's own permissions
# ***************************************************************
@router.get("/user-permissions", tags=["Roles"])
def read_user_permissions(
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    permissions = permissions_for_role(db, current_user.role)
    return {
        "success": True,
        "data": {
            "role": current_user.role.value,
            "permissions": [PermissionInDB.model_validate(p) for p in permissions],
        },
    }


@router.get("/check-permission", tags=["Roles"])
def check_permission(
    module: str = Query(..., min_length=1),
    action: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    allowed = has_permission(db, current_user.role, module, action)
    return {
        "success": True,
        "data": {"module": module, "action": action, "has_permission": allowed},
    }
