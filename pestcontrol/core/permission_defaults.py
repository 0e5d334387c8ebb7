# pestcontrol/core/permission_defaults.py
"""
Default permission catalogue and the role -> permission decision table.

Every role has an entry in ``ROLE_PERMISSIONS``; SUPERADMIN is granted the
whole catalogue implicitly and is never looked up.
"""

from typing import Dict, FrozenSet, List, Tuple

from sqlalchemy.orm import Session

from pestcontrol.core.logger import get_logger
from pestcontrol.models.auth import Permission, Role, RolePermission

logger = get_logger("permissions")

# (module, action, description)
DEFAULT_PERMISSIONS: List[Tuple[str, str, str]] = [
    ("dashboard", "view", "View dashboard analytics and reports"),
    ("dashboard", "export", "Export dashboard data"),

    ("company", "view", "View company details"),
    ("company", "create", "Create new companies"),
    ("company", "edit", "Edit company details"),
    ("company", "delete", "Delete companies"),

    ("branch", "view", "View branch details"),
    ("branch", "create", "Create new branches"),
    ("branch", "edit", "Edit branch details"),
    ("branch", "delete", "Delete branches"),

    ("staff", "view", "View staff members"),
    ("staff", "create", "Create new staff members"),
    ("staff", "edit", "Edit staff details"),
    ("staff", "delete", "Delete staff members"),

    ("lead", "view", "View leads"),
    ("lead", "create", "Create new leads"),
    ("lead", "edit", "Edit lead details"),
    ("lead", "delete", "Delete leads"),
    ("lead", "assign", "Assign leads to staff"),
    ("lead", "export", "Export lead data"),

    ("reports", "view", "View reports"),
    ("reports", "export", "Export reports"),

    ("role", "view", "View roles and permissions"),
    ("role", "edit", "Edit role permissions"),
]

ALL_PERMISSIONS: FrozenSet[str] = frozenset(f"{m}.{a}" for m, a, _ in DEFAULT_PERMISSIONS)

ROLE_PERMISSIONS: Dict[Role, FrozenSet[str]] = {
    Role.SUPERADMIN: ALL_PERMISSIONS,
    Role.ADMIN: frozenset({
        "dashboard.view", "dashboard.export",
        "company.view", "company.edit",
        "branch.view", "branch.create", "branch.edit", "branch.delete",
        "staff.view", "staff.create", "staff.edit", "staff.delete",
        "lead.view", "lead.create", "lead.edit", "lead.delete", "lead.assign", "lead.export",
        "reports.view", "reports.export",
    }),
    Role.REGIONAL_MANAGER: frozenset({
        "dashboard.view", "dashboard.export",
        "company.view",
        "branch.view",
        "staff.view", "staff.create", "staff.edit",
        "lead.view", "lead.create", "lead.edit", "lead.assign", "lead.export",
        "reports.view", "reports.export",
    }),
    Role.AREA_MANAGER: frozenset({
        "dashboard.view",
        "company.view",
        "branch.view",
        "staff.view",
        "lead.view", "lead.create", "lead.edit", "lead.assign",
        "reports.view", "reports.export",
    }),
    Role.TECHNICIAN: frozenset({
        "dashboard.view",
        "lead.view", "lead.edit",
        "reports.view",
    }),
}


def seed_permissions(db: Session) -> int:
    """
    Installs the default catalogue and role bindings. Existing rows are
    left in place, so edits made through the API survive a re-seed.
    Returns the number of role bindings created.
    """
    by_name = {p.name: p for p in db.query(Permission).all()}
    for module, action, description in DEFAULT_PERMISSIONS:
        name = f"{module}.{action}"
        if name not in by_name:
            permission = Permission(name=name, module=module, action=action, description=description)
            db.add(permission)
            by_name[name] = permission
    db.flush()

    existing = {(rp.role, rp.permission_id) for rp in db.query(RolePermission).all()}
    created = 0
    for role, names in ROLE_PERMISSIONS.items():
        if role == Role.SUPERADMIN:
            continue
        for name in sorted(names):
            permission_id = by_name[name].id
            if (role, permission_id) not in existing:
                db.add(RolePermission(role=role, permission_id=permission_id))
                created += 1
    db.commit()

    logger.info("Permissions seeded", extra={"context": {"role_bindings_created": created}})
    return created


def permissions_for_role(db: Session, role: Role) -> List[Permission]:
    """Permissions bound to ``role``; SUPERADMIN gets the whole catalogue."""
    query = db.query(Permission)
    if Role(role) != Role.SUPERADMIN:
        query = query.join(RolePermission).filter(RolePermission.role == Role(role))
    return query.order_by(Permission.module, Permission.action).all()


def has_permission(db: Session, role: Role, module: str, action: str) -> bool:
    if Role(role) == Role.SUPERADMIN:
        return True
    return bool(db.query(
        db.query(RolePermission)
        .join(Permission)
        .filter(
            RolePermission.role == Role(role),
            Permission.module == module.lower(),
            Permission.action == action.lower(),
        )
        .exists()
    ).scalar())
