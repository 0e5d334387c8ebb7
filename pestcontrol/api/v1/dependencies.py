# pestcontrol/api/v1/dependencies.py
# type: ignore
"""
Request gates shared by every router.

``get_current_user`` authenticates the caller; the factories below build
authorization dependencies on top of it:

    @router.get("/{branch_id}")
    def read_branch(user: CurrentUser = Depends(authorize_branch())): ...

Each gate either returns the current user (or a policy object) or raises
an ``AppError``; every refusal is logged as a security event first.
"""

import enum
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from sqlalchemy import false
from sqlalchemy.orm import Query, Session, joinedload

from pestcontrol.core.config import settings
from pestcontrol.core.errors import BadRequest, Forbidden, NotFound, TokenExpired, TokenInvalid, Unauthenticated
from pestcontrol.core.logger import log_security_event, request_context
from pestcontrol.core.permission_defaults import has_permission
from pestcontrol.core.security import verify_token
from pestcontrol.database import get_db
from pestcontrol.models.auth import Role, Staff
from pestcontrol.models.platform import Branch
from pestcontrol.schemas.auth import CurrentUser


# ***************************************************************
# 1. Authentication
# ***************************************************************

def extract_token(request: Request) -> Optional[str]:
    """Session cookie first, then an ``Authorization: Bearer`` header."""
    token = request.cookies.get(settings.COOKIE_NAME)
    if token:
        return token
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def get_current_user(request: Request, db: Session = Depends(get_db)) -> CurrentUser:
    """Resolves the caller from its token and stores it on ``request.state.user``."""
    token = extract_token(request)
    if not token:
        log_security_event("Missing authentication token", **request_context(request))
        raise Unauthenticated("Access denied. No token provided.")

    try:
        payload = verify_token(token)
    except TokenExpired as e:
        log_security_event("Invalid authentication token", error="expired", **request_context(request))
        raise TokenExpired("Your token has expired. Please log in again.") from e
    except TokenInvalid as e:
        log_security_event("Invalid authentication token", error="invalid", **request_context(request))
        raise TokenInvalid("Invalid token. Please log in again.") from e

    user_id = payload.get("id")
    staff = None
    if isinstance(user_id, str):
        staff = (
            db.query(Staff)
            .options(joinedload(Staff.branch))
            .filter(Staff.id == user_id)
            .first()
        )

    if staff is None:
        log_security_event("Token for non-existent user", user_id=user_id, **request_context(request))
        raise Unauthenticated("The user belonging to this token no longer exists.")

    if not staff.is_active:
        log_security_event("Inactive user access attempt", user_id=staff.id, **request_context(request))
        raise Unauthenticated("Your account has been deactivated. Please contact administrator.")

    user = CurrentUser.model_validate(staff)
    request.state.user = user
    return user


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[CurrentUser]:
    """Like ``get_current_user`` but returns None instead of failing."""
    if not extract_token(request):
        return None
    try:
        return get_current_user(request, db)
    except Unauthenticated:
        return None


# ***************************************************************
# 2. Role gate
# ***************************************************************

def authorize(*roles):
    """Allows only the given roles through."""
    allowed = frozenset(Role(role) for role in roles)

    def role_gate(request: Request, current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in allowed:
            log_security_event(
                "Unauthorized access attempt",
                user_id=current_user.id,
                user_role=current_user.role.value,
                required_roles=sorted(role.value for role in allowed),
                **request_context(request),
            )
            raise Forbidden("Access denied. Insufficient permissions.")
        return current_user

    return role_gate


# ***************************************************************
# 3. Tenant scope (company / branch)
# ***************************************************************

async def json_body(request: Request) -> Dict[str, Any]:
    """The request body when it is a JSON object, else an empty dict."""
    if request.method in ("GET", "HEAD", "DELETE", "OPTIONS"):
        return {}
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


def scope_target(request: Request, body: Dict[str, Any], name: str) -> Optional[str]:
    """First non-empty ``name`` among path params, query params and body."""
    for source in (request.path_params, request.query_params, body):
        value = source.get(name)
        if value not in (None, ""):
            return str(value)
    return None


def ensure_company_access(
    user: CurrentUser,
    company_id: Optional[str],
    request: Optional[Request] = None,
    allow_superadmin: bool = True,
) -> None:
    """Raises Forbidden unless ``company_id`` is the caller's own tenant."""
    if allow_superadmin and user.role == Role.SUPERADMIN:
        return
    if user.company_id is None or user.company_id != company_id:
        log_security_event(
            "Cross-company access attempt",
            user_id=user.id,
            user_company_id=user.company_id,
            requested_company_id=company_id,
            **request_context(request),
        )
        raise Forbidden("Access denied. You can only access resources from your own company.")


def authorize_company(allow_superadmin: bool = True):
    """Restricts the request to the caller's own company."""

    def company_gate(
        request: Request,
        body: Dict[str, Any] = Depends(json_body),
        current_user: CurrentUser = Depends(get_current_user),
    ) -> CurrentUser:
        if allow_superadmin and current_user.role == Role.SUPERADMIN:
            return current_user

        company_id = scope_target(request, body, "company_id")
        if company_id is None:
            raise BadRequest("Company ID is required for this operation.")

        ensure_company_access(current_user, company_id, request, allow_superadmin)
        return current_user

    return company_gate


def authorize_branch(allow_superadmin: bool = True, allow_company_admin: bool = True):
    """
    Restricts the request to a branch of the caller's company and, unless
    the caller is a company ADMIN, to the caller's own branch.

    Tenant isolation is checked before the admin override, so an ADMIN of
    another company is refused too.
    """

    def branch_gate(
        request: Request,
        body: Dict[str, Any] = Depends(json_body),
        current_user: CurrentUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> CurrentUser:
        if allow_superadmin and current_user.role == Role.SUPERADMIN:
            return current_user

        branch_id = scope_target(request, body, "branch_id")
        if branch_id is None:
            raise BadRequest("Branch ID is required for this operation.")

        branch_company_id = db.query(Branch.company_id).filter(Branch.id == branch_id).scalar()
        if branch_company_id is None:
            raise NotFound("Branch not found.")

        if branch_company_id != current_user.company_id:
            log_security_event(
                "Cross-company branch access attempt",
                user_id=current_user.id,
                user_company_id=current_user.company_id,
                branch_company_id=branch_company_id,
                requested_branch_id=branch_id,
                **request_context(request),
            )
            raise Forbidden("Access denied. Branch does not belong to your company.")

        if allow_company_admin and current_user.role == Role.ADMIN:
            return current_user

        if current_user.branch_id != branch_id:
            log_security_event(
                "Cross-branch access attempt",
                user_id=current_user.id,
                user_branch_id=current_user.branch_id,
                requested_branch_id=branch_id,
                **request_context(request),
            )
            raise Forbidden("Access denied. You can only access resources from your own branch.")
        return current_user

    return branch_gate


# ***************************************************************
# 4. Ownership policy (checked by the handler once the resource is loaded)
# ***************************************************************

class OwnershipScope(str, enum.Enum):
    ALL = "ALL"
    BRANCH = "BRANCH"
    OWN = "OWN"


OWNERSHIP_SCOPES: Dict[Role, OwnershipScope] = {
    Role.ADMIN: OwnershipScope.ALL,
    Role.REGIONAL_MANAGER: OwnershipScope.ALL,
    Role.AREA_MANAGER: OwnershipScope.BRANCH,
    Role.TECHNICIAN: OwnershipScope.OWN,
}


@dataclass(frozen=True)
class OwnershipPolicy:
    """
    What part of a tenant's resources the caller may touch.

    ``allows``/``enforce`` judge a loaded resource; ``apply`` narrows a
    list query the same way.
    """
    user: CurrentUser
    scope: OwnershipScope
    resource_field: str = "assigned_to"

    @property
    def unrestricted(self) -> bool:
        return self.scope == OwnershipScope.ALL

    def allows(self, resource: Any) -> bool:
        if self.scope == OwnershipScope.ALL:
            return True
        if self.scope == OwnershipScope.BRANCH:
            return self.user.branch_id is not None and getattr(resource, "branch_id", None) == self.user.branch_id
        return getattr(resource, self.resource_field, None) == self.user.id

    def enforce(self, resource: Any, request: Optional[Request] = None) -> None:
        if self.allows(resource):
            return
        log_security_event(
            "Ownership check failed",
            user_id=self.user.id,
            user_role=self.user.role.value,
            scope=self.scope.value,
            resource_id=getattr(resource, "id", None),
            **request_context(request),
        )
        if self.scope == OwnershipScope.BRANCH:
            raise Forbidden("Access denied. You can only access resources from your own branch.")
        raise Forbidden("Access denied. You can only access your own resources.")

    def apply(self, query: Query, model) -> Query:
        if self.scope == OwnershipScope.ALL:
            return query
        if self.scope == OwnershipScope.BRANCH:
            if self.user.branch_id is None:
                return query.filter(false())
            return query.filter(model.branch_id == self.user.branch_id)
        return query.filter(getattr(model, self.resource_field) == self.user.id)


def check_ownership(resource_field: str = "assigned_to"):
    """Builds the caller's OwnershipPolicy; roles without a scope are refused."""

    def ownership_gate(request: Request, current_user: CurrentUser = Depends(get_current_user)) -> OwnershipPolicy:
        scope = OWNERSHIP_SCOPES.get(current_user.role)
        if scope is None:
            log_security_event(
                "Unauthorized access attempt",
                user_id=current_user.id,
                user_role=current_user.role.value,
                **request_context(request),
            )
            raise Forbidden("Access denied. Insufficient permissions.")
        return OwnershipPolicy(user=current_user, scope=scope, resource_field=resource_field)

    return ownership_gate


# ***************************************************************
# 5. Permission gate (role_permission table)
# ***************************************************************

def require_permission(module: str, action: str):
    """Requires the caller's role to hold ``<module>.<action>``."""

    def permission_gate(
        request: Request,
        current_user: CurrentUser = Depends(get_current_user),
        db: Session = Depends(get_db),
    ) -> CurrentUser:
        if current_user.role == Role.SUPERADMIN:
            return current_user
        if not has_permission(db, current_user.role, module, action):
            log_security_event(
                "Missing permission",
                user_id=current_user.id,
                user_role=current_user.role.value,
                permission=f"{module}.{action}",
                **request_context(request),
            )
            raise Forbidden(f"Access denied. Missing permission {module}.{action}.")
        return current_user

    return permission_gate
