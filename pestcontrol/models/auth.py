# pestcontrol/models/auth.py
# type: ignore

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, UniqueConstraint,
)
from sqlalchemy.orm import relationship

from pestcontrol.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Role(str, enum.Enum):
    """Closed set of staff roles, highest privilege first."""

    SUPERADMIN = "SUPERADMIN"
    ADMIN = "ADMIN"
    REGIONAL_MANAGER = "REGIONAL_MANAGER"
    AREA_MANAGER = "AREA_MANAGER"
    TECHNICIAN = "TECHNICIAN"

    @property
    def rank(self) -> int:
        return list(Role).index(self)

    def outranks(self, other: "Role") -> bool:
        return self.rank < Role(other).rank


# Roles that can be created through staff management / signup
STAFF_ROLES = (Role.ADMIN, Role.REGIONAL_MANAGER, Role.AREA_MANAGER, Role.TECHNICIAN)
# Roles allowed to manage other staff
MANAGER_ROLES = (Role.SUPERADMIN, Role.ADMIN, Role.REGIONAL_MANAGER)


class Staff(Base):
    __tablename__ = "staff"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    mobile = Column(String(15), unique=True, index=True, nullable=False)
    role = Column(Enum(Role, name="staff_role", native_enum=False, length=32), index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)

    # NULL only for SUPERADMIN
    company_id = Column(String(36), ForeignKey("company.id", ondelete="CASCADE"), nullable=True, index=True)
    branch_id = Column(String(36), ForeignKey("branch.id", ondelete="SET NULL"), nullable=True, index=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_login = Column(DateTime, nullable=True)

    company = relationship("Company", back_populates="staff")
    branch = relationship("Branch", back_populates="staff")
    assigned_leads = relationship(
        "Lead", back_populates="assignee", foreign_keys="Lead.assigned_to"
    )


class Permission(Base):
    __tablename__ = "permission"

    id = Column(String(36), primary_key=True, default=new_id)
    # "<module>.<action>", e.g. "lead.view"
    name = Column(String(100), unique=True, nullable=False)
    module = Column(String(50), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    role_permissions = relationship(
        "RolePermission", back_populates="permission", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("module", "action", name="uq_permission_module_action"),
    )


class RolePermission(Base):
    __tablename__ = "role_permission"

    id = Column(String(36), primary_key=True, default=new_id)
    role = Column(Enum(Role, name="staff_role", native_enum=False, length=32), nullable=False, index=True)
    permission_id = Column(String(36), ForeignKey("permission.id", ondelete="CASCADE"), nullable=False)

    permission = relationship("Permission", back_populates="role_permissions")

    __table_args__ = (
        UniqueConstraint("role", "permission_id", name="uq_role_permission"),
    )


class OtpVerification(Base):
    """One-time codes sent during signup."""
    __tablename__ = "otp_verification"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, index=True)
    otp_code = Column(String(6), nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
