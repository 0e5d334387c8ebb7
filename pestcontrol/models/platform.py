# pestcontrol/models/platform.py
# type: ignore

import enum

from sqlalchemy import Boolean, Column, Date, DateTime, Enum, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from pestcontrol.database import Base
from pestcontrol.models.auth import new_id, utcnow


class SubscriptionPlan(str, enum.Enum):
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"
    ENTERPRISE = "ENTERPRISE"


class BranchType(str, enum.Enum):
    MAIN_BRANCH = "MAIN_BRANCH"
    GENERAL_BRANCH = "GENERAL_BRANCH"


# ***************************************************************
# 1. Company (tenant)
# ***************************************************************
class Company(Base):
    """
    A pest-control business using the platform. The tenant boundary:
    branches, staff and leads all belong to exactly one company.
    """
    __tablename__ = "company"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(15), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    pincode = Column(String(10), nullable=True)
    gst_number = Column(String(20), nullable=True)
    pan_number = Column(String(15), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    subscription_plan = Column(
        Enum(SubscriptionPlan, name="subscription_plan", native_enum=False, length=20),
        default=SubscriptionPlan.BASIC,
        nullable=False,
    )
    subscription_expires_at = Column(Date, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    branches = relationship("Branch", back_populates="company", cascade="all, delete-orphan")
    staff = relationship("Staff", back_populates="company", cascade="all, delete-orphan")
    leads = relationship("Lead", back_populates="company", cascade="all, delete-orphan")


# ***************************************************************
# 2. Branch
# ***************************************************************
class Branch(Base):
    """A physical office of a company."""
    __tablename__ = "branch"

    id = Column(String(36), primary_key=True, default=new_id)
    company_id = Column(String(36), ForeignKey("company.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=False)
    city = Column(String(100), nullable=False)
    state = Column(String(100), nullable=False)
    pincode = Column(String(10), nullable=False)
    phone = Column(String(15), nullable=True)
    email = Column(String(255), nullable=True)
    branch_type = Column(
        Enum(BranchType, name="branch_type", native_enum=False, length=20),
        default=BranchType.GENERAL_BRANCH,
        nullable=False,
    )
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    company = relationship("Company", back_populates="branches")
    staff = relationship("Staff", back_populates="branch")
    leads = relationship("Lead", back_populates="branch")

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="uq_branch_company_name"),
    )
