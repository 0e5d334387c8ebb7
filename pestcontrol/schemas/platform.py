# pestcontrol/schemas/platform.py
# type: ignore
import re
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pestcontrol.models.platform import BranchType, SubscriptionPlan
from pestcontrol.schemas.auth import check_email

PINCODE_RE = re.compile(r"^\d{6}$")
GST_RE = re.compile(r"^\d{2}[A-Z]{5}\d{4}[A-Z][A-Z\d]Z[A-Z\d]$")
PAN_RE = re.compile(r"^[A-Z]{5}\d{4}[A-Z]$")


def _optional(check):
    def validator(cls, value):
        return check(value) if value is not None else value
    return classmethod(validator)


def check_pincode(value: str) -> str:
    value = value.strip()
    if not PINCODE_RE.match(value):
        raise ValueError("Pincode must be 6 digits")
    return value


def check_gst(value: str) -> str:
    value = value.strip().upper()
    if not GST_RE.match(value):
        raise ValueError("Invalid GST number format")
    return value


def check_pan(value: str) -> str:
    value = value.strip().upper()
    if not PAN_RE.match(value):
        raise ValueError("Invalid PAN number format")
    return value


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_records: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = (total + limit - 1) // limit if limit else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_records=total,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


def paginate(query, page: int, limit: int):
    """Runs ``query`` for one page; returns (rows, Pagination)."""
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, Pagination.build(page, limit, total)


# ***************************************************************
# 1. Schemas for COMPANY
# ***************************************************************
class CompanyBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    email: str = Field(..., max_length=255)
    phone: Optional[str] = Field(None, max_length=15)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    pincode: Optional[str] = None
    gst_number: Optional[str] = None
    pan_number: Optional[str] = None
    subscription_plan: SubscriptionPlan = SubscriptionPlan.BASIC
    subscription_expires_at: Optional[date] = None

    validate_email = field_validator("email")(_optional(check_email))
    validate_pincode = field_validator("pincode")(_optional(check_pincode))
    validate_gst = field_validator("gst_number")(_optional(check_gst))
    validate_pan = field_validator("pan_number")(_optional(check_pan))


class CompanyCreate(CompanyBase):
    pass


class CompanyUpdate(CompanyBase):
    """Every field optional."""
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    subscription_plan: Optional[SubscriptionPlan] = None


class CompanyInDB(CompanyBase):
    id: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CompanyOption(BaseModel):
    """Public id/name pair for signup forms."""
    id: str
    name: str

    model_config = ConfigDict(from_attributes=True)


# ***************************************************************
# 2. Schemas for BRANCH
# ***************************************************************
class BranchBase(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    pincode: str
    phone: Optional[str] = Field(None, max_length=15)
    email: Optional[str] = Field(None, max_length=255)
    branch_type: BranchType = BranchType.GENERAL_BRANCH

    validate_email = field_validator("email")(_optional(check_email))
    validate_pincode = field_validator("pincode")(_optional(check_pincode))


class BranchCreate(BranchBase):
    company_id: str = Field(..., min_length=1)


class BranchUpdate(BranchBase):
    """Every field optional; company_id can't be changed."""
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    pincode: Optional[str] = None
    branch_type: Optional[BranchType] = None


class BranchInDB(BranchBase):
    id: str
    company_id: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BranchOption(BaseModel):
    id: str
    name: str
    city: str
    branch_type: BranchType
    company_id: str

    model_config = ConfigDict(from_attributes=True)
