# pestcontrol/schemas/auth.py
# type: ignore

import re
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pestcontrol.models.auth import Role

NAME_RE = re.compile(r"^[a-zA-Z\s]+$")
EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
# Indian mobile numbers, optionally prefixed with +91 / 0
MOBILE_RE = re.compile(r"^(?:\+91[\-\s]?|91|0)?[6-9]\d{9}$")


def check_name(value: str) -> str:
    value = value.strip()
    if not 2 <= len(value) <= 100:
        raise ValueError("Name must be between 2 and 100 characters")
    if not NAME_RE.match(value):
        raise ValueError("Name can only contain letters and spaces")
    return value


def check_email(value: str) -> str:
    value = value.strip().lower()
    if not EMAIL_RE.match(value):
        raise ValueError("Please provide a valid email address")
    return value


def check_mobile(value: str) -> str:
    value = value.strip()
    if not MOBILE_RE.match(value):
        raise ValueError("Please provide a valid Indian mobile number")
    return value


def check_staff_role(value: Role) -> Role:
    if value == Role.SUPERADMIN:
        raise ValueError("Invalid role specified")
    return value


# ***************************************************************
# 1. Authenticated user
# ***************************************************************
class BranchSummary(BaseModel):
    id: str
    name: str
    city: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class CompanySummary(BaseModel):
    id: str
    name: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class CurrentUser(BaseModel):
    """The caller as seen by authorization checks (no secrets)."""
    id: str
    name: str
    email: str
    mobile: str
    role: Role
    is_active: bool
    company_id: Optional[str] = None
    branch_id: Optional[str] = None
    branch: Optional[BranchSummary] = None

    model_config = ConfigDict(from_attributes=True)


# ***************************************************************
# 2. Auth requests
# ***************************************************************
class LoginRequest(BaseModel):
    email: str
    password: str = Field(..., min_length=1)

    validate_email = field_validator("email")(check_email)


class SuperadminSetupRequest(BaseModel):
    name: str
    email: str
    mobile: str
    password: str = Field(..., min_length=8, max_length=128)
    setup_key: str = Field(..., min_length=1)

    validate_name = field_validator("name")(check_name)
    validate_email = field_validator("email")(check_email)
    validate_mobile = field_validator("mobile")(check_mobile)


class SignupRequest(BaseModel):
    """Staff self-registration; the account is created after OTP verification."""
    name: str
    email: str
    mobile: str
    role: Role
    password: str = Field(..., min_length=8, max_length=128)
    company_id: str = Field(..., min_length=1)
    branch_id: str = Field(..., min_length=1)

    validate_name = field_validator("name")(check_name)
    validate_email = field_validator("email")(check_email)
    validate_mobile = field_validator("mobile")(check_mobile)


class VerifyOtpRequest(BaseModel):
    email: str
    otp: str = Field(..., pattern=r"^\d{6}$")
    signup_token: str = Field(..., min_length=1)

    validate_email = field_validator("email")(check_email)


class ResendOtpRequest(BaseModel):
    email: str
    signup_token: str = Field(..., min_length=1)

    validate_email = field_validator("email")(check_email)


class ForgotPasswordRequest(BaseModel):
    email: str

    validate_email = field_validator("email")(check_email)


# ***************************************************************
# 3. Staff
# ***************************************************************
class StaffCreate(BaseModel):
    name: str
    email: str
    mobile: str
    role: Role
    password: str = Field(..., min_length=8, max_length=128)
    company_id: str = Field(..., min_length=1)
    branch_id: Optional[str] = None

    validate_name = field_validator("name")(check_name)
    validate_email = field_validator("email")(check_email)
    validate_mobile = field_validator("mobile")(check_mobile)
    validate_role = field_validator("role")(check_staff_role)


class StaffUpdate(BaseModel):
    """All fields optional; only the ones sent are applied."""
    name: Optional[str] = None
    email: Optional[str] = None
    mobile: Optional[str] = None
    role: Optional[Role] = None
    branch_id: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value):
        return check_name(value) if value is not None else value

    @field_validator("email")
    @classmethod
    def validate_email(cls, value):
        return check_email(value) if value is not None else value

    @field_validator("mobile")
    @classmethod
    def validate_mobile(cls, value):
        return check_mobile(value) if value is not None else value

    @field_validator("role")
    @classmethod
    def validate_role(cls, value):
        return check_staff_role(value) if value is not None else value


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128)


class AdminChangePasswordRequest(BaseModel):
    staff_id: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=128)


class StaffInDB(BaseModel):
    """Staff as returned by the API (no password hash)."""
    id: str
    name: str
    email: str
    mobile: str
    role: Role
    is_active: bool
    company_id: Optional[str] = None
    branch_id: Optional[str] = None
    created_at: datetime
    last_login: Optional[datetime] = None
    company: Optional[CompanySummary] = None
    branch: Optional[BranchSummary] = None

    model_config = ConfigDict(from_attributes=True)


# ***************************************************************
# 4. Permissions
# ***************************************************************
class PermissionCreate(BaseModel):
    module: str = Field(..., min_length=2, max_length=50)
    action: str = Field(..., min_length=2, max_length=50)
    description: Optional[str] = Field(None, max_length=255)

    @field_validator("module", "action")
    @classmethod
    def normalize_module_action(cls, value: str) -> str:
        return value.strip().lower()


class PermissionInDB(BaseModel):
    id: str
    name: str
    module: str
    action: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RolePermissionAssign(BaseModel):
    role: Role
    permission_ids: List[str] = Field(..., min_length=1)


class RolePermissionInDB(BaseModel):
    id: str
    role: Role
    permission_id: str
    permission: PermissionInDB

    model_config = ConfigDict(from_attributes=True)
