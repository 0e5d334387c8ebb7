# pestcontrol/schemas/leads.py
# type: ignore
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from pestcontrol.models.leads import LeadSource, LeadStatus, PropertyType, ServiceType, UrgencyLevel
from pestcontrol.schemas.auth import BranchSummary, check_mobile
from pestcontrol.schemas.platform import _optional, check_email, check_pincode


class StaffSummary(BaseModel):
    id: str
    name: str
    email: str
    mobile: str

    model_config = ConfigDict(from_attributes=True)


class LeadBase(BaseModel):
    customer_name: str = Field(..., min_length=2, max_length=255)
    customer_email: Optional[str] = Field(None, max_length=255)
    customer_phone: str
    address: str = Field(..., min_length=5)
    city: str = Field(..., min_length=2, max_length=100)
    state: str = Field(..., min_length=2, max_length=100)
    pincode: str

    service_type: ServiceType
    pest_type: Optional[str] = Field(None, max_length=100)
    property_type: PropertyType
    property_size: Optional[str] = Field(None, max_length=50)
    urgency_level: UrgencyLevel = UrgencyLevel.MEDIUM
    source: LeadSource = LeadSource.WEBSITE

    preferred_date: Optional[date] = None
    preferred_time: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = None
    estimated_cost: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    notes: Optional[str] = None

    validate_email = field_validator("customer_email")(_optional(check_email))
    validate_phone = field_validator("customer_phone")(_optional(check_mobile))
    validate_pincode = field_validator("pincode")(_optional(check_pincode))


class LeadCreate(LeadBase):
    branch_id: str = Field(..., min_length=1)
    assigned_to: Optional[str] = None


class LeadUpdate(LeadBase):
    """Every field optional; status can move freely between states."""
    customer_name: Optional[str] = Field(None, min_length=2, max_length=255)
    customer_phone: Optional[str] = None
    address: Optional[str] = Field(None, min_length=5)
    city: Optional[str] = Field(None, min_length=2, max_length=100)
    state: Optional[str] = Field(None, min_length=2, max_length=100)
    pincode: Optional[str] = None
    service_type: Optional[ServiceType] = None
    property_type: Optional[PropertyType] = None
    urgency_level: Optional[UrgencyLevel] = None
    source: Optional[LeadSource] = None
    status: Optional[LeadStatus] = None
    branch_id: Optional[str] = None


class LeadAssign(BaseModel):
    assigned_to: str = Field(..., min_length=1)


class LeadInDB(LeadBase):
    id: str
    company_id: str
    branch_id: Optional[str] = None
    status: LeadStatus
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    branch: Optional[BranchSummary] = None
    assignee: Optional[StaffSummary] = None
    creator: Optional[StaffSummary] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("estimated_cost")
    def serialize_cost(self, value: Optional[Decimal]):
        return float(value) if value is not None else None
