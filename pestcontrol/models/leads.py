# pestcontrol/models/leads.py
# type: ignore

import enum

from sqlalchemy import Column, Date, DateTime, Enum, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship

from pestcontrol.database import Base
from pestcontrol.models.auth import new_id, utcnow


class ServiceType(str, enum.Enum):
    RESIDENTIAL_PEST_CONTROL = "RESIDENTIAL_PEST_CONTROL"
    COMMERCIAL_PEST_CONTROL = "COMMERCIAL_PEST_CONTROL"
    TERMITE_CONTROL = "TERMITE_CONTROL"
    RODENT_CONTROL = "RODENT_CONTROL"
    COCKROACH_CONTROL = "COCKROACH_CONTROL"
    ANT_CONTROL = "ANT_CONTROL"
    MOSQUITO_CONTROL = "MOSQUITO_CONTROL"
    BED_BUG_CONTROL = "BED_BUG_CONTROL"
    BIRD_CONTROL = "BIRD_CONTROL"
    SNAKE_CONTROL = "SNAKE_CONTROL"


class PropertyType(str, enum.Enum):
    APARTMENT = "APARTMENT"
    INDEPENDENT_HOUSE = "INDEPENDENT_HOUSE"
    VILLA = "VILLA"
    OFFICE = "OFFICE"
    SHOP = "SHOP"
    RESTAURANT = "RESTAURANT"
    WAREHOUSE = "WAREHOUSE"
    FACTORY = "FACTORY"
    HOSPITAL = "HOSPITAL"
    SCHOOL = "SCHOOL"
    OTHER = "OTHER"


class UrgencyLevel(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EMERGENCY = "EMERGENCY"


class LeadStatus(str, enum.Enum):
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    QUOTED = "QUOTED"
    CONVERTED = "CONVERTED"
    LOST = "LOST"
    CANCELLED = "CANCELLED"


class LeadSource(str, enum.Enum):
    WEBSITE = "WEBSITE"
    PHONE_CALL = "PHONE_CALL"
    REFERRAL = "REFERRAL"
    SOCIAL_MEDIA = "SOCIAL_MEDIA"
    ADVERTISEMENT = "ADVERTISEMENT"
    WALK_IN = "WALK_IN"
    OTHER = "OTHER"


def _enum(enum_cls, name):
    return Enum(enum_cls, name=name, native_enum=False, length=32)


class Lead(Base):
    """A prospective customer enquiry."""
    __tablename__ = "lead"

    id = Column(String(36), primary_key=True, default=new_id, index=True)
    company_id = Column(String(36), ForeignKey("company.id", ondelete="CASCADE"), nullable=False, index=True)
    branch_id = Column(String(36), ForeignKey("branch.id", ondelete="SET NULL"), nullable=True, index=True)

    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(15), nullable=False, index=True)
    address = Column(Text, nullable=False)
    city = Column(String(100), nullable=False)
    state = Column(String(100), nullable=False)
    pincode = Column(String(10), nullable=False)

    service_type = Column(_enum(ServiceType, "service_type"), nullable=False, index=True)
    pest_type = Column(String(100), nullable=True)
    property_type = Column(_enum(PropertyType, "property_type"), nullable=False)
    property_size = Column(String(50), nullable=True)
    urgency_level = Column(_enum(UrgencyLevel, "urgency_level"), default=UrgencyLevel.MEDIUM, nullable=False)
    status = Column(_enum(LeadStatus, "lead_status"), default=LeadStatus.NEW, nullable=False, index=True)
    source = Column(_enum(LeadSource, "lead_source"), default=LeadSource.WEBSITE, nullable=False)

    preferred_date = Column(Date, nullable=True)
    preferred_time = Column(String(20), nullable=True)
    description = Column(Text, nullable=True)
    # NUMERIC(10,2) for money
    estimated_cost = Column(Numeric(10, 2), nullable=True)
    notes = Column(Text, nullable=True)

    assigned_to = Column(String(36), ForeignKey("staff.id", ondelete="SET NULL"), nullable=True, index=True)
    created_by = Column(String(36), ForeignKey("staff.id", ondelete="SET NULL"), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    company = relationship("Company", back_populates="leads")
    branch = relationship("Branch", back_populates="leads")
    assignee = relationship("Staff", back_populates="assigned_leads", foreign_keys=[assigned_to])
    creator = relationship("Staff", foreign_keys=[created_by])
