"""
Pytest configuration and fixtures.

Provides:
- an in-memory database reset before every test (permissions re-seeded)
- factories for companies, branches, staff and leads
- a two-company "tenant" world used by most endpoint tests
- auth headers built from real signed tokens
"""

import itertools
import os
from types import SimpleNamespace
from typing import Dict, Generator, List

import pytest

# Set test environment before importing app modules
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["SUPERADMIN_SETUP_KEY"] = "test-setup-key"
os.environ["SMTP_HOST"] = ""

from fastapi.testclient import TestClient

from pestcontrol.api.v1.endpoints import auth as auth_endpoints
from pestcontrol.api.v1.endpoints import staff as staff_endpoints
from pestcontrol.core import email as email_module
from pestcontrol.core.config import settings
from pestcontrol.core.permission_defaults import seed_permissions
from pestcontrol.core.security import get_password_hash
from pestcontrol.database import Base, SessionLocal, engine
from pestcontrol.main import app
from pestcontrol.models.auth import Role, Staff
from pestcontrol.models.leads import Lead, PropertyType, ServiceType
from pestcontrol.models.platform import Branch, BranchType, Company

PASSWORD = "Str0ngPassw0rd"

_seq = itertools.count(1)


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_state():
    """Fresh tables, default permissions and empty rate-limit counters."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        seed_permissions(session)
    finally:
        session.close()

    for limiter in (
        auth_endpoints.login_limiter,
        auth_endpoints.forgot_password_limiter,
        staff_endpoints.admin_password_limiter,
    ):
        limiter.store.reset()
    yield


@pytest.fixture
def db(reset_state) -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


# =============================================================================
# EMAIL FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def mailbox(monkeypatch) -> List:
    """Captures outgoing email instead of talking to an SMTP server."""
    sent = []

    class RecordingSMTP:
        def __init__(self, host, port):
            self.host = host
            self.port = port

        def __enter__(self):
            return self

        def __exit__(self, *exc_info):
            return False

        def login(self, user, password):
            pass

        def send_message(self, message):
            sent.append(message)

    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.test")
    monkeypatch.setattr(email_module.smtplib, "SMTP_SSL", RecordingSMTP)
    return sent


# =============================================================================
# FACTORIES
# =============================================================================


@pytest.fixture
def make_company(db):
    def factory(name=None, email=None, is_active=True, **fields) -> Company:
        n = next(_seq)
        company = Company(
            name=name or f"Company {n}",
            email=email or f"company{n}@example.com",
            is_active=is_active,
            **fields,
        )
        db.add(company)
        db.commit()
        db.refresh(company)
        return company

    return factory


@pytest.fixture
def make_branch(db):
    def factory(company: Company, name=None, branch_type=BranchType.GENERAL_BRANCH, is_active=True) -> Branch:
        n = next(_seq)
        branch = Branch(
            company_id=company.id,
            name=name or f"Branch {n}",
            address=f"{n} Main Road",
            city="Pune",
            state="Maharashtra",
            pincode="411001",
            branch_type=branch_type,
            is_active=is_active,
        )
        db.add(branch)
        db.commit()
        db.refresh(branch)
        return branch

    return factory


@pytest.fixture
def make_staff(db):
    def factory(role: Role, company: Company = None, branch: Branch = None,
                email=None, password=PASSWORD, is_active=True, name="Test User") -> Staff:
        n = next(_seq)
        staff = Staff(
            name=name,
            email=email or f"{role.value.lower()}{n}@example.com",
            mobile=f"98{n:08d}",
            role=role,
            password_hash=get_password_hash(password),
            company_id=company.id if company is not None else None,
            branch_id=branch.id if branch is not None else None,
            is_active=is_active,
        )
        db.add(staff)
        db.commit()
        db.refresh(staff)
        return staff

    return factory


@pytest.fixture
def make_lead(db):
    def factory(branch: Branch, assigned_to: Staff = None, created_by: Staff = None, **fields) -> Lead:
        n = next(_seq)
        data = {
            "customer_name": f"Customer {n}",
            "customer_phone": f"97{n:08d}",
            "address": f"{n} Garden Street",
            "city": "Pune",
            "state": "Maharashtra",
            "pincode": "411002",
            "service_type": ServiceType.TERMITE_CONTROL,
            "property_type": PropertyType.APARTMENT,
        }
        data.update(fields)
        lead = Lead(
            company_id=branch.company_id,
            branch_id=branch.id,
            assigned_to=assigned_to.id if assigned_to is not None else None,
            created_by=created_by.id if created_by is not None else None,
            **data,
        )
        db.add(lead)
        db.commit()
        db.refresh(lead)
        return lead

    return factory


# =============================================================================
# AUTHENTICATION FIXTURES
# =============================================================================


@pytest.fixture
def auth_headers():
    """Bearer header carrying a real session token for ``staff``."""

    def build(staff: Staff) -> Dict[str, str]:
        return {"Authorization": f"Bearer {auth_endpoints.session_token(staff)}"}

    return build


@pytest.fixture
def tenant(make_company, make_branch, make_staff):
    """
    Two companies:
    - A with branches a1 (main) and a2, staffed by every role
    - B with branch b1, an ADMIN and an AREA_MANAGER
    plus the platform SUPERADMIN.
    """
    company_a = make_company(name="Alpha Pest Control")
    company_b = make_company(name="Beta Pest Control")
    a1 = make_branch(company_a, name="Alpha Main", branch_type=BranchType.MAIN_BRANCH)
    a2 = make_branch(company_a, name="Alpha East")
    b1 = make_branch(company_b, name="Beta Main", branch_type=BranchType.MAIN_BRANCH)

    return SimpleNamespace(
        company_a=company_a,
        company_b=company_b,
        a1=a1,
        a2=a2,
        b1=b1,
        superadmin=make_staff(Role.SUPERADMIN),
        admin_a=make_staff(Role.ADMIN, company_a),
        rm_a=make_staff(Role.REGIONAL_MANAGER, company_a, a1),
        am_a1=make_staff(Role.AREA_MANAGER, company_a, a1),
        tech_a1=make_staff(Role.TECHNICIAN, company_a, a1),
        tech_a2=make_staff(Role.TECHNICIAN, company_a, a2),
        admin_b=make_staff(Role.ADMIN, company_b),
        am_b1=make_staff(Role.AREA_MANAGER, company_b, b1),
    )
