# pestcontrol/api/v1/endpoints/auth.py
# type: ignore

import secrets
from datetime import timedelta

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session, joinedload

from pestcontrol.api.v1.dependencies import get_current_user
from pestcontrol.core.config import settings
from pestcontrol.core.email import (
    EmailDeliveryError,
    send_otp_email,
    send_password_reset_email,
    send_welcome_email,
)
from pestcontrol.core.errors import AppError, BadRequest, Conflict, NotFound, Unauthenticated
from pestcontrol.core.logger import get_logger, log_auth
from pestcontrol.core.otp import generate_otp, store_otp, verify_otp
from pestcontrol.core.rate_limit import sensitive_op_limiter
from pestcontrol.core.security import (
    clear_token_cookie,
    generate_temp_password,
    get_password_hash,
    issue_token,
    set_token_cookie,
    validate_password_strength,
    verify_password,
    verify_token,
)
from pestcontrol.database import get_db
from pestcontrol.models.auth import Role, Staff, utcnow
from pestcontrol.models.platform import Branch, Company
from pestcontrol.schemas.auth import (
    CurrentUser,
    ForgotPasswordRequest,
    LoginRequest,
    ResendOtpRequest,
    SignupRequest,
    StaffInDB,
    SuperadminSetupRequest,
    VerifyOtpRequest,
)

logger = get_logger("auth")

router = APIRouter()

login_limiter = sensitive_op_limiter(max_attempts=10, window_seconds=5 * 60)
forgot_password_limiter = sensitive_op_limiter(max_attempts=3, window_seconds=15 * 60)

SIGNUP_PURPOSE = "signup"


def session_token(staff: Staff) -> str:
    return issue_token({
        "id": staff.id,
        "email": staff.email,
        "role": staff.role.value,
        "company_id": staff.company_id,
        "branch_id": staff.branch_id,
    })


def mask_email(email: str) -> str:
    local, _, domain = email.partition("@")
    return f"{local[:2]}{'*' * max(len(local) - 2, 1)}@{domain}"


def check_password_strength(password: str) -> None:
    errors = validate_password_strength(password)
    if errors:
        raise BadRequest("Password does not meet security requirements", details={"errors": errors})


def check_staff_unique(db: Session, email: str, mobile: str, signup: bool = False) -> None:
    if db.query(Staff.id).filter(Staff.email == email).first():
        raise Conflict("This email is already registered. Please Sign In." if signup else "This email is already registered.")
    if db.query(Staff.id).filter(Staff.mobile == mobile).first():
        raise Conflict("This mobile number is already registered.")


def read_signup_token(token: str, email: str) -> dict:
    """Decodes a signup session token issued by /signup for ``email``."""
    try:
        data = verify_token(token)
    except Unauthenticated as e:
        raise BadRequest("Invalid or expired signup session. Please start registration again.") from e
    if data.get("purpose") != SIGNUP_PURPOSE or data.get("email") != email:
        raise BadRequest("Invalid signup session. Please start registration again.")
    return data


def deliver_otp(db: Session, email: str, name: str) -> None:
    """Stores a fresh OTP and emails it; the code is discarded if the email cannot be sent."""
    otp = generate_otp()
    record = store_otp(db, email, otp)
    try:
        send_otp_email(email, otp, name)
    except EmailDeliveryError as e:
        db.delete(record)
        db.commit()
        log_auth("otp_delivery", email, False, str(e))
        raise AppError("Failed to send OTP email. Please try again later.", 500) from e


# ***************************************************************
# 1. Superadmin bootstrap
# ***************************************************************
@router.post("/superadmin-setup", status_code=status.HTTP_201_CREATED)
def superadmin_setup(payload: SuperadminSetupRequest, response: Response, db: Session = Depends(get_db)):
    """Creates the single SUPERADMIN account. Requires the setup key."""
    expected = settings.SUPERADMIN_SETUP_KEY
    if not expected or not secrets.compare_digest(payload.setup_key, expected):
        log_auth("superadmin_setup_attempt", payload.email, False, "Invalid setup key")
        raise Unauthenticated("Invalid setup key")

    if db.query(Staff.id).filter(Staff.role == Role.SUPERADMIN).first():
        log_auth("superadmin_setup_attempt", payload.email, False, "Superadmin already exists")
        raise Conflict("Superadmin account already exists. Only one superadmin is allowed.")

    check_password_strength(payload.password)
    check_staff_unique(db, payload.email, payload.mobile)

    superadmin = Staff(
        name=payload.name,
        email=payload.email,
        mobile=payload.mobile,
        role=Role.SUPERADMIN,
        password_hash=get_password_hash(payload.password),
        is_active=True,
    )
    db.add(superadmin)
    db.commit()
    db.refresh(superadmin)

    token = session_token(superadmin)
    set_token_cookie(response, token)
    log_auth("superadmin_setup_successful", superadmin.email, True)

    return {
        "success": True,
        "message": "Superadmin account created successfully",
        "data": {"user": StaffInDB.model_validate(superadmin), "token": token},
    }


# ***************************************************************
# 2. Staff signup (OTP verified)
# ***************************************************************
@router.post("/signup")
def signup(payload: SignupRequest, db: Session = Depends(get_db)):
    """Validates the registration, emails an OTP and returns a signup session token."""
    if payload.role == Role.SUPERADMIN:
        raise BadRequest("Superadmin accounts must be created through the setup endpoint")

    check_password_strength(payload.password)
    check_staff_unique(db, payload.email, payload.mobile, signup=True)

    company = db.query(Company).filter(Company.id == payload.company_id, Company.is_active.is_(True)).first()
    if not company:
        raise BadRequest("Invalid company selected")

    branch = (
        db.query(Branch)
        .filter(
            Branch.id == payload.branch_id,
            Branch.company_id == company.id,
            Branch.is_active.is_(True),
        )
        .first()
    )
    if not branch:
        raise BadRequest("Invalid branch selected or branch does not belong to the specified company")

    deliver_otp(db, payload.email, payload.name)

    signup_token = issue_token(
        {
            "purpose": SIGNUP_PURPOSE,
            "name": payload.name,
            "email": payload.email,
            "mobile": payload.mobile,
            "role": payload.role.value,
            "password_hash": get_password_hash(payload.password),
            "company_id": company.id,
            "branch_id": branch.id,
        },
        expires_delta=timedelta(minutes=settings.SIGNUP_SESSION_MINUTES),
    )
    log_auth("signup_otp_sent", payload.email, True)

    return {
        "success": True,
        "message": "OTP sent to your email address. Please verify to complete registration.",
        "data": {"signup_token": signup_token, "email": mask_email(payload.email)},
    }


@router.post("/verify-otp", status_code=status.HTTP_201_CREATED)
def verify_signup_otp(payload: VerifyOtpRequest, response: Response, db: Session = Depends(get_db)):
    """Checks the OTP and creates the staff account from the signup session."""
    data = read_signup_token(payload.signup_token, payload.email)

    result = verify_otp(db, payload.email, payload.otp)
    if not result.success:
        log_auth("otp_verification", payload.email, False, result.message)
        details = {"code": result.code}
        if result.attempts_remaining is not None:
            details["attempts_remaining"] = result.attempts_remaining
        raise BadRequest(result.message, details=details)

    # the account may have been taken while the OTP was pending
    check_staff_unique(db, data["email"], data["mobile"], signup=True)

    staff = Staff(
        name=data["name"],
        email=data["email"],
        mobile=data["mobile"],
        role=Role(data["role"]),
        password_hash=data["password_hash"],
        company_id=data.get("company_id"),
        branch_id=data.get("branch_id"),
        is_active=True,
    )
    db.add(staff)
    db.commit()
    db.refresh(staff)

    token = session_token(staff)
    set_token_cookie(response, token)

    try:
        send_welcome_email(staff.email, staff.name, staff.role.value)
    except EmailDeliveryError as e:
        logger.error("Failed to send welcome email", extra={"context": {"email": staff.email, "error": str(e)}})

    log_auth("signup_completed", staff.email, True)
    return {
        "success": True,
        "message": "Registration completed successfully",
        "data": {"user": StaffInDB.model_validate(staff), "token": token},
    }


@router.post("/resend-otp")
def resend_otp(payload: ResendOtpRequest, db: Session = Depends(get_db)):
    data = read_signup_token(payload.signup_token, payload.email)

    deliver_otp(db, payload.email, data.get("name", "User"))
    log_auth("otp_resent", payload.email, True)

    return {"success": True, "message": "New OTP sent to your email address"}


# ***************************************************************
# 3. Login / logout
# ***************************************************************
@router.post("/login")
def login(
    payload: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    _limit: None = Depends(login_limiter),
):
    """Authenticates with email and password; sets the session cookie."""
    staff = (
        db.query(Staff)
        .options(joinedload(Staff.company), joinedload(Staff.branch))
        .filter(Staff.email == payload.email)
        .first()
    )

    if staff is None:
        log_auth("login_attempt", payload.email, False, "User not found")
        raise Unauthenticated("Invalid email or password")

    if not staff.is_active:
        log_auth("login_attempt", payload.email, False, "Account deactivated")
        raise Unauthenticated("Your account has been deactivated. Please contact administrator.")

    if staff.company is not None and not staff.company.is_active:
        log_auth("login_attempt", payload.email, False, "Company deactivated")
        raise Unauthenticated("Your company account has been deactivated. Please contact administrator.")

    if not verify_password(payload.password, staff.password_hash):
        log_auth("login_attempt", payload.email, False, "Invalid password")
        raise Unauthenticated("Invalid email or password")

    staff.last_login = utcnow()
    db.commit()
    db.refresh(staff)

    token = session_token(staff)
    set_token_cookie(response, token)
    log_auth("login_successful", staff.email, True)

    return {
        "success": True,
        "message": "Login successful",
        "data": {"user": StaffInDB.model_validate(staff), "token": token},
    }


@router.post("/forgot-password")
def forgot_password(
    payload: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    _limit: None = Depends(forgot_password_limiter),
):
    """Replaces the password with a temporary one and emails it."""
    staff = db.query(Staff).filter(Staff.email == payload.email).first()
    if staff is None:
        log_auth("forgot_password_attempt", payload.email, False, "Email not registered")
        raise NotFound("Email not registered")

    if not staff.is_active:
        log_auth("forgot_password_attempt", payload.email, False, "Account deactivated")
        raise Unauthenticated("Your account has been deactivated. Please contact administrator.")

    temp_password = generate_temp_password()
    staff.password_hash = get_password_hash(temp_password)

    # the new password is only kept once it has been delivered
    try:
        send_password_reset_email(staff.email, staff.name, temp_password)
    except EmailDeliveryError as e:
        db.rollback()
        logger.error("Failed to send password reset email", extra={"context": {"email": payload.email, "error": str(e)}})
        raise AppError("Failed to send password reset email. Please try again later.", 500) from e
    db.commit()

    log_auth("password_reset_successful", staff.email, True)
    return {"success": True, "message": "New password has been sent to your email address"}


@router.post("/logout")
def logout(response: Response, current_user: CurrentUser = Depends(get_current_user)):
    clear_token_cookie(response)
    log_auth("logout", current_user.email, True)
    return {"success": True, "message": "Logged out successfully"}


# ***************************************************************
# 4. Profile
# ***************************************************************
@router.get("/me")
def read_me(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Full profile of the authenticated user, with company and branch."""
    staff = (
        db.query(Staff)
        .options(joinedload(Staff.company), joinedload(Staff.branch))
        .filter(Staff.id == current_user.id)
        .first()
    )
    if staff is None:
        raise NotFound("User not found")
    return {"success": True, "data": {"user": StaffInDB.model_validate(staff)}}
