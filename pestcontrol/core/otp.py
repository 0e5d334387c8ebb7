# pestcontrol/core/otp.py
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.orm import Session

from pestcontrol.core.config import settings
from pestcontrol.core.errors import BadRequest
from pestcontrol.core.logger import get_logger
from pestcontrol.models.auth import OtpVerification, utcnow

logger = get_logger("otp")

OTP_LENGTH = 6


@dataclass
class OtpResult:
    success: bool
    message: str
    code: str
    attempts_remaining: Optional[int] = None


def generate_otp(length: int = OTP_LENGTH) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(length))


def store_otp(db: Session, email: str, otp: str) -> OtpVerification:
    """
    Saves a new code for ``email``. Raises BadRequest while the previous
    code is still inside the resend cooldown.
    """
    now = utcnow()

    db.query(OtpVerification).filter(
        OtpVerification.email == email,
        OtpVerification.expires_at < now,
    ).delete(synchronize_session=False)

    cooldown = timedelta(minutes=settings.OTP_RESEND_COOLDOWN_MINUTES)
    recent = (
        db.query(OtpVerification)
        .filter(OtpVerification.email == email, OtpVerification.created_at > now - cooldown)
        .order_by(OtpVerification.created_at.desc())
        .first()
    )
    if recent is not None:
        remaining = int((recent.created_at + cooldown - now).total_seconds()) + 1
        db.commit()
        raise BadRequest(f"Please wait {remaining} seconds before requesting a new OTP")

    record = OtpVerification(
        email=email,
        otp_code=otp,
        expires_at=now + timedelta(minutes=settings.OTP_EXPIRY_MINUTES),
        is_verified=False,
        attempts=0,
        created_at=now,
    )
    db.add(record)
    db.commit()
    db.refresh(record)

    logger.info("OTP stored", extra={"context": {"email": email, "expires_at": record.expires_at}})
    return record


def verify_otp(db: Session, email: str, otp: str) -> OtpResult:
    """Checks ``otp`` against the latest unexpired code for ``email``."""
    record = (
        db.query(OtpVerification)
        .filter(OtpVerification.email == email, OtpVerification.expires_at > utcnow())
        .order_by(OtpVerification.created_at.desc(), OtpVerification.id.desc())
        .first()
    )

    if record is None:
        logger.warning("OTP verification failed - no valid OTP", extra={"context": {"email": email}})
        return OtpResult(False, "No valid OTP found. Please request a new OTP.", "OTP_NOT_FOUND")

    if record.is_verified:
        return OtpResult(False, "OTP has already been used. Please request a new OTP.", "OTP_ALREADY_USED")

    max_attempts = settings.OTP_MAX_ATTEMPTS
    if record.attempts >= max_attempts:
        return OtpResult(False, "Maximum OTP attempts exceeded. Please request a new OTP.", "MAX_ATTEMPTS_EXCEEDED")

    record.attempts += 1

    if not secrets.compare_digest(record.otp_code, str(otp)):
        db.commit()
        remaining = max_attempts - record.attempts
        logger.warning(
            "OTP verification failed - incorrect OTP",
            extra={"context": {"email": email, "attempts": record.attempts}},
        )
        return OtpResult(False, f"Incorrect OTP. {remaining} attempts remaining.", "INCORRECT_OTP", remaining)

    record.is_verified = True
    db.commit()
    logger.info("OTP verified", extra={"context": {"email": email}})
    return OtpResult(True, "OTP verified successfully", "OTP_VERIFIED")
