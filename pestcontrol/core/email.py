# pestcontrol/core/email.py
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Union

from pestcontrol.core.config import settings
from pestcontrol.core.logger import get_logger

logger = get_logger("email")


class EmailDeliveryError(Exception):
    """The message could not be handed to an SMTP server."""


def send_email(to_emails: Union[str, List[str]], subject: str, body: str) -> None:
    """
    Sends a plain-text email over SMTP (implicit TLS).

    Raises EmailDeliveryError when SMTP_HOST is not configured or the
    server refuses the message.
    """
    recipients = ", ".join(to_emails) if isinstance(to_emails, list) else to_emails

    if not settings.SMTP_HOST:
        logger.error("Email not sent, SMTP not configured",
                     extra={"context": {"to": recipients, "subject": subject}})
        raise EmailDeliveryError("SMTP is not configured")

    message = MIMEMultipart()
    message["to"] = recipients
    message["from"] = settings.EMAIL_FROM
    message["subject"] = subject
    message.attach(MIMEText(body, "plain"))

    try:
        with smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT) as server:
            if settings.SMTP_USER:
                server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            server.send_message(message)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Email sending failed",
                     extra={"context": {"to": recipients, "subject": subject, "error": str(e)}})
        raise EmailDeliveryError(str(e)) from e

    logger.info("Email sent", extra={"context": {"to": recipients, "subject": subject}})


def send_otp_email(email: str, otp: str, name: str = "User") -> None:
    subject = "Your Verification Code - Pest Control Management"
    body = (
        f"Hello {name},\n\n"
        f"Your verification code is: {otp}\n"
        f"It is valid for {settings.OTP_EXPIRY_MINUTES} minutes. Do not share this code with anyone.\n"
    )
    send_email(email, subject, body)


def send_welcome_email(email: str, name: str, role: str) -> None:
    subject = "Welcome to Pest Control Management"
    body = (
        f"Hello {name},\n\n"
        f"Your account has been created with the role {role.replace('_', ' ').title()}.\n"
        "You can now sign in with your email address and password.\n"
    )
    send_email(email, subject, body)


def send_password_reset_email(email: str, name: str, temp_password: str) -> None:
    subject = "Your password has been reset"
    body = (
        f"Hello {name},\n\n"
        f"Your temporary password is: {temp_password}\n"
        "Please sign in and change it right away.\n"
    )
    send_email(email, subject, body)
