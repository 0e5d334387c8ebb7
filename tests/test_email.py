"""
Tests for outgoing email.
"""

import smtplib

import pytest

from pestcontrol.core import email as email_module
from pestcontrol.core.config import settings
from pestcontrol.core.email import EmailDeliveryError, send_email, send_welcome_email


class TestSendEmail:

    def test_sends_through_smtp(self, mailbox):
        send_welcome_email("ravi@example.com", "Ravi", "AREA_MANAGER")

        assert len(mailbox) == 1
        message = mailbox[0]
        assert message["to"] == "ravi@example.com"
        assert message["from"] == settings.EMAIL_FROM
        assert "Area Manager" in message.get_payload()[0].get_payload()

    def test_multiple_recipients(self, mailbox):
        send_email(["a@example.com", "b@example.com"], "Hello", "Body")
        assert mailbox[0]["to"] == "a@example.com, b@example.com"

    def test_unconfigured_smtp_raises(self, monkeypatch, mailbox):
        monkeypatch.setattr(settings, "SMTP_HOST", "")

        with pytest.raises(EmailDeliveryError):
            send_email("a@example.com", "Hello", "Body")
        assert mailbox == []

    def test_server_errors_are_wrapped(self, monkeypatch):
        class RefusingSMTP:
            def __init__(self, host, port):
                raise smtplib.SMTPConnectError(421, b"Service not available")

        monkeypatch.setattr(email_module.smtplib, "SMTP_SSL", RefusingSMTP)

        with pytest.raises(EmailDeliveryError):
            send_email("a@example.com", "Hello", "Body")
