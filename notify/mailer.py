"""
notify/mailer.py -- Transactional email for the verification workflow.

Three messages are sent:
  admin notification -- a new entity registered and is waiting for review
  welcome            -- an approved entity's account exists; carries the
                        temporary password and its 24-hour expiry warning
  rejection          -- the entity was rejected, with the admin's notes

Notifier methods never raise. Every send returns a SendResult; the caller
(the verification workflow) decides what a failure means. Failures are
classified so the admin UI can tell a missing API key from a provider
outage:

  config      -- no API key configured, or no recipient
  auth        -- the provider rejected the API key
  connection  -- the provider could not be reached
  provider    -- the provider returned an error for this message
  unknown     -- anything else the transport raised

No retries: a failed email is reported once and left for the admin to act on.

Transport seam: anything with send(to, subject, html) -> message_id works.
ResendTransport is the production one; tests pass a recording transport.

Rendering uses Jinja2 with autoescaping on, so entity names and admin notes
cannot inject markup into the emails.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import requests
import resend
from jinja2 import Environment, FileSystemLoader, select_autoescape
from resend.exceptions import InvalidApiKeyError, MissingApiKeyError, ResendError

from auth.models import User
from core.errors import NotificationFailure
from entities.models import Entity

logger = logging.getLogger("adbond.notify")

_templates = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "templates")),
    autoescape=select_autoescape(["html"]),
)

WELCOME_SUBJECT = "Welcome to Adbond.net - Your Account is Ready"
REJECTION_SUBJECT = "Update on your Adbond.net registration"


@dataclass
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None
    error_code: str | None = None


class MailTransport(Protocol):
    def send(self, to: str, subject: str, html: str) -> str: ...


class ResendTransport:
    """Send through the Resend API. Raises NotificationFailure with a classified error_code."""

    def __init__(self, api_key: str, mail_from: str) -> None:
        self.api_key = api_key
        self.mail_from = mail_from

    def send(self, to: str, subject: str, html: str) -> str:
        if not self.api_key:
            raise NotificationFailure("Email service not configured (RESEND_API_KEY missing)", "config")

        resend.api_key = self.api_key
        params = {
            "from": self.mail_from,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        try:
            response = resend.Emails.send(params)
        except (MissingApiKeyError, InvalidApiKeyError) as exc:
            raise NotificationFailure(str(exc), "auth") from exc
        except ResendError as exc:
            raise NotificationFailure(str(exc), "provider") from exc
        except requests.RequestException as exc:
            raise NotificationFailure(f"Could not reach email provider: {exc}", "connection") from exc
        return response.get("id", "")


class Notifier:
    def __init__(
        self,
        transport: MailTransport,
        admin_email: str = "",
        frontend_url: str = "http://localhost:3000",
        temp_password_ttl_hours: int = 24,
    ) -> None:
        self.transport = transport
        self.admin_email = admin_email
        self.frontend_url = frontend_url.rstrip("/")
        self.temp_password_ttl_hours = temp_password_ttl_hours

    def send_admin_notification(self, entity: Entity) -> SendResult:
        """Tell the admin inbox that `entity` registered and awaits review."""
        if not self.admin_email:
            logger.warning("Admin notification for entity %s skipped: no admin email configured", entity.id)
            return SendResult(success=False, error="Admin notification email not configured", error_code="config")
        html = _templates.get_template("admin_notification.html").render(
            entity=entity,
            admin_url=f"{self.frontend_url}/adminpanel",
        )
        subject = f"New {entity.entity_type} Registration: {entity.name}"
        return self._deliver("admin_notification", entity, self.admin_email, subject, html)

    def send_welcome(self, entity: Entity, user: User, temp_password: str) -> SendResult:
        """Send login details and the temporary password to an approved entity."""
        html = _templates.get_template("welcome.html").render(
            entity=entity,
            user=user,
            temp_password=temp_password,
            ttl_hours=self.temp_password_ttl_hours,
            login_url=f"{self.frontend_url}/login",
        )
        return self._deliver("welcome", entity, user.email, WELCOME_SUBJECT, html)

    def send_rejection(self, entity: Entity, notes: str | None = None) -> SendResult:
        """Tell a rejected entity the outcome, including the admin's notes if any."""
        html = _templates.get_template("rejection.html").render(entity=entity, notes=notes)
        return self._deliver("rejection", entity, entity.email, REJECTION_SUBJECT, html)

    def _deliver(self, kind: str, entity: Entity, to: str, subject: str, html: str) -> SendResult:
        try:
            message_id = self.transport.send(to, subject, html)
        except NotificationFailure as exc:
            logger.error("Email %s to %s for entity %s failed (%s): %s", kind, to, entity.id, exc.error_code, exc)
            return SendResult(success=False, error=exc.message, error_code=exc.error_code)
        except Exception as exc:
            logger.exception("Email %s to %s for entity %s failed unexpectedly", kind, to, entity.id)
            return SendResult(success=False, error=str(exc), error_code="unknown")
        logger.info("Email %s sent to %s for entity %s (id=%s)", kind, to, entity.id, message_id)
        return SendResult(success=True, message_id=message_id)
