"""
entities/verification.py -- The entity verification workflow.

VerificationWorkflow is the orchestration layer between the HTTP routes (and
the CLI) and three collaborators:

  EntityStore         -- persists the status change
  AccountProvisioner  -- creates the login for a newly approved entity
  Notifier            -- admin, welcome, and rejection emails

Status first, side effects second. The status write is the commit point: once
it succeeds, provisioning and email failures are logged and reported in the
VerificationOutcome but never undo the status or turn into an HTTP error.

Side effects run only for the call whose status write reported
StatusTransition.changed. A repeated approval (or two concurrent ones) of the
same entity therefore provisions one account and sends one welcome email;
a repeated rejection sends one rejection email.

Transition policy:
  Every status can move to every other status. With
  allow_approval_revocation=False, moving an approved entity to anything but
  approved raises InvalidTransitionError. Re-approving an entity that already
  has a user account (approved -> rejected -> approved) keeps the existing
  account and sends no second welcome email.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from auth.store import UserStore
from core.config import Settings
from core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ProvisioningFailure,
    ValidationError,
)
from entities.models import Entity, NewEntity, StatusTransition
from entities.provisioning import AccountProvisioner
from entities.store import EntityStore, check_status
from notify.mailer import MailTransport, Notifier, ResendTransport, SendResult

logger = logging.getLogger("adbond.verification")


@dataclass
class VerificationOutcome:
    """What one verification decision did to one entity.

    entity          -- entity state after the decision
    changed         -- this call moved the status
    success         -- the decision and its required side effects completed
    account_created -- a user account was provisioned by this call
    email_sent      -- the welcome or rejection email went out
    error           -- why success is False, or the email failure when
                       the account was created but the email was not sent
    message         -- human-readable summary for logs and the admin UI
    """

    entity: Entity
    changed: bool
    success: bool = True
    account_created: bool = False
    email_sent: bool = False
    error: str | None = None
    message: str = ""

    def as_result(self) -> dict[str, Any]:
        """Per-entity result record used by both verification endpoints."""
        if not self.success:
            return {"entity_id": self.entity.id, "success": False, "error": self.error}
        result: dict[str, Any] = {"entity_id": self.entity.id, "success": True, "email_sent": self.email_sent}
        if self.error:
            result["email_error"] = self.error
        return result


class VerificationWorkflow:
    def __init__(
        self,
        entity_store: EntityStore,
        provisioner: AccountProvisioner,
        notifier: Notifier,
        allow_approval_revocation: bool = True,
    ) -> None:
        self.entity_store = entity_store
        self.provisioner = provisioner
        self.notifier = notifier
        self.allow_approval_revocation = allow_approval_revocation

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, new: NewEntity) -> tuple[Entity, SendResult]:
        """Create a pending entity and notify the admin inbox.

        A failed admin notification is logged and returned; it does not fail
        the registration.
        """
        entity = self.entity_store.create_entity(new)
        sent = self.notifier.send_admin_notification(entity)
        if not sent.success:
            logger.warning("Entity %s registered but admin notification failed: %s", entity.id, sent.error)
        return entity, sent

    # ------------------------------------------------------------------
    # Verification decisions
    # ------------------------------------------------------------------

    def decide(self, entity_id: str, new_status: str, admin_id: str | None, notes: str | None = None) -> VerificationOutcome:
        """Apply one admin decision. Raises ValidationError, InvalidTransitionError, NotFoundError."""
        check_status(new_status)
        entity = self.entity_store.get_by_id(entity_id)
        if entity is None:
            raise NotFoundError("Entity not found")
        self._check_revocation(entity, new_status)

        transition = self.entity_store.set_verification_status(entity_id, new_status, admin_id)
        logger.info(
            "Entity %s verification %s -> %s by admin %s (changed=%s)",
            entity_id,
            entity.verification_status,
            new_status,
            admin_id,
            transition.changed,
        )
        return self._side_effects(transition, new_status, notes)

    def decide_bulk(
        self, entity_ids: list[str], new_status: str, admin_id: str | None, notes: str | None = None
    ) -> list[VerificationOutcome]:
        """Apply one decision to many entities.

        The status write is a single bulk UPDATE; side effects then run
        sequentially per entity. A failure for one entity is recorded in its
        outcome and never stops the others. Unknown ids produce no outcome.
        """
        check_status(new_status)
        if not entity_ids:
            raise ValidationError("Entity IDs array is required", errors=["entity_ids"])

        ids = list(dict.fromkeys(entity_ids))
        refused: dict[str, Entity] = {}
        if not self.allow_approval_revocation and new_status != "approved":
            for entity_id in ids:
                entity = self.entity_store.get_by_id(entity_id)
                if entity is not None and entity.verification_status == "approved":
                    refused[entity_id] = entity

        transitions = self.entity_store.bulk_set_verification_status(
            [i for i in ids if i not in refused], new_status, admin_id
        )
        logger.info(
            "Bulk verification -> %s by admin %s: %d requested, %d changed",
            new_status,
            admin_id,
            len(ids),
            sum(1 for t in transitions if t.changed),
        )
        by_id = {t.entity.id: t for t in transitions}

        outcomes: list[VerificationOutcome] = []
        for entity_id in ids:
            if entity_id in refused:
                outcomes.append(
                    VerificationOutcome(
                        entity=refused[entity_id],
                        changed=False,
                        success=False,
                        error="Approved entities cannot change status",
                    )
                )
                continue
            transition = by_id.get(entity_id)
            if transition is None:
                continue
            try:
                outcomes.append(self._side_effects(transition, new_status, notes))
            except Exception as exc:
                logger.exception("Bulk verification side effects failed for entity %s", entity_id)
                outcomes.append(
                    VerificationOutcome(entity=transition.entity, changed=transition.changed, success=False, error=str(exc))
                )
        return outcomes

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_revocation(self, entity: Entity, new_status: str) -> None:
        if not self.allow_approval_revocation and entity.verification_status == "approved" and new_status != "approved":
            raise InvalidTransitionError(
                f"Cannot change status of an approved entity to {new_status}",
                errors=["verification_status"],
            )

    def _side_effects(self, transition: StatusTransition, new_status: str, notes: str | None) -> VerificationOutcome:
        if new_status == "approved":
            return self._after_approval(transition)
        if new_status == "rejected":
            return self._after_rejection(transition, notes)
        return VerificationOutcome(
            entity=transition.entity,
            changed=transition.changed,
            message=f"Entity verification status updated to {new_status}",
        )

    def _after_approval(self, transition: StatusTransition) -> VerificationOutcome:
        entity = transition.entity
        if not transition.changed:
            message = "Already approved and has user account" if entity.user_account_created else "Already approved"
            return VerificationOutcome(entity=entity, changed=False, message=message)

        if entity.user_account_created:
            logger.info("Entity %s re-approved; keeping existing user account", entity.id)
            return VerificationOutcome(
                entity=entity,
                changed=True,
                message="Entity re-approved; existing user account kept",
            )

        try:
            user, temp_password = self.provisioner.provision(entity)
        except (ConflictError, ProvisioningFailure) as exc:
            logger.error("Entity %s approved but account provisioning failed: %s", entity.id, exc.message)
            return VerificationOutcome(
                entity=entity,
                changed=True,
                success=False,
                error=exc.message,
                message="Entity approved but user account creation failed",
            )

        sent = self.notifier.send_welcome(entity, user, temp_password)
        entity = self.entity_store.mark_account_created(entity.id) or entity
        if sent.success:
            message = "Entity approved, user account created and welcome email sent"
        else:
            message = "Entity approved and user account created, but welcome email failed"
        return VerificationOutcome(
            entity=entity,
            changed=True,
            account_created=True,
            email_sent=sent.success,
            error=sent.error,
            message=message,
        )

    def _after_rejection(self, transition: StatusTransition, notes: str | None) -> VerificationOutcome:
        entity = transition.entity
        if not transition.changed:
            return VerificationOutcome(entity=entity, changed=False, message="Entity was already rejected")

        sent = self.notifier.send_rejection(entity, notes)
        if sent.success:
            message = "Entity rejected and notification sent"
        else:
            message = "Entity rejected, but rejection email failed"
        return VerificationOutcome(
            entity=entity,
            changed=True,
            email_sent=sent.success,
            error=sent.error,
            message=message,
        )


def build_workflow(
    entity_store: EntityStore,
    user_store: UserStore,
    settings: Settings,
    transport: MailTransport | None = None,
) -> VerificationWorkflow:
    """Wire a VerificationWorkflow from settings. Shared by the API lifespan and the CLI.

    transport defaults to ResendTransport; tests pass a recording transport.
    """
    if transport is None:
        transport = ResendTransport(settings.resend_api_key, settings.mail_from)
    notifier = Notifier(
        transport,
        admin_email=settings.admin_notification_email,
        frontend_url=settings.frontend_url,
        temp_password_ttl_hours=settings.temp_password_ttl_hours,
    )
    return VerificationWorkflow(
        entity_store,
        AccountProvisioner(user_store, ttl_hours=settings.temp_password_ttl_hours),
        notifier,
        allow_approval_revocation=settings.allow_approval_revocation,
    )
