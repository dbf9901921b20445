"""
entities/provisioning.py -- Create the login account for an approved entity.

The provisioner is the only code path that creates entity-linked users. It
is called by the verification workflow after an approval transition, at
most once per entity (the workflow checks StatusTransition.changed and
Entity.user_account_created first).

The temporary password is returned to the caller exactly once so it can be
put in the welcome email. It is never stored in plaintext or logged.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from auth.models import User
from auth.store import UserStore
from auth.tokens import generate_temp_password, hash_password, temp_password_expiry
from core.errors import ProvisioningFailure
from entities.models import Entity

logger = logging.getLogger("adbond.entities")


def split_name(name: str) -> tuple[str, str]:
    """Split an entity name into (first_name, last_name).

    The first whitespace-delimited token is the first name; everything after
    it is the last name. "Acme Media Group" -> ("Acme", "Media Group").
    """
    parts = name.split(None, 1)
    if not parts:
        return "", ""
    return parts[0], parts[1] if len(parts) > 1 else ""


class AccountProvisioner:
    def __init__(self, user_store: UserStore, ttl_hours: int | None = None) -> None:
        self.user_store = user_store
        self.ttl_hours = ttl_hours

    def provision(self, entity: Entity) -> tuple[User, str]:
        """Create a user for `entity`. Returns (user, temporary_password).

        Raises DuplicateEmailError when a user already owns the entity's
        email. Any other storage failure is wrapped in ProvisioningFailure.
        """
        temp_password = generate_temp_password()
        first_name, last_name = split_name(entity.name)
        user = User(
            email=entity.email,
            role=entity.entity_type,
            hashed_password=hash_password(temp_password),
            first_name=first_name,
            last_name=last_name,
            entity_id=entity.id,
            password_reset_required=True,
            temp_password_expires=temp_password_expiry(ttl_hours=self.ttl_hours).isoformat(),
        )
        try:
            user.id = self.user_store.create_user(user)
        except SQLAlchemyError as exc:
            logger.error("Account provisioning failed for entity %s: %s", entity.id, exc)
            raise ProvisioningFailure(f"Could not create user account for {entity.email}") from exc

        logger.info("Provisioned %s account %s for entity %s", user.role, user.id, entity.id)
        return user, temp_password
