"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in entities/models.py -- dataclasses own domain shape; stores and routes do
the work.

Layer rule: no imports from api/, entities/, or notify/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLES = ("user", "advertiser", "affiliate", "network", "admin")


@dataclass
class User:
    """Represents a login-capable identity in AdBond.

    Entity-derived users (created when an admin approves an entity) carry the
    entity's id in entity_id and mirror its classification in role. Plain
    users and admins have entity_id=None.

    password_reset_required and temp_password_expires travel together: the
    provisioner sets both, a completed password change clears both. Past
    temp_password_expires the temporary credential is refused.
    """

    email: str
    role: str  # one of ROLES
    id: str | None = None
    hashed_password: str | None = None
    first_name: str = ""
    last_name: str = ""
    entity_id: str | None = None
    password_reset_required: bool = False
    temp_password_expires: str | None = None  # ISO 8601 UTC
    created_at: str | None = None
    last_login: str | None = None
    is_active: bool = True
