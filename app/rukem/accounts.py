"""
Staff accounts: administrators create and (de)activate the people who
operate the records, and everyone maintains their own profile.
"""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from werkzeug.security import generate_password_hash

from app.rukem.audit import record_event
from app.rukem.errors import InvalidTransitionError, ValidationError
from app.rukem.models import Role, User
from app.rukem.utils import normalize_text

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


def _password_errors(password: str, confirm: str | None = None) -> list[str]:
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if confirm is not None and password != confirm:
        errors.append("Passwords do not match.")
    return errors


def _roles_by_id(s: "Session", role_ids: list[str]) -> list[Role]:
    ids = []
    for raw in role_ids:
        try:
            ids.append(int(raw))
        except (TypeError, ValueError):
            raise ValidationError("Unknown role.") from None
    if not ids:
        return []
    return s.query(Role).filter(Role.id.in_(ids)).all()


def create_account(
    s: "Session",
    *,
    email: str,
    password: str,
    actor: User,
    full_name: str | None = None,
    rt: str | None = None,
    rw: str | None = None,
    role_ids: list[str] | tuple = (),
) -> User:
    email = (email or "").strip().lower()
    errors = []
    if not EMAIL_RE.match(email):
        errors.append("A valid email is required.")
    elif s.query(User.id).filter(User.email == email).first():
        errors.append("An account with this email already exists.")
    errors += _password_errors(password or "")
    if errors:
        raise ValidationError(errors)

    user = User(
        email=email,
        full_name=normalize_text(full_name),
        password_hash=generate_password_hash(password),
        rt=normalize_text(rt),
        rw=normalize_text(rw),
        is_active=True,
    )
    user.roles.extend(_roles_by_id(s, list(role_ids)))
    s.add(user)
    s.flush()

    record_event(
        s,
        actor=actor,
        action="user.create",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"email": email, "roles": sorted(r.key for r in user.roles)},
    )
    logger.info("Account created id=%s by user_id=%s", user.id, actor.id)
    return user


def update_account(
    s: "Session",
    user: User,
    *,
    actor: User,
    is_active: bool,
    role_ids: list[str],
) -> User:
    """Change roles and the active flag of another account."""
    if user.id == actor.id:
        raise InvalidTransitionError("You cannot modify your own account from this page.")

    before = {"is_active": user.is_active, "roles": sorted(r.key for r in user.roles)}
    new_roles = _roles_by_id(s, list(role_ids))
    user.is_active = is_active
    user.roles[:] = new_roles
    after = {"is_active": user.is_active, "roles": sorted(r.key for r in user.roles)}

    if before != after:
        record_event(
            s,
            actor=actor,
            action="user.update",
            entity_type="User",
            entity_id=str(user.id),
            metadata={"before": before, "after": after},
        )
    return user


def update_profile(
    s: "Session",
    user: User,
    *,
    full_name: str | None,
    password: str = "",
    password_confirm: str = "",
) -> User:
    """Own name and (optionally) password; a blank password keeps the old one."""
    if password:
        errors = _password_errors(password, password_confirm)
        if errors:
            raise ValidationError(errors)
        user.password_hash = generate_password_hash(password)
    user.full_name = normalize_text(full_name)

    record_event(
        s,
        actor=user,
        action="user.update_profile",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"full_name": user.full_name, "password_changed": bool(password)},
    )
    return user
