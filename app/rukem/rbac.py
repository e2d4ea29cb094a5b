from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import abort, g, redirect, request, url_for

from app.rukem.models import User

# Staff roles of the association and what each may do.
ROLE_NAMES = {
    "admin_rw": "Admin RW",
    "admin_rt": "Admin RT",
    "operator": "Operator",
}

PERMISSIONS = {
    "admin.view": "Admin: view dashboard",
    "audit.view": "Audit: view trail",
    "users.manage": "Accounts: manage staff accounts",
    "members.view": "Members: view",
    "members.create": "Members: create",
    "members.edit": "Members: edit",
    "members.delete": "Members: delete",
    "members.import": "Members: import CSV/Excel",
    "members.approve": "Members: approve registrations",
    "deaths.view": "Deaths: view",
    "deaths.create": "Deaths: record",
    "deaths.verify": "Deaths: verify",
    "benefits.view": "Benefits: view",
    "benefits.create": "Benefits: create claims",
    "benefits.approve": "Benefits: approve claims",
    "ledger.view": "Ledger: view",
    "ledger.create": "Ledger: append entries",
    "reports.view": "Reports: view",
    "reports.export": "Reports: export",
}

ROLE_PERMISSIONS = {
    "admin_rw": tuple(PERMISSIONS),
    "admin_rt": (
        "admin.view",
        "members.view",
        "members.create",
        "members.edit",
        "members.delete",
        "members.import",
        "members.approve",
        "deaths.view",
        "deaths.create",
        "benefits.view",
        "benefits.create",
        "ledger.view",
        "ledger.create",
        "reports.view",
        "reports.export",
    ),
    "operator": (
        "admin.view",
        "members.view",
        "members.create",
        "members.edit",
        "deaths.view",
        "deaths.create",
        "ledger.view",
        "ledger.create",
    ),
}


def user_has_permission(user: User | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    return permission_key in user.permission_keys


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user: User | None = getattr(g, "current_user", None)
            # Unauthenticated → redirect to login.
            if not user or not user.is_active:
                # full_path ends with "?" when there is no query string
                return redirect(url_for("auth.login_get", next=request.full_path.rstrip("?")))
            # Authenticated but unauthorized → 403
            if not user_has_permission(user, permission_key):
                g.missing_permission = permission_key
                abort(403)
            return fn(*args, **kwargs)

        return wrapped

    return decorator
