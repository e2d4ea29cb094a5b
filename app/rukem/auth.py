from __future__ import annotations

import threading
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash

from app.rukem.audit import record_event
from app.rukem.db import db_session
from app.rukem.models import User

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

bp = Blueprint("auth", __name__)


class AuthState:
    """Resolution state of the current request's session."""

    INITIALIZING = "initializing"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


class LoginThrottle:
    """Per-IP sliding window of login attempts (in-process; one per worker)."""

    def __init__(self, limit: int = 5, window_seconds: int = 300):
        self.limit = limit
        self.window = timedelta(seconds=window_seconds)
        self._attempts: dict[str, list[datetime]] = defaultdict(list)
        self._lock = threading.Lock()

    def blocked(self, key: str) -> bool:
        cutoff = datetime.utcnow() - self.window
        with self._lock:
            recent = [t for t in self._attempts[key] if t > cutoff]
            self._attempts[key] = recent
            return len(recent) >= self.limit

    def hit(self, key: str) -> None:
        with self._lock:
            self._attempts[key].append(datetime.utcnow())

    def reset(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)


throttle = LoginThrottle()

_PUBLIC_PREFIXES = ("/static/", "/health", "/healthz")


def _set_anonymous() -> None:
    g.current_user = None
    g.auth_state = AuthState.ANONYMOUS


def load_current_user() -> None:
    """
    Session bootstrap, run before every request.

    Resolves g.current_user from the signed session cookie and moves
    g.auth_state from INITIALIZING to AUTHENTICATED or ANONYMOUS before any
    view runs. Also assigns a per-request request_id for audit/log correlation.
    """
    g.auth_state = AuthState.INITIALIZING
    g.request_id = getattr(g, "request_id", None) or uuid.uuid4().hex

    user_id = session.get("user_id")
    if request.path.startswith(_PUBLIC_PREFIXES) or not user_id:
        _set_anonymous()
        return

    try:
        user = db_session().get(User, int(user_id))
    except (SQLAlchemyError, ValueError) as e:
        current_app.logger.error("Session user lookup failed, signing out: %s", e)
        user = None
    if user is None or not user.is_active:
        session.pop("user_id", None)
        _set_anonymous()
        return
    g.current_user = user
    g.auth_state = AuthState.AUTHENTICATED


def authenticate(s: "Session", email: str, password: str) -> User | None:
    """Active user matching the credentials, else None (failure is audited)."""
    user = s.query(User).filter(User.email == email).one_or_none()
    if user and user.is_active and check_password_hash(user.password_hash, password):
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        return user
    record_event(
        s,
        actor=None,
        action="auth.login_failed",
        entity_type="User",
        entity_id=email,
        reason="Invalid credentials",
        metadata={"email": email},
    )
    return None


def _safe_next(nxt: str) -> str | None:
    # Local paths only, no open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


@bp.get("/login")
def login_get():
    return render_template("auth/login.html", next=(request.args.get("next") or "").strip())


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if throttle.blocked(ip):
        current_app.logger.warning("Login throttled ip=%s", ip)
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))
    throttle.hit(ip)

    s = db_session()
    user = authenticate(s, email, password)
    s.commit()
    if user is None:
        flash("Invalid credentials.", "danger")
        return redirect(url_for("auth.login_get"))

    session["user_id"] = user.id
    throttle.reset(ip)
    current_app.logger.info("Login user_id=%s request_id=%s", user.id, g.request_id)
    return redirect(_safe_next(nxt) or url_for("admin.index"))


@bp.get("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return redirect(url_for("routes.index"))
