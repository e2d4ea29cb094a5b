import secrets

from flask import Flask, Request, render_template, request, session

CSRF_SESSION_KEY = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
UNSAFE_METHODS = ("POST", "PUT", "PATCH", "DELETE")
# Login/logout run before there is a signed-in session to bind a token to.
EXEMPT_BLUEPRINTS = ("auth",)
SKIP_PREFIXES = ("/static/", "/health", "/healthz")


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Token from the form field, the header, or a JSON body."""
    token = req.headers.get(CSRF_HEADER) or req.form.get(CSRF_SESSION_KEY)
    if not token and req.is_json:
        token = (req.get_json(silent=True) or {}).get(CSRF_SESSION_KEY)
    expected = session.get(CSRF_SESSION_KEY) or ""
    return bool(token) and secrets.compare_digest(str(token), str(expected))


def install_csrf(app: Flask) -> None:
    """Token in every template context; every unsafe request must echo it."""

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(SKIP_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method not in UNSAFE_METHODS or request.blueprint in EXEMPT_BLUEPRINTS:
            return None
        if not validate_csrf(request):
            app.logger.warning("CSRF rejected path=%s", request.path)
            return render_template("errors/400.html", message="CSRF token missing or invalid."), 400
        return None
