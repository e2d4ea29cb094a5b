import logging
import os

from flask import Flask, flash, g, redirect, render_template, request, url_for
from dotenv import load_dotenv

from app.rukem.config import load_config
from app.rukem.db import init_db, teardown_db_session
from app.rukem.routes import bp as routes_bp
from app.rukem.auth import AuthState, bp as auth_bp, load_current_user
from app.rukem.admin import bp as admin_bp
from app.rukem.modules.members.admin import bp as members_bp
from app.rukem.modules.deaths.admin import bp as deaths_bp
from app.rukem.modules.benefits.admin import bp as benefits_bp
from app.rukem.modules.ledger.admin import bp as ledger_bp
from app.rukem.modules.reports.admin import bp as reports_bp
from app.rukem.rbac import user_has_permission
from app.rukem.security import install_csrf
from app.rukem.utils import format_rupiah

logger = logging.getLogger(__name__)

# Staff screens all live under /admin; one blueprint per record type.
ADMIN_BLUEPRINTS = (admin_bp, members_bp, deaths_bp, benefits_bp, ledger_bp, reports_bp)


def _check_production_config(app: Flask) -> None:
    """Fail fast instead of serving production from SQLite or a default secret."""
    env = (app.config.get("ENV") or "").strip().lower()
    if env not in ("prod", "production"):
        return
    db_url = str(app.config.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is required in production.")
    if db_url.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
    if str(app.config.get("SECRET_KEY") or "") in ("", "change-me"):
        raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")


def _register_template_helpers(app: Flask) -> None:
    @app.context_processor
    def _inject_globals() -> dict:
        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {
            "has_perm": has_perm,
            "auth_state": getattr(g, "auth_state", AuthState.INITIALIZING),
            "AuthState": AuthState,
            "association_name": app.config.get("ASSOCIATION_NAME", "RUKEM"),
        }

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "—"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    app.add_template_filter(format_rupiah, "rupiah")


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return render_template("errors/500.html"), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = app.config.get("MAX_CONTENT_LENGTH", 0) // (1024 * 1024)
        flash(f"File too large. Maximum size is {limit_mb}MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("admin.index")), 302


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())

    if not app.debug and not app.testing:
        logging.basicConfig(
            level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    _check_production_config(app)
    install_csrf(app)
    _register_template_helpers(app)

    init_db(app)
    if hasattr(os, "register_at_fork"):
        def _after_fork_child():
            # Pooled connections must not be shared with the gunicorn master.
            engine = app.extensions.get("sqlalchemy_engine")
            if engine:
                engine.dispose()
                app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

        os.register_at_fork(after_in_child=_after_fork_child)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    for bp in ADMIN_BLUEPRINTS:
        app.register_blueprint(bp, url_prefix="/admin")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)
    _register_error_handlers(app)

    logger.info("create_app() complete (env=%s, association=%s)", app.config.get("ENV"), app.config.get("ASSOCIATION_NAME"))
    return app
