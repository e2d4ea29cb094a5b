from __future__ import annotations

import io

from flask import Blueprint, abort, current_app, g, render_template, request, send_file

from app.rukem.audit import record_event
from app.rukem.db import db_session
from app.rukem.models import User
from app.rukem.modules.reports.exporters import DATASETS, FORMATS, build_report, render
from app.rukem.modules.reports.service import dashboard_stats
from app.rukem.rbac import require_permission
from app.rukem.utils import parse_date_range

bp = Blueprint("reports", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


@bp.get("/reports")
@require_permission("reports.view")
def reports_index():
    s = db_session()
    return render_template(
        "admin/reports/index.html",
        datasets=DATASETS,
        formats=tuple(FORMATS),
        stats=dashboard_stats(s),
    )


@bp.get("/reports/<dataset>.<fmt>")
@require_permission("reports.export")
def reports_export(dataset: str, fmt: str):
    if dataset not in DATASETS or fmt not in FORMATS:
        abort(404)
    s = db_session()
    u = _current_user()
    start, end = parse_date_range(request.args.get("start"), request.args.get("end"))

    report = build_report(s, dataset, start, end)
    data, mimetype, filename = render(report, fmt, current_app.config.get("ASSOCIATION_NAME", "RUKEM"))

    record_event(
        s,
        actor=u,
        action=f"report.export_{fmt}",
        entity_type=dataset,
        entity_id="export",
        metadata={"start": start, "end": end, "row_count": len(report.rows)},
    )
    s.commit()

    current_app.logger.info("Export %s.%s rows=%s user_id=%s", dataset, fmt, len(report.rows), u.id)
    return send_file(
        io.BytesIO(data),
        mimetype=mimetype,
        as_attachment=True,
        download_name=filename,
        max_age=0,
    )
