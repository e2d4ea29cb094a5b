"""
Tabular exports (CSV / Excel / PDF) of members, deaths, benefits and ledger.

Each dataset is built once as a `Report` (title, headers, rows) and then
rendered by one of the writers.
"""
from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.rukem.modules.benefits.models import BenefitClaim
from app.rukem.modules.deaths.models import DeathRecord
from app.rukem.modules.ledger.service import opening_balance, query_entries, running_balances
from app.rukem.modules.members.models import ApprovalStatus, Member
from app.rukem.utils import format_rupiah

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

DATASETS = ("members", "deaths", "benefits", "ledger")
FORMATS = {
    "csv": ("text/csv", "csv"),
    "xlsx": ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "xlsx"),
    "pdf": ("application/pdf", "pdf"),
}


@dataclass
class Report:
    name: str
    title: str
    headers: list[str]
    rows: list[list[Any]] = field(default_factory=list)
    # Index of columns holding rupiah amounts (formatted in PDF, numeric in Excel).
    money_columns: tuple[int, ...] = ()
    subtitle: str | None = None


def _d(value: date | None) -> str:
    return value.isoformat() if value else ""


def _period(start: date | None, end: date | None) -> str | None:
    if not start and not end:
        return None
    return f"Period: {_d(start) or '...'} to {_d(end) or '...'}"


def members_report(s: "Session", start: date | None = None, end: date | None = None) -> Report:
    q = s.query(Member).filter(Member.approval_status == ApprovalStatus.ACTIVE)
    if start:
        q = q.filter(Member.registered_on >= start)
    if end:
        q = q.filter(Member.registered_on <= end)
    members = q.order_by(Member.household_head_name.asc()).all()

    report = Report(
        name="members",
        title="Member List",
        headers=[
            "Member Number",
            "Household Head",
            "National ID",
            "Family Card",
            "Gender",
            "Birth Place",
            "Birth Date",
            "Address",
            "RT",
            "RW",
            "Phone",
            "Registered On",
            "Status",
        ],
        subtitle=_period(start, end),
    )
    for m in members:
        report.rows.append(
            [
                m.member_number or "",
                m.household_head_name,
                m.national_id or "",
                m.family_card_number or "",
                m.gender or "",
                m.birth_place or "",
                _d(m.birth_date),
                m.address or "",
                m.rt or "",
                m.rw or "",
                m.phone or "",
                _d(m.registered_on),
                m.lifecycle_status,
            ]
        )
    return report


def deaths_report(s: "Session", start: date | None = None, end: date | None = None) -> Report:
    q = s.query(DeathRecord)
    if start:
        q = q.filter(DeathRecord.date_of_death >= start)
    if end:
        q = q.filter(DeathRecord.date_of_death <= end)
    deaths = q.order_by(DeathRecord.date_of_death.desc()).all()

    report = Report(
        name="deaths",
        title="Death Records",
        headers=["Name", "RT/RW", "Date of Death", "Time", "Place", "Reporter", "Certificate", "Verification"],
        subtitle=_period(start, end),
    )
    for d in deaths:
        report.rows.append(
            [
                d.member.household_head_name if d.member else "",
                d.member.rt_rw if d.member else "",
                _d(d.date_of_death),
                d.time_of_death.strftime("%H:%M") if d.time_of_death else "",
                d.place_of_death or "",
                d.reporter_name or "",
                d.certificate_number or "",
                d.verification_status,
            ]
        )
    return report


def benefits_report(s: "Session", start: date | None = None, end: date | None = None) -> Report:
    q = s.query(BenefitClaim)
    if start:
        q = q.filter(BenefitClaim.created_at >= datetime.combine(start, datetime.min.time()))
    if end:
        q = q.filter(BenefitClaim.created_at <= datetime.combine(end, datetime.max.time()))
    claims = q.order_by(BenefitClaim.created_at.desc()).all()

    report = Report(
        name="benefits",
        title="Benefit Claims",
        headers=["Name", "Date of Death", "Amount", "Status", "Payment Method", "Disbursed On"],
        money_columns=(2,),
        subtitle=_period(start, end),
    )
    for c in claims:
        report.rows.append(
            [
                c.member.household_head_name if c.member else "",
                _d(c.death_record.date_of_death) if c.death_record else "",
                c.amount,
                c.status,
                c.payment_method or "",
                _d(c.disbursed_on),
            ]
        )
    return report


def ledger_report(s: "Session", start: date | None = None, end: date | None = None) -> Report:
    entries = query_entries(s, start=start, end=end).all()
    opening = opening_balance(s, start) if start else 0

    report = Report(
        name="ledger",
        title="Cash Ledger",
        headers=["Date", "Category", "Memo", "In", "Out", "Balance"],
        money_columns=(3, 4, 5),
        subtitle=_period(start, end),
    )
    for e, balance in running_balances(entries, opening=opening):
        report.rows.append(
            [
                _d(e.entry_date),
                e.category_label,
                e.memo or "",
                e.amount if e.direction == "in" else None,
                e.amount if e.direction == "out" else None,
                balance,
            ]
        )
    return report


BUILDERS = {
    "members": members_report,
    "deaths": deaths_report,
    "benefits": benefits_report,
    "ledger": ledger_report,
}


def build_report(s: "Session", dataset: str, start: date | None = None, end: date | None = None) -> Report:
    try:
        builder = BUILDERS[dataset]
    except KeyError:
        raise ValueError(f"Unknown report '{dataset}'") from None
    return builder(s, start, end)


# ---- writers ----


def to_csv(report: Report) -> bytes:
    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(report.headers)
    for row in report.rows:
        w.writerow(["" if v is None else v for v in row])
    return out.getvalue().encode("utf-8")


def to_xlsx(report: Report, association_name: str = "RUKEM") -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = report.title[:31]

    ws.append([f"{association_name} - {report.title}"])
    ws["A1"].font = Font(bold=True, size=14)
    ws.append([report.subtitle or f"Generated {date.today().isoformat()}"])
    ws.append([])

    header_row = ws.max_row + 1
    ws.append(report.headers)
    fill = PatternFill(start_color="1F4E78", end_color="1F4E78", fill_type="solid")
    for col_idx in range(1, len(report.headers) + 1):
        cell = ws.cell(row=header_row, column=col_idx)
        cell.font = Font(bold=True, color="FFFFFF")
        cell.fill = fill
        cell.alignment = Alignment(horizontal="center")

    for row in report.rows:
        ws.append(row)
    for col_idx in report.money_columns:
        for r in range(header_row + 1, ws.max_row + 1):
            ws.cell(row=r, column=col_idx + 1).number_format = "#,##0"

    for col_idx, header in enumerate(report.headers, start=1):
        width = max([len(str(header))] + [len(str(row[col_idx - 1] or "")) for row in report.rows])
        ws.column_dimensions[get_column_letter(col_idx)].width = min(width + 2, 50)

    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def to_pdf(report: Report, association_name: str = "RUKEM") -> bytes:
    buf = io.BytesIO()
    pagesize = landscape(A4) if len(report.headers) > 6 else A4
    doc = SimpleDocTemplate(
        buf,
        pagesize=pagesize,
        leftMargin=12 * mm,
        rightMargin=12 * mm,
        topMargin=12 * mm,
        bottomMargin=12 * mm,
        title=report.title,
    )
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("ReportTitle", parent=styles["Heading1"], fontSize=14, alignment=1, spaceAfter=4)
    cell_style = ParagraphStyle("Cell", parent=styles["Normal"], fontSize=8, leading=10)

    story = [
        Paragraph(f"{association_name} - {report.title}", title_style),
        Paragraph(report.subtitle or f"Generated {date.today().isoformat()}", styles["Normal"]),
        Spacer(1, 6 * mm),
    ]

    data: list[list[Any]] = [report.headers]
    for row in report.rows:
        cells = []
        for idx, v in enumerate(row):
            if idx in report.money_columns:
                cells.append("" if v is None else format_rupiah(v))
            else:
                text = "" if v is None else str(v)
                cells.append(Paragraph(text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;"), cell_style))
        data.append(cells)

    table = Table(data, repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1F4E78")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 8),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#F2F2F2")]),
            ]
            + [("ALIGN", (c, 1), (c, -1), "RIGHT") for c in report.money_columns]
        )
    )
    story.append(table)
    if not report.rows:
        story.append(Spacer(1, 4 * mm))
        story.append(Paragraph("No data for this period.", styles["Italic"]))

    doc.build(story)
    return buf.getvalue()


def render(report: Report, fmt: str, association_name: str = "RUKEM") -> tuple[bytes, str, str]:
    """Returns (data, mimetype, filename)."""
    if fmt not in FORMATS:
        raise ValueError(f"Unknown export format '{fmt}'")
    mimetype, ext = FORMATS[fmt]
    if fmt == "csv":
        data = to_csv(report)
    elif fmt == "xlsx":
        data = to_xlsx(report, association_name)
    else:
        data = to_pdf(report, association_name)
    filename = f"{report.name}_{date.today().strftime('%Y%m%d')}.{ext}"
    return data, mimetype, filename
