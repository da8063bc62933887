import re
from datetime import date
from io import BytesIO

from flask import Blueprint, jsonify, request, send_file

from app.kithul.db import db_session
from app.kithul.errors import ValidationError
from app.kithul.rbac import require_auth
from app.kithul.utils import parse_date

from . import service

bp = Blueprint("reports", __name__)

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _report_date() -> date:
    raw = (request.args.get("date") or "").strip()
    if not raw:
        return date.today()
    day = parse_date(raw) if DATE_RE.match(raw) else None
    if day is None:
        raise ValidationError("Invalid date", details={"date": "must be in YYYY-MM-DD format"})
    return day


@bp.get("/daily")
@require_auth
def daily():
    return jsonify(service.daily_report(db_session(), _report_date()))


@bp.get("/daily.xlsx")
@require_auth
def daily_xlsx():
    report = service.daily_report(db_session(), _report_date())
    data = service.report_workbook_bytes(report)
    return send_file(
        BytesIO(data),
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=f"daily-report-{report['date']}.xlsx",
    )
