"""
Export Service — styled Excel workbooks for NCRs, CAPAs and improvement ideas.

Each export is one sheet of rows (built from the model's ``to_dict``) plus a
small summary sheet with status counts. Returns a BytesIO ready for
``send_file``.
"""

import io
import logging
from collections import Counter
from datetime import datetime, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from qms.models.capa import CAPA
from qms.models.improvement import ImprovementIdea
from qms.models.ncr import NCR

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)
SEVERITY_FILLS = {
    "critical": PatternFill(start_color="E74C3C", end_color="E74C3C", fill_type="solid"),
    "major": PatternFill(start_color="F39C12", end_color="F39C12", fill_type="solid"),
    "minor": PatternFill(start_color="27AE60", end_color="27AE60", fill_type="solid"),
}

# (header, to_dict key, column width)
NCR_COLUMNS = [
    ("NCR Number", "ncrNumber", 14),
    ("Title", "title", 40),
    ("Source", "source", 20),
    ("Category", "category", 22),
    ("Severity", "severity", 10),
    ("Impact Score", "impactScore", 12),
    ("Status", "status", 12),
    ("Detected", "detectedDate", 20),
    ("Reported By", "reportedByName", 20),
    ("Assigned To", "assignedToName", 20),
    ("Root Cause", "rootCause", 40),
    ("Corrective Action", "correctiveAction", 40),
    ("Closed", "closedDate", 20),
]

CAPA_COLUMNS = [
    ("CAPA Number", "capaNumber", 14),
    ("Title", "title", 40),
    ("Type", "type", 12),
    ("Priority", "priority", 10),
    ("Status", "status", 12),
    ("NCR", "ncrNumber", 14),
    ("Action Owner", "actionOwnerName", 20),
    ("Target Date", "targetDate", 12),
    ("Overdue", "isOverdue", 10),
    ("Completed", "completedDate", 20),
    ("Effectiveness", "effectiveness", 40),
    ("Closed", "closedDate", 20),
]

IDEA_COLUMNS = [
    ("Idea Number", "ideaNumber", 14),
    ("Title", "title", 40),
    ("Category", "category", 18),
    ("Impact Area", "impactArea", 18),
    ("Expected Impact", "expectedImpact", 14),
    ("Status", "status", 14),
    ("Submitted By", "submittedByName", 20),
    ("Responsible", "responsibleUserName", 20),
    ("Department", "department", 16),
    ("Submitted", "submittedDate", 20),
    ("Reviewed", "reviewedDate", 20),
    ("Implemented", "implementedDate", 20),
    ("Estimated Cost", "estimatedCost", 14),
]


def _write_header(ws, columns, row=1):
    for col, (header, _key, width) in enumerate(columns, 1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center")
        ws.column_dimensions[get_column_letter(col)].width = width


def _write_rows(ws, columns, records, start_row=2):
    for r, record in enumerate(records, start_row):
        for c, (_header, key, _width) in enumerate(columns, 1):
            value = record.get(key)
            if isinstance(value, bool):
                value = "Yes" if value else "No"
            cell = ws.cell(row=r, column=c, value=value)
            cell.border = THIN_BORDER
            if key == "severity" and value in SEVERITY_FILLS:
                cell.fill = SEVERITY_FILLS[value]
                cell.font = Font(color="FFFFFF", bold=True)


def _summary_sheet(wb, title, records):
    ws = wb.create_sheet("Summary")
    ws["A1"] = title
    ws["A1"].font = Font(size=14, bold=True)
    ws["A2"] = f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}"
    ws["A2"].font = Font(size=10, italic=True, color="666666")
    ws["A3"] = f"Total records: {len(records)}"

    _write_header(ws, [("Status", None, 20), ("Count", None, 10)], row=5)
    for i, (status, count) in enumerate(sorted(Counter(r.get("status") for r in records).items()), 6):
        ws.cell(row=i, column=1, value=status).border = THIN_BORDER
        ws.cell(row=i, column=2, value=count).border = THIN_BORDER


def _build_workbook(sheet_title, report_title, columns, records) -> io.BytesIO:
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title
    _write_header(ws, columns)
    _write_rows(ws, columns, records)
    ws.freeze_panes = "A2"
    if records:
        ws.auto_filter.ref = f"A1:{get_column_letter(len(columns))}{len(records) + 1}"
    _summary_sheet(wb, report_title, records)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    logger.info("Exported %d rows to '%s' workbook", len(records), sheet_title)
    return buf


def export_ncrs_xlsx(filters: dict | None = None) -> io.BytesIO:
    filters = filters or {}
    q = NCR.query
    for key, column in (("status", NCR.status), ("severity", NCR.severity), ("category", NCR.category)):
        if filters.get(key):
            q = q.filter(column == filters[key])
    records = [n.to_dict() for n in q.order_by(NCR.detected_date.desc(), NCR.id.asc()).all()]
    return _build_workbook("NCRs", "Non-Conformance Reports", NCR_COLUMNS, records)


def export_capas_xlsx(filters: dict | None = None) -> io.BytesIO:
    filters = filters or {}
    q = CAPA.query
    for key, column in (("status", CAPA.status), ("priority", CAPA.priority), ("type", CAPA.type)):
        if filters.get(key):
            q = q.filter(column == filters[key])
    records = [c.to_dict() for c in q.order_by(CAPA.target_date.asc(), CAPA.id.asc()).all()]
    return _build_workbook("CAPAs", "Corrective and Preventive Actions", CAPA_COLUMNS, records)


def export_ideas_xlsx(filters: dict | None = None) -> io.BytesIO:
    filters = filters or {}
    q = ImprovementIdea.query
    for key, column in (("status", ImprovementIdea.status), ("category", ImprovementIdea.category)):
        if filters.get(key):
            q = q.filter(column == filters[key])
    records = [
        i.to_dict()
        for i in q.order_by(ImprovementIdea.submitted_date.desc(), ImprovementIdea.id.asc()).all()
    ]
    return _build_workbook("Improvement Ideas", "Improvement Ideas", IDEA_COLUMNS, records)
