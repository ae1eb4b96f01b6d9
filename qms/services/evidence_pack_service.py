"""
Evidence Pack Service — PDF bundle of QMS records for external auditors.

Layout:
    cover page → table of contents → one section per included record set
    (NCRs, CAPAs, audits, improvement ideas) → summary statistics

Record sets are filtered by an optional inclusive date range. Rendering
uses the reportlab canvas directly; ``_PdfWriter`` keeps the cursor and
starts a new page when the bottom margin is reached.
"""

import io
import logging
from collections import OrderedDict
from datetime import date, datetime, time, timezone

from reportlab.lib.pagesizes import letter
from reportlab.pdfgen import canvas
from sqlalchemy import func

from qms.core.exceptions import ValidationError
from qms.models import db
from qms.models.capa import CAPA
from qms.models.improvement import ImprovementIdea
from qms.models.internal_audit import Audit, AuditFinding
from qms.models.ncr import IMPACT_SCORES, NCR
from qms.utils.helpers import parse_bool, parse_date

logger = logging.getLogger(__name__)

MARGIN = 50
TITLE_COLOR = (0.17, 0.24, 0.31)
RULE_COLOR = (0.20, 0.60, 0.86)

OPTION_FLAGS = OrderedDict([
    ("includeNCRs", "Non-Conformance Reports"),
    ("includeCAPAs", "Corrective & Preventive Actions"),
    ("includeAudits", "Audit Records"),
    ("includeImprovementIdeas", "Improvement Ideas"),
])


def get_options() -> dict:
    """Describe the generation options for clients."""
    return {
        "options": [
            {"name": flag, "label": label, "type": "boolean", "default": True}
            for flag, label in OPTION_FLAGS.items()
        ] + [
            {"name": "startDate", "label": "Start date", "type": "date", "default": None},
            {"name": "endDate", "label": "End date", "type": "date", "default": None},
        ],
        "format": "pdf",
    }


def parse_options(data: dict) -> dict:
    """Normalise request options; dates are inclusive calendar days."""
    options = {flag: parse_bool(data.get(flag), default=True) for flag in OPTION_FLAGS}

    start = end = None
    if data.get("startDate"):
        start = parse_date(data["startDate"])
        if start is None:
            raise ValidationError("startDate must be a valid date")
    if data.get("endDate"):
        end = parse_date(data["endDate"])
        if end is None:
            raise ValidationError("endDate must be a valid date")
    if start and end and start > end:
        raise ValidationError("startDate must be before endDate")
    options["startDate"] = start
    options["endDate"] = end
    return options


def pack_filename(today: date | None = None) -> str:
    return f"QMS_Evidence_Pack_{(today or date.today()).isoformat()}.pdf"


def _fmt(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _clip(text, limit=90) -> str:
    text = str(text or "")
    return text if len(text) <= limit else text[: limit - 3] + "..."


class _PdfWriter:
    """Cursor-tracking wrapper around a reportlab canvas."""

    def __init__(self, buffer):
        self.pdf = canvas.Canvas(buffer, pagesize=letter)
        self.pdf.setTitle("QMS Evidence Pack")
        self.pdf.setAuthor("QMS Platform")
        self.pdf.setSubject("Quality Management System Evidence Pack for External Audit")
        self.width, self.height = letter
        self.y = self.height - MARGIN
        self.page = 1

    def new_page(self):
        self.pdf.showPage()
        self.page += 1
        self.y = self.height - MARGIN

    def _ensure(self, needed: float):
        if self.y - needed < MARGIN:
            self.new_page()

    def line(self, text: str, size: int = 10, font: str = "Helvetica", indent: float = 0, gap: float = 4):
        self._ensure(size + gap)
        self.pdf.setFont(font, size)
        self.pdf.drawString(MARGIN + indent, self.y, _clip(text, 110 - int(indent / 5)))
        self.y -= size + gap

    def centered(self, text: str, size: int, font: str = "Helvetica"):
        self._ensure(size + 6)
        self.pdf.setFont(font, size)
        self.pdf.drawCentredString(self.width / 2, self.y, text)
        self.y -= size + 10

    def space(self, amount: float = 10):
        self.y -= amount

    def section_header(self, title: str):
        self._ensure(60)
        self.pdf.setFillColorRGB(*TITLE_COLOR)
        self.pdf.setFont("Helvetica-Bold", 18)
        self.pdf.drawString(MARGIN, self.y, title)
        self.pdf.setFillColorRGB(0, 0, 0)
        self.y -= 10
        self.pdf.setStrokeColorRGB(*RULE_COLOR)
        self.pdf.setLineWidth(2)
        self.pdf.line(MARGIN, self.y, self.width - MARGIN, self.y)
        self.y -= 24

    def save(self):
        self.pdf.showPage()
        self.pdf.save()


# ═══════════════════════════════════════════════════════════════
# Data
# ═══════════════════════════════════════════════════════════════

def _date_window(query, column, start, end, is_date_column=False):
    if start:
        query = query.filter(column >= (start if is_date_column else datetime.combine(start, time.min)))
    if end:
        query = query.filter(column <= (end if is_date_column else datetime.combine(end, time.max)))
    return query


def _group(items, key):
    grouped = OrderedDict()
    for item in items:
        grouped.setdefault(getattr(item, key) or "unspecified", []).append(item)
    return grouped


def _load_ncrs(start, end):
    q = _date_window(NCR.query, NCR.detected_date, start, end)
    return q.order_by(NCR.severity, NCR.status, NCR.detected_date.desc()).all()


def _load_capas(start, end):
    q = _date_window(CAPA.query, CAPA.created_at, start, end)
    return q.order_by(CAPA.priority, CAPA.status, CAPA.target_date).all()


def _load_audits(start, end):
    q = _date_window(Audit.query, Audit.scheduled_date, start, end, is_date_column=True)
    return q.order_by(Audit.scheduled_date.desc()).all()


def _load_ideas(start, end):
    q = _date_window(ImprovementIdea.query, ImprovementIdea.submitted_date, start, end)
    return q.order_by(ImprovementIdea.status, ImprovementIdea.submitted_date.desc()).all()


# ═══════════════════════════════════════════════════════════════
# Sections
# ═══════════════════════════════════════════════════════════════

def _cover(w: _PdfWriter, start, end):
    w.space(120)
    w.centered("QMS Evidence Pack", 24, "Helvetica-Bold")
    w.space(20)
    w.centered("Quality Management System", 16)
    w.centered("Evidence Pack for External Audit", 14)
    w.space(60)
    w.line("Report Period:", 12, "Helvetica-Bold")
    w.line(f"From: {_fmt(start)}" if start else "From: System inception", 11)
    w.line(f"To: {_fmt(end or date.today())}", 11)
    w.space(20)
    w.line(f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}", 11)
    w.space(80)
    w.centered(
        "This document contains confidential information and is intended for authorized personnel only.",
        9, "Helvetica-Oblique",
    )


def _toc(w: _PdfWriter, titles):
    w.section_header("Table of Contents")
    for title in titles:
        w.line(title, 12, indent=10, gap=8)


def _ncr_section(w: _PdfWriter, title, ncrs):
    w.section_header(title)
    w.line(f"Total NCRs: {len(ncrs)}", 12, "Helvetica-Bold", gap=10)
    for severity, items in _group(ncrs, "severity").items():
        w.line(f"Severity: {severity.upper()} ({len(items)})", 11, "Helvetica-Bold", gap=6)
        for ncr in items:
            w.line(f"- {ncr.ncr_number}: {ncr.title}", 10, "Helvetica-Bold", indent=20)
            w.line(f"Status: {ncr.status} | Category: {ncr.category} | Source: {ncr.source}", 9, indent=30)
            w.line(f"Detected: {_fmt(ncr.detected_date)}"
                   + (f" | Closed: {_fmt(ncr.closed_date)}" if ncr.closed_date else ""), 9, indent=30, gap=8)
        w.space(6)


def _capa_section(w: _PdfWriter, title, capas):
    w.section_header(title)
    w.line(f"Total CAPAs: {len(capas)}", 12, "Helvetica-Bold", gap=10)
    for priority, items in _group(capas, "priority").items():
        w.line(f"Priority: {priority.upper()} ({len(items)})", 11, "Helvetica-Bold", gap=6)
        for capa in items:
            w.line(f"- {capa.capa_number}: {capa.title}", 10, "Helvetica-Bold", indent=20)
            w.line(f"Status: {capa.status} | Type: {capa.type} | Source: {capa.source}", 9, indent=30)
            w.line(f"Target Date: {_fmt(capa.target_date)}"
                   + (f" | Completed: {_fmt(capa.completed_date)}" if capa.completed_date else ""),
                   9, indent=30, gap=8)
        w.space(6)


def _audit_section(w: _PdfWriter, title, audits):
    w.section_header(title)
    w.line(f"Total Audits: {len(audits)}", 12, "Helvetica-Bold", gap=10)
    for audit in audits:
        findings = list(audit.finding_items)
        w.line(f"- {audit.audit_number}: {audit.title}", 10, "Helvetica-Bold", indent=20)
        w.line(f"Type: {audit.audit_type} | Status: {audit.status} | Scheduled: {_fmt(audit.scheduled_date)}",
               9, indent=30)
        w.line(f"Findings: {len(findings)}"
               + (f" | Completed: {_fmt(audit.completed_date)}" if audit.completed_date else ""), 9, indent=30)
        for finding in findings:
            w.line(f"{finding.finding_number} [{finding.severity}] {finding.title} ({finding.status})",
                   8, indent=40)
        w.space(6)


def _idea_section(w: _PdfWriter, title, ideas):
    w.section_header(title)
    w.line(f"Total Improvement Ideas: {len(ideas)}", 12, "Helvetica-Bold", gap=10)
    for status, items in _group(ideas, "status").items():
        w.line(f"Status: {status.upper()} ({len(items)})", 11, "Helvetica-Bold", gap=6)
        for idea in items:
            w.line(f"- {idea.idea_number}: {idea.title}", 10, "Helvetica-Bold", indent=20)
            w.line(f"Category: {idea.category or '-'} | Impact: {idea.expected_impact or '-'}"
                   f" | Submitted: {_fmt(idea.submitted_date)}", 9, indent=30, gap=8)
        w.space(6)


def _summary(w: _PdfWriter, title):
    w.section_header(title)

    def counts(model, column):
        return dict(db.session.query(column, func.count(model.id)).group_by(column).all())

    ncr_sev = counts(NCR, NCR.severity)
    rows = [
        ("Non-Conformance Reports", sum(ncr_sev.values())),
        ("NCR impact score", sum(IMPACT_SCORES.get(k, 0) * v for k, v in ncr_sev.items())),
        ("Open NCRs", NCR.query.filter(NCR.status.in_(("open", "in_progress"))).count()),
        ("CAPAs", CAPA.query.count()),
        ("Open CAPAs", CAPA.query.filter(CAPA.status.in_(("open", "in_progress"))).count()),
        ("Overdue CAPAs", CAPA.query.filter(
            CAPA.target_date < date.today(), CAPA.status.in_(("open", "in_progress"))).count()),
        ("Audits", Audit.query.count()),
        ("Audit findings", AuditFinding.query.count()),
        ("Improvement ideas", ImprovementIdea.query.count()),
        ("Implemented ideas", ImprovementIdea.query.filter(
            ImprovementIdea.status.in_(("implemented", "closed"))).count()),
    ]
    for label, value in rows:
        w.line(f"{label}: {value}", 11, indent=10, gap=8)

    w.space(10)
    w.line("NCRs by severity", 12, "Helvetica-Bold", gap=8)
    for severity in ("critical", "major", "minor"):
        w.line(f"{severity}: {ncr_sev.get(severity, 0)}", 10, indent=20)


_SECTIONS = OrderedDict([
    ("includeNCRs", (_load_ncrs, _ncr_section)),
    ("includeCAPAs", (_load_capas, _capa_section)),
    ("includeAudits", (_load_audits, _audit_section)),
    ("includeImprovementIdeas", (_load_ideas, _idea_section)),
])


def generate_evidence_pack(options: dict) -> bytes:
    """Render the evidence pack PDF for parsed ``options``; returns the PDF bytes."""
    start, end = options.get("startDate"), options.get("endDate")
    included = [flag for flag in _SECTIONS if options.get(flag, True)]

    titles = [f"{i}. {OPTION_FLAGS[flag]}" for i, flag in enumerate(included, 1)]
    titles.append(f"{len(included) + 1}. Summary Statistics")

    buf = io.BytesIO()
    writer = _PdfWriter(buf)
    _cover(writer, start, end)
    writer.new_page()
    _toc(writer, titles)

    counts = {}
    for flag, title in zip(included, titles):
        loader, renderer = _SECTIONS[flag]
        records = loader(start, end)
        counts[flag] = len(records)
        writer.new_page()
        renderer(writer, title, records)

    writer.new_page()
    _summary(writer, titles[-1])
    writer.save()

    logger.info(
        "Evidence pack generated",
        extra={"sections": included, "records": counts, "pages": writer.page},
    )
    return buf.getvalue()
