"""
Data Import Service — bulk user import from .xlsx or .csv.

Features:
  - Parse xlsx (openpyxl) or csv with columns:
    email, firstName, lastName, departmentCode, role
  - Validate email format, duplicates (file and database), department and role
  - Create valid rows, report every failed row with its errors
  - Record each run as a DataImportLog (completed / partial / failed)
  - xlsx template generation and log housekeeping
"""

import csv
import io
import json
import logging
import secrets
from datetime import datetime, timedelta, timezone

from email_validator import EmailNotValidError, validate_email
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font, PatternFill
from openpyxl.utils.exceptions import InvalidFileException

from qms.core.exceptions import ValidationError
from qms.models import db
from qms.models.admin import DataImportLog
from qms.models.audit_log import write_audit
from qms.models.auth import Role, User, UserRole
from qms.models.organization import Department
from qms.services.helpers.queries import get_or_404, paginate
from qms.utils.crypto import hash_password

logger = logging.getLogger(__name__)

IMPORT_TYPE_USERS = "users"
ALLOWED_EXTENSIONS = (".xlsx", ".csv")
DEFAULT_ROLE = "user"

TEMPLATE_HEADER = ["email", "firstName", "lastName", "departmentCode", "role"]
TEMPLATE_EXAMPLE = [
    ["jane.doe@example.com", "Jane", "Doe", "QA", "user"],
    ["john.smith@example.com", "John", "Smith", "PROD", "auditor"],
]

HEADER_FILL = PatternFill(start_color="354A5F", end_color="354A5F", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)


# ═══════════════════════════════════════════════════════════════
# Template
# ═══════════════════════════════════════════════════════════════

def generate_user_template() -> io.BytesIO:
    """xlsx template with the expected header and two example rows."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Users"
    for col, header in enumerate(TEMPLATE_HEADER, 1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        ws.column_dimensions[cell.column_letter].width = 28 if col == 1 else 18
    for row in TEMPLATE_EXAMPLE:
        ws.append(row)

    roles = wb.create_sheet("Roles")
    roles.append(["role", "description"])
    for role in Role.query_active().order_by(Role.level.desc()).all():
        roles.append([role.name, role.description])

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf


# ═══════════════════════════════════════════════════════════════
# Parsing
# ═══════════════════════════════════════════════════════════════

def _normalize_header(value) -> str:
    return str(value or "").strip().replace(" ", "").replace("_", "").lower()


_COLUMN_KEYS = {_normalize_header(h): h for h in TEMPLATE_HEADER}


def _rows_from_table(header, records) -> list[dict]:
    keys = [_COLUMN_KEYS.get(_normalize_header(h)) for h in header]
    if "email" not in keys:
        raise ValidationError(
            "File must have an 'email' column",
            details={"found": [str(h) for h in header if h is not None]},
        )
    rows = []
    for row_num, record in enumerate(records, start=2):
        values = {}
        for key, value in zip(keys, record):
            if key:
                values[key] = str(value).strip() if value is not None else ""
        if not any(values.values()):
            continue
        values["rowNum"] = row_num
        rows.append(values)
    return rows


def parse_xlsx(content: bytes) -> list[dict]:
    try:
        wb = load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, KeyError, OSError, ValueError) as exc:
        raise ValidationError(f"Could not read xlsx file: {exc}") from exc
    ws = wb.worksheets[0]
    rows = list(ws.iter_rows(values_only=True))
    wb.close()
    if not rows:
        return []
    return _rows_from_table(rows[0], rows[1:])


def parse_csv(content: bytes) -> list[dict]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ValidationError("CSV file must be UTF-8 encoded") from exc
    reader = csv.reader(io.StringIO(text))
    rows = list(reader)
    if not rows:
        return []
    return _rows_from_table(rows[0], rows[1:])


def parse_upload(filename: str, content: bytes) -> list[dict]:
    name = (filename or "").lower()
    if name.endswith(".xlsx"):
        return parse_xlsx(content)
    if name.endswith(".csv"):
        return parse_csv(content)
    raise ValidationError(
        "Unsupported file type. Upload an .xlsx or .csv file",
        details={"allowed": list(ALLOWED_EXTENSIONS)},
    )


# ═══════════════════════════════════════════════════════════════
# Validation & execution
# ═══════════════════════════════════════════════════════════════

def validate_rows(rows: list[dict]) -> dict:
    """Split rows into ``valid`` and ``errors`` without touching the database."""
    existing_emails = {e.lower() for (e,) in db.session.query(User.email).all()}
    departments = {d.code: d for d in Department.query_active().all()}
    roles = {r.name: r for r in Role.query_active().all()}

    valid, errors, seen = [], [], set()
    for row in rows:
        row_errors = []
        email = row.get("email", "")
        if not email:
            row_errors.append("Email is required")
        else:
            try:
                email = validate_email(email, check_deliverability=False).normalized
            except EmailNotValidError as e:
                row_errors.append(f"Invalid email: {e}")
            if email.lower() in seen:
                row_errors.append(f"Duplicate email in file: {email}")
            elif email.lower() in existing_emails:
                row_errors.append(f"User already exists: {email}")
            seen.add(email.lower())

        if not row.get("firstName"):
            row_errors.append("firstName is required")
        if not row.get("lastName"):
            row_errors.append("lastName is required")

        dept_code = (row.get("departmentCode") or "").upper()
        if dept_code and dept_code not in departments:
            row_errors.append(f"Unknown department code '{dept_code}'")

        role = row.get("role") or DEFAULT_ROLE
        if role not in roles:
            row_errors.append(f"Unknown role '{role}'. Available: {', '.join(sorted(roles))}")
        elif role == "superuser":
            row_errors.append("The superuser role cannot be assigned by import")

        if row_errors:
            errors.append({"row": row["rowNum"], "email": row.get("email", ""), "errors": row_errors})
        else:
            valid.append({
                "row": row["rowNum"],
                "email": email,
                "firstName": row["firstName"],
                "lastName": row["lastName"],
                "department": dept_code or None,
                "role": roles[role],
            })
    return {"valid": valid, "errors": errors}


def import_users(filename: str, content: bytes, caller) -> DataImportLog:
    """
    Full pipeline: parse → validate → create → log.

    Imported accounts get a random password; an administrator sets a real
    one through the users API.
    """
    log = DataImportLog(
        import_type=IMPORT_TYPE_USERS,
        file_name=filename,
        file_size=len(content),
        status="in_progress",
        imported_by=caller.user_id,
        ip_address=caller.ip_address,
        user_agent=caller.user_agent,
    )
    db.session.add(log)
    db.session.flush()

    try:
        rows = parse_upload(filename, content)
    except ValidationError as exc:
        return _finish(log, caller, total=0, created=0, errors=[{"row": 0, "errors": [exc.message]}])
    if not rows:
        return _finish(log, caller, total=0, created=0,
                       errors=[{"row": 0, "errors": ["File has no data rows"]}])

    result = validate_rows(rows)
    for item in result["valid"]:
        user = User(
            email=item["email"],
            password_hash=hash_password(secrets.token_urlsafe(16)),
            first_name=item["firstName"],
            last_name=item["lastName"],
            department=item["department"],
            created_by=caller.user_id,
        )
        db.session.add(user)
        db.session.flush()
        db.session.add(UserRole(user_id=user.id, role_id=item["role"].id, assigned_by=caller.user_id))
    db.session.flush()

    return _finish(log, caller, total=len(rows), created=len(result["valid"]), errors=result["errors"])


def _finish(log: DataImportLog, caller, *, total: int, created: int, errors: list) -> DataImportLog:
    log.total_rows = total
    log.success_rows = created
    log.failed_rows = len([e for e in errors if e.get("row")])
    log.error_details_json = json.dumps(errors) if errors else None
    if created and not errors:
        log.status = "completed"
    elif created:
        log.status = "partial"
    else:
        log.status = "failed"
    log.completed_at = datetime.now(timezone.utc)
    db.session.flush()

    write_audit(
        caller=caller, action="import", action_category="data_import",
        entity_type="data_import_log", entity_id=log.id, entity_identifier=log.file_name,
        description=f"User import {log.status}: {created}/{total} rows",
        new_values={"status": log.status, "successRows": created, "failedRows": log.failed_rows},
        success=log.status != "failed",
    )
    logger.info(
        "User import %s: file=%s created=%d failed=%d",
        log.status, log.file_name, created, log.failed_rows,
    )
    return log


# ═══════════════════════════════════════════════════════════════
# Logs
# ═══════════════════════════════════════════════════════════════

def list_logs(filters: dict, page: int, limit: int) -> dict:
    q = DataImportLog.query
    if filters.get("importType"):
        q = q.filter(DataImportLog.import_type == filters["importType"])
    if filters.get("status"):
        q = q.filter(DataImportLog.status == filters["status"])
    q = q.order_by(DataImportLog.started_at.desc(), DataImportLog.id.desc())
    return paginate(q, page, limit)


def get_log(log_id: int) -> DataImportLog:
    return get_or_404(DataImportLog, log_id, "Import log")


def delete_old_logs(older_than_days, caller) -> int:
    try:
        days = int(older_than_days)
    except (TypeError, ValueError):
        raise ValidationError("olderThanDays must be a positive integer") from None
    if days < 1:
        raise ValidationError("olderThanDays must be a positive integer")

    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    deleted = (
        DataImportLog.query
        .filter(DataImportLog.started_at < cutoff)
        .delete(synchronize_session=False)
    )
    write_audit(
        caller=caller, action="delete", action_category="data_import",
        entity_type="data_import_log",
        description=f"Deleted {deleted} import logs older than {days} days",
    )
    return deleted
