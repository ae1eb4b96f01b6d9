"""
Sequence number generator.

Generates human-readable numbers for:
  - Improvement ideas:  IDEA-{seq}   (e.g. IDEA-0001)
  - NCRs:               NCR-{seq}    (e.g. NCR-0042)
  - CAPAs:              CAPA-{seq}
  - Audits:             AUD-{seq}
  - Audit findings:     FND-{seq}

Next number = highest existing number + 1, zero-padded to 4 digits. Numbers
are globally unique; a concurrent duplicate fails on the unique index and the
request returns 409.
"""

from sqlalchemy import func

from qms.models import db
from qms.models.capa import CAPA
from qms.models.improvement import ImprovementIdea
from qms.models.internal_audit import Audit, AuditFinding
from qms.models.ncr import NCR


def _next_code(column, prefix: str, width: int = 4) -> str:
    """Generate next sequential code: {PREFIX}-{SEQ:0width}."""
    last = (
        db.session.query(func.max(column))
        .filter(column.like(f"{prefix}-%"))
        .scalar()
    )
    seq = 1
    if last:
        try:
            seq = int(last.rsplit("-", 1)[-1]) + 1
        except ValueError:
            seq = (db.session.query(func.count(column)).filter(column.like(f"{prefix}-%")).scalar() or 0) + 1
    return f"{prefix}-{seq:0{width}d}"


def generate_idea_number() -> str:
    """IDEA-0001, IDEA-0002, ..."""
    return _next_code(ImprovementIdea.idea_number, "IDEA")


def generate_ncr_number() -> str:
    return _next_code(NCR.ncr_number, "NCR")


def generate_capa_number() -> str:
    return _next_code(CAPA.capa_number, "CAPA")


def generate_audit_number() -> str:
    return _next_code(Audit.audit_number, "AUD")


def generate_finding_number() -> str:
    return _next_code(AuditFinding.finding_number, "FND")
