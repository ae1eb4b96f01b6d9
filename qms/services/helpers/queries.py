"""
Query helpers shared by the list/detail services.

get_or_404:   primary-key lookup that raises NotFoundError
apply_sort:   whitelisted ORDER BY (sortBy → column mapping per model)
paginate:     count + LIMIT/OFFSET into the {data, total, page, limit} shape

Sort fields are resolved through an explicit dict per model so that a
caller-supplied ``sortBy`` can never reach the SQL text.

Usage:
    IDEA_SORT_FIELDS = {"submittedDate": ImprovementIdea.submitted_date, ...}

    q = apply_sort(q, IDEA_SORT_FIELDS, sort_by, sort_order,
                   default=("submittedDate", "DESC"))
    return paginate(q, page, limit)
"""

import logging

from sqlalchemy import select

from qms.core.exceptions import NotFoundError, ValidationError
from qms.models import db

logger = logging.getLogger(__name__)


def get_or_404(model, pk: int, resource: str):
    """Load ``model`` by primary key or raise NotFoundError(resource)."""
    obj = db.session.execute(select(model).where(model.id == pk)).scalar_one_or_none()
    if obj is None:
        raise NotFoundError(resource=resource, resource_id=pk)
    return obj


def apply_sort(query, fields: dict, sort_by: str | None, sort_order: str | None, *, default: tuple):
    """Order ``query`` by a whitelisted field.

    Args:
        fields: public sort name → column.
        sort_by / sort_order: raw request values (None → ``default``).
        default: (sort name, "ASC" | "DESC").

    Raises:
        ValidationError: unknown field or direction.
    """
    sort_by = sort_by or default[0]
    order = (sort_order or default[1]).upper()

    column = fields.get(sort_by)
    if column is None:
        raise ValidationError(
            f"Invalid sortBy field '{sort_by}'",
            details={"allowed": sorted(fields)},
        )
    if order not in ("ASC", "DESC"):
        raise ValidationError("Invalid sortOrder. Must be ASC or DESC")

    ordered = column.asc() if order == "ASC" else column.desc()
    # id as tie-breaker keeps pages stable
    return query.order_by(ordered, query.column_descriptions[0]["entity"].id.asc())


def paginate(query, page: int, limit: int) -> dict:
    """Run ``query`` as one page; returns the list envelope with model dicts."""
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    return {
        "data": [item.to_dict() for item in items],
        "total": total,
        "page": page,
        "limit": limit,
    }
