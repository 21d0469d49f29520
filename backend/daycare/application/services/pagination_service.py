from math import ceil
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from daycare.interfaces.api.v1.schemas.pagination import PaginationMeta


def _count(db: Session, query: Select) -> int:
    return db.execute(select(func.count()).select_from(query.order_by(None).subquery())).scalar_one()


def paginate_scalars(
    db: Session,
    base_query: Select,
    *,
    offset: int,
    limit: int,
    search: str | None,
    search_columns: list[Any],
) -> tuple[list[Any], PaginationMeta]:
    filtered_query = base_query
    if search and search_columns:
        filtered_query = base_query.where(or_(*(column.ilike(f"%{search}%") for column in search_columns)))

    total = _count(db, base_query)
    filtered_total = _count(db, filtered_query)
    items = list(db.execute(filtered_query.offset(offset).limit(limit)).scalars().all())

    meta = PaginationMeta(
        offset=offset,
        limit=limit,
        total=total,
        filtered_total=filtered_total,
        total_pages=ceil(filtered_total / limit) if filtered_total else 0,
        current_page=(offset // limit) + 1 if filtered_total else 0,
        has_next=(offset + limit) < filtered_total,
        has_prev=offset > 0,
    )
    return items, meta
