from fastapi import Query

from daycare.interfaces.api.v1.schemas.pagination import MAX_PAGE_SIZE, PaginationParams


def get_pagination_params(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=20, ge=1, le=MAX_PAGE_SIZE),
    search: str | None = Query(default=None, max_length=100, description="Matches reference, method, payer or amount"),
) -> PaginationParams:
    return PaginationParams(offset=offset, limit=limit, search=search)
