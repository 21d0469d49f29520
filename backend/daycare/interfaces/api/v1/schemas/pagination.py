from pydantic import BaseModel, Field, field_validator

MAX_PAGE_SIZE = 100


class PaginationParams(BaseModel):
    """Offset window and free-text search applied to payment listings."""

    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=20, ge=1, le=MAX_PAGE_SIZE)
    search: str | None = Field(default=None, max_length=100)

    @field_validator("search")
    @classmethod
    def blank_search_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class PaginationMeta(BaseModel):
    offset: int
    limit: int
    total: int
    filtered_total: int
    total_pages: int
    current_page: int
    has_next: bool
    has_prev: bool
