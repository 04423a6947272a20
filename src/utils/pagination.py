"""
Page/limit pagination helpers shared by list endpoints
"""

import math
from typing import Any, Dict

from fastapi import Query
from pydantic import BaseModel, Field


class PageParams(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def page_params(
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: int = Query(20, ge=1, le=100, description="Items per page")
) -> PageParams:
    """FastAPI dependency reading page/limit from the query string"""
    return PageParams(page=page, limit=limit)


def build_page_info(params: PageParams, total: int) -> Dict[str, Any]:
    """Pagination block returned alongside list data"""
    return {
        "page": params.page,
        "limit": params.limit,
        "total": total,
        "pages": math.ceil(total / params.limit) if total else 0
    }
