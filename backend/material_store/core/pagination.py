import math
from typing import Any, Dict, List, Tuple
from sqlalchemy.orm import Query
from material_store.core.config import settings


def normalize(page: int = 1, limit: int = None) -> Tuple[int, int]:
    """Clamp page/limit query values into a usable range."""
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else settings.DEFAULT_PAGE_SIZE
    return page, min(limit, settings.MAX_PAGE_SIZE)


def paginate(query: Query, page: int = 1, limit: int = None) -> Tuple[List[Any], int, int, int]:
    page, limit = normalize(page, limit)
    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, total, page, limit


def page_meta(total: int, page: int, limit: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


def paginated(data: List[Any], total: int, page: int, limit: int) -> Dict[str, Any]:
    return {"data": data, "pagination": page_meta(total, page, limit)}
