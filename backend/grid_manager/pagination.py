from __future__ import annotations

from dataclasses import dataclass

from grid_manager.validation import ValidationError


DEFAULT_LIMIT = 10
MAX_LIMIT = 100


@dataclass(frozen=True)
class PageParams:
    page: int = 1
    limit: int = DEFAULT_LIMIT
    sort_by: str = "created_at"
    sort_order: str = "desc"
    search: str | None = None

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def _int_arg(args, name: str, default: int) -> int:
    raw = args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def parse_page_params(args, *, sortable, default_sort: str = "created_at", default_order: str = "desc") -> PageParams:
    """
    Read page/limit/sort_by/sort_order/search from request args.

    page is clamped to >= 1 and limit to 1..100. sort_by must be one of the
    sortable keys; anything else is a ValidationError rather than a silent
    fallback.
    """
    page = max(1, _int_arg(args, "page", 1))
    limit = min(MAX_LIMIT, max(1, _int_arg(args, "limit", DEFAULT_LIMIT)))

    sort_by = args.get("sort_by") or default_sort
    if sort_by not in sortable:
        raise ValidationError(
            f"sort_by must be one of: {', '.join(sorted(sortable))}",
            details={"field": "sort_by", "allowed": sorted(sortable)},
        )

    sort_order = (args.get("sort_order") or default_order).lower()
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sort_order must be asc or desc")

    search = (args.get("search") or "").strip() or None

    return PageParams(page=page, limit=limit, sort_by=sort_by, sort_order=sort_order, search=search)


def paginate(query, params: PageParams, *, sortable) -> dict:
    """
    Apply ordering and offset/limit to query and build the list envelope:

        {"items": [...], "count": n, "pagination": {...}}

    A secondary order on the model id keeps pages stable when the sort
    column has ties.
    """
    column = sortable[params.sort_by]
    ordering = column.desc() if params.sort_order == "desc" else column.asc()

    total = query.order_by(None).count()
    total_pages = (total + params.limit - 1) // params.limit if total > 0 else 1

    entity = query.column_descriptions[0]["entity"]
    rows = (
        query.order_by(ordering, entity.id.desc() if params.sort_order == "desc" else entity.id.asc())
        .offset(params.offset)
        .limit(params.limit)
        .all()
    )

    return {
        "items": [row.to_dict() for row in rows],
        "count": len(rows),
        "pagination": {
            "page": params.page,
            "limit": params.limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": params.page < total_pages,
            "has_prev": params.page > 1,
        },
    }
