from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from ...catalog import normalize_name
from ...external_search import ExternalSiteResolver, assign_found_categories
from ..deps import Services, require_services, require_token
from ..schemas import AssignmentRequest, ExternalSearchRequest

router = APIRouter(tags=["catalog"], dependencies=[Depends(require_token)])


@router.get("/items/uncategorized")
def list_uncategorized(
    limit: int = Query(default=30, ge=1, le=100),
    services: Services = Depends(require_services),
) -> dict[str, Any]:
    catalog = services.catalog_factory()
    items = catalog.list_uncategorized_items(limit, 0, order_by="id")
    return {
        "items": [{"id": item.id, "title": item.title} for item in items],
        "total": catalog.count_uncategorized_items(),
    }


@router.post("/external-search")
def external_search(
    payload: ExternalSearchRequest,
    services: Services = Depends(require_services),
) -> dict[str, Any]:
    catalog = services.catalog_factory()
    if payload.item_ids:
        items = [catalog.get_item(item_id) for item_id in payload.item_ids[: payload.limit]]
    else:
        items = catalog.list_uncategorized_items(payload.limit, 0, order_by="id")

    resolver = ExternalSiteResolver(
        services.client_factory(),
        fetch_timeout=services.categorizer.site_fetch_timeout,
        completion_timeout=services.categorizer.batch_completion_timeout,
    )
    try:
        guesses = resolver.check_sites_for_items(items, payload.urls, payload.instructions)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    sentinel = services.categorizer.uncategorized_slug.strip().lower()
    unmatched = normalize_name(services.categorizer.unmatched_category)
    vocabulary = [
        category.to_dict()
        for category in catalog.list_categories(include_empty=True)
        if category.slug.strip().lower() != sentinel and normalize_name(category.name) != unmatched
    ]
    return {
        "results": [guess.to_dict() for guess in guesses],
        "categories": vocabulary,
        "stats": dict(resolver.stats),
    }


@router.post("/assignments")
def assign_categories(
    payload: AssignmentRequest,
    services: Services = Depends(require_services),
) -> dict[str, Any]:
    catalog = services.catalog_factory()
    report = assign_found_categories(catalog, catalog, [(update.item_id, update.category) for update in payload.updates])
    return report.to_dict()
