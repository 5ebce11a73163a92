import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query

from ..application.services.search_service import SearchService, order_to_dict
from ..core.config import settings
from ..exceptions import create_success_response
from ..infrastructure.cache.redis_cache import CacheService
from ..schemas.projects.search import OrderSearchQuery
from .deps import get_cache, get_search_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["Projects"])


@router.get("/filter")
def search_orders(
    query: Annotated[OrderSearchQuery, Query()],
    service: SearchService = Depends(get_search_service),
    cache: Optional[CacheService] = Depends(get_cache),
):
    filters = query.model_dump(mode="json")
    if cache is not None:
        cached = cache.get_search_results("orders", filters)
        if cached is not None:
            return create_success_response(cached, cached=True)

    result = service.search_orders(query.to_filters())
    data = {
        "orders": [order_to_dict(o) for o in result.orders],
        "total": result.total,
        "page": result.page,
        "pages": result.pages,
    }
    if cache is not None:
        cache.cache_search_results("orders", filters, data, ttl=settings.SEARCH_CACHE_TTL_SECONDS)
    return create_success_response(data, cached=False)


@router.get("/popular")
def popular(
    limit: int = Query(10, ge=1, le=50),
    service: SearchService = Depends(get_search_service),
):
    return create_success_response({
        "categories": service.popular_categories(limit),
        "cities": service.popular_cities(limit),
    })
