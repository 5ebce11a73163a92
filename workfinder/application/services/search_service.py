import math
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ...exceptions import APIException
from ..ports.order_repo import OrderDto, OrderRepository, SearchFilters

EARTH_RADIUS_KM = 6371
SORT_OPTIONS = ("price_asc", "price_desc", "date_asc", "date_desc", "popularity")
MAX_PAGE_SIZE = 100


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def within_radius(order: OrderDto, lat: float, lon: float, radius_km: float) -> bool:
    # Orders without coordinates are never excluded by distance
    if order.latitude is None or order.longitude is None:
        return True
    return haversine_km(lat, lon, order.latitude, order.longitude) <= radius_km


@dataclass
class SearchResult:
    orders: List[OrderDto] = field(default_factory=list)
    total: int = 0
    page: int = 1
    pages: int = 0


@dataclass
class SearchService:
    repo: OrderRepository

    def search_orders(self, filters: SearchFilters) -> SearchResult:
        if filters.sort_by and filters.sort_by not in SORT_OPTIONS:
            raise APIException(status_code=400, detail=f"Invalid sort option. Must be one of: {list(SORT_OPTIONS)}", code="INVALID_SORT")
        page = max(1, filters.page or 1)
        limit = min(max(1, filters.limit or 20), MAX_PAGE_SIZE)
        offset = (page - 1) * limit

        if filters.has_location:
            # Distance is not expressible in SQL here, so filter everything then paginate
            candidates, _ = self.repo.search(filters, None, None)
            matched = [o for o in candidates if within_radius(o, filters.latitude, filters.longitude, filters.radius)]
            total = len(matched)
            orders = matched[offset:offset + limit]
        else:
            orders, total = self.repo.search(filters, offset, limit)

        return SearchResult(orders=orders, total=total, page=page, pages=math.ceil(total / limit))

    def popular_categories(self, limit: int = 10) -> List[Dict[str, Any]]:
        return [{"category": name, "count": count} for name, count in self.repo.popular_categories(limit)]

    def popular_cities(self, limit: int = 10) -> List[Dict[str, Any]]:
        return [{"city": name, "count": count} for name, count in self.repo.popular_cities(limit)]


def order_to_dict(o: OrderDto) -> Dict[str, Any]:
    return {
        "id": o.id,
        "title": o.title,
        "description": o.description,
        "category": o.category,
        "city": o.city,
        "budget": str(o.budget),
        "status": o.status,
        "latitude": o.latitude,
        "longitude": o.longitude,
        "bids_count": o.bids_count,
        "customer_id": o.customer_id,
        "created_at": o.created_at.isoformat(),
    }
