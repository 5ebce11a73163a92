from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple


@dataclass
class SearchFilters:
    category: List[str] = field(default_factory=list)
    city: Optional[str] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    status: List[str] = field(default_factory=list)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius: Optional[float] = None  # km
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    sort_by: Optional[str] = None
    page: int = 1
    limit: int = 20

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None and bool(self.radius)


@dataclass
class OrderDto:
    id: str
    title: str
    category: str
    city: Optional[str]
    budget: Decimal
    status: str
    latitude: Optional[float]
    longitude: Optional[float]
    bids_count: int
    created_at: datetime
    customer_id: Optional[str] = None
    description: Optional[str] = None


class OrderRepository:
    def search(self, filters: SearchFilters, offset: Optional[int], limit: Optional[int]) -> Tuple[List[OrderDto], int]:
        """offset/limit of None returns every matching row."""
        ...

    def popular_categories(self, limit: int) -> List[Tuple[str, int]]:
        ...

    def popular_cities(self, limit: int) -> List[Tuple[str, int]]:
        ...
