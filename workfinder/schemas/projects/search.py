# workfinder/schemas/projects/search.py
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Literal

from ...application.ports.order_repo import SearchFilters
from ...utils import as_utc

SortOption = Literal["price_asc", "price_desc", "date_asc", "date_desc", "popularity"]


class OrderSearchQuery(BaseModel):
    category: List[str] = []
    city: Optional[str] = Field(None, max_length=100)
    minPrice: Optional[Decimal] = Field(None, ge=0)
    maxPrice: Optional[Decimal] = Field(None, ge=0)
    status: List[str] = []
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    radius: Optional[float] = Field(None, gt=0, le=20000, description="Radius in kilometres")
    createdAfter: Optional[datetime] = None
    createdBefore: Optional[datetime] = None
    sortBy: Optional[SortOption] = None
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    @model_validator(mode="after")
    def check_price_range(self):
        if self.minPrice is not None and self.maxPrice is not None and self.minPrice > self.maxPrice:
            raise ValueError("minPrice cannot be greater than maxPrice")
        return self

    def to_filters(self) -> SearchFilters:
        return SearchFilters(
            category=self.category,
            city=self.city,
            min_price=self.minPrice,
            max_price=self.maxPrice,
            status=self.status,
            latitude=self.latitude,
            longitude=self.longitude,
            radius=self.radius,
            created_after=as_utc(self.createdAfter),
            created_before=as_utc(self.createdBefore),
            sort_by=self.sortBy,
            page=self.page,
            limit=self.limit,
        )
