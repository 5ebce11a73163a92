from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from .....db.models import Order
from .....application.ports.order_repo import OrderDto, OrderRepository, SearchFilters
from .....utils import as_utc

SORT_COLUMNS = {
    "price_asc": Order.budget.asc(),
    "price_desc": Order.budget.desc(),
    "date_asc": Order.created_at.asc(),
    "date_desc": Order.created_at.desc(),
    "popularity": Order.bids_count.desc(),
}


class SqlOrderRepository(OrderRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, o: Order) -> OrderDto:
        return OrderDto(
            id=o.id,
            title=o.title,
            category=o.category,
            city=o.city,
            budget=Decimal(o.budget or 0),
            status=o.status,
            latitude=o.latitude,
            longitude=o.longitude,
            bids_count=o.bids_count,
            created_at=as_utc(o.created_at),
            customer_id=o.customer_id,
            description=o.description,
        )

    def _apply_filters(self, query, filters: SearchFilters):
        if filters.category:
            query = query.where(Order.category.in_(filters.category))
        if filters.city:
            query = query.where(Order.city.ilike(f"%{filters.city}%"))
        if filters.min_price is not None:
            query = query.where(Order.budget >= filters.min_price)
        if filters.max_price is not None:
            query = query.where(Order.budget <= filters.max_price)
        # Only active orders unless the caller asks for specific statuses
        query = query.where(Order.status.in_(filters.status or ["active"]))
        if filters.created_after:
            query = query.where(Order.created_at >= filters.created_after)
        if filters.created_before:
            query = query.where(Order.created_at <= filters.created_before)
        return query

    def search(self, filters: SearchFilters, offset: Optional[int], limit: Optional[int]) -> Tuple[List[OrderDto], int]:
        query = self._apply_filters(select(Order), filters)
        query = query.order_by(SORT_COLUMNS.get(filters.sort_by, Order.created_at.desc()), Order.id)
        if offset is not None:
            query = query.offset(offset)
        if limit is not None:
            query = query.limit(limit)
        rows = self.session.exec(query).all()

        total = self.session.exec(self._apply_filters(select(func.count()).select_from(Order), filters)).one()
        return [self._to_dto(r) for r in rows], int(total)

    def popular_categories(self, limit: int) -> List[Tuple[str, int]]:
        rows = self.session.exec(
            select(Order.category, func.count(Order.id).label("total"))
            .where(Order.status == "active")
            .group_by(Order.category)
            .order_by(func.count(Order.id).desc(), Order.category)
            .limit(limit)
        ).all()
        return [(category, int(total)) for category, total in rows]

    def popular_cities(self, limit: int) -> List[Tuple[str, int]]:
        rows = self.session.exec(
            select(Order.city, func.count(Order.id).label("total"))
            .where(Order.status == "active")
            .where(Order.city.is_not(None))
            .group_by(Order.city)
            .order_by(func.count(Order.id).desc(), Order.city)
            .limit(limit)
        ).all()
        return [(city, int(total)) for city, total in rows]
