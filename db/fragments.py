# sql side of the goals tiers - one query set per staleness class
# these are the compute callbacks the tier caches wrap; they only read

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, func, select

from db.models import Customer, CustomerGoal, Sale, Database, get_database
from goals.config import settings
from goals.scope import GoalsScope
from goals.tiers import TierFragment


def _goal_filters(scope: GoalsScope):
    filters = [
        CustomerGoal.seller_id == scope.seller_id,
        CustomerGoal.year == scope.year,
    ]
    if scope.classification:
        filters.append(CustomerGoal.classification == scope.classification)
    return filters


def _year_window(year: int):
    return datetime(year, 1, 1), datetime(year + 1, 1, 1)


def _month_window(year: int, month: int):
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


class SqlFragmentSource:
    """
    computes the static / periodic / live fragments from postgres,
    plus the uncached single-customer and ranking reads

    every method takes a scope and returns a TierFragment keyed by customer_id
    """

    def __init__(self, database: Optional[Database] = None, segment: str = None):
        """
        args:
            database: async database (default: global instance)
            segment: product segment counted as sales (default from settings)
        """
        self._database = database
        self.segment = segment or settings.sales_segment

    @property
    def database(self) -> Database:
        if self._database is None:
            self._database = get_database()
        return self._database

    async def static_fragment(self, scope: GoalsScope) -> TierFragment:
        """customers, classification and yearly goal - rarely changes"""
        query = select(
            CustomerGoal.customer_id,
            Customer.name,
            Customer.city,
            Customer.state,
            CustomerGoal.classification,
            CustomerGoal.sales_last_year,
            CustomerGoal.goal_units,
        ).join(
            Customer, Customer.customer_id == CustomerGoal.customer_id
        ).where(
            and_(*_goal_filters(scope))
        ).order_by(
            CustomerGoal.goal_units.desc()
        )

        async with self.database.async_session() as session:
            rows = (await session.execute(query)).all()

        entities = {}
        for row in rows:
            entities[row.customer_id] = {
                'name': row.name,
                'city': row.city,
                'state': row.state,
                'classification': row.classification,
                'last_year_actual': int(row.sales_last_year or 0),
                'target': int(row.goal_units or 0),
            }

        return TierFragment(
            entities=entities,
            summary={'total_customers': len(entities)}
        )

    async def periodic_fragment(self, scope: GoalsScope) -> TierFragment:
        """year-to-date units and last purchase per customer, any seller - changes daily"""
        year_start, year_end = _year_window(scope.year)

        sold_ytd = select(
            Sale.customer_id,
            func.sum(Sale.quantity).label('actual')
        ).where(
            and_(
                Sale.segment == self.segment,
                Sale.sold_at >= year_start,
                Sale.sold_at < year_end
            )
        ).group_by(Sale.customer_id).subquery()

        last_purchase = select(
            Sale.customer_id,
            func.max(Sale.sold_at).label('last_purchase_date')
        ).where(
            Sale.segment == self.segment
        ).group_by(Sale.customer_id).subquery()

        query = select(
            CustomerGoal.customer_id,
            func.coalesce(sold_ytd.c.actual, 0).label('actual'),
            last_purchase.c.last_purchase_date,
        ).outerjoin(
            sold_ytd, sold_ytd.c.customer_id == CustomerGoal.customer_id
        ).outerjoin(
            last_purchase, last_purchase.c.customer_id == CustomerGoal.customer_id
        ).where(
            and_(*_goal_filters(scope))
        )

        async with self.database.async_session() as session:
            rows = (await session.execute(query)).all()

        entities = {}
        total_actual = 0
        for row in rows:
            actual = int(row.actual or 0)
            last_date = row.last_purchase_date
            entities[row.customer_id] = {
                'actual': actual,
                'last_purchase_date': last_date.date() if last_date else None,
            }
            total_actual += actual

        return TierFragment(
            entities=entities,
            summary={'total_actual': total_actual}
        )

    async def live_fragment(self, scope: GoalsScope) -> TierFragment:
        """units this seller sold in the scope's month - changes with every sale"""
        month_start, month_end = _month_window(scope.year, scope.month)

        sold_month = select(
            Sale.customer_id,
            func.sum(Sale.quantity).label('sub_actual')
        ).where(
            and_(
                Sale.seller_id == scope.seller_id,
                Sale.segment == self.segment,
                Sale.sold_at >= month_start,
                Sale.sold_at < month_end
            )
        ).group_by(Sale.customer_id).subquery()

        query = select(
            CustomerGoal.customer_id,
            func.coalesce(sold_month.c.sub_actual, 0).label('sub_actual'),
        ).outerjoin(
            sold_month, sold_month.c.customer_id == CustomerGoal.customer_id
        ).where(
            and_(*_goal_filters(scope))
        )

        async with self.database.async_session() as session:
            rows = (await session.execute(query)).all()

        entities = {}
        active = 0
        total_sub_actual = 0
        for row in rows:
            sub_actual = int(row.sub_actual or 0)
            entities[row.customer_id] = {'sub_actual': sub_actual}
            if sub_actual > 0:
                active += 1
                total_sub_actual += sub_actual

        return TierFragment(
            entities=entities,
            summary={
                'total_customers': len(entities),
                'active_customers': active,
                'total_sub_actual': total_sub_actual,
            }
        )

    async def customer_goal(self, customer_id: int, year: int, month: int) -> Optional[Dict[str, Any]]:
        """one customer's goal row with year and month sales, None if it has no goal that year"""
        year_start, year_end = _year_window(year)
        month_start, month_end = _month_window(year, month)

        sold_ytd = select(
            Sale.customer_id,
            func.sum(Sale.quantity).label('actual')
        ).where(
            and_(
                Sale.customer_id == customer_id,
                Sale.segment == self.segment,
                Sale.sold_at >= year_start,
                Sale.sold_at < year_end
            )
        ).group_by(Sale.customer_id).subquery()

        # month figures count the goal owner's sales only, same as the live tier
        sold_month = select(
            Sale.customer_id,
            Sale.seller_id,
            func.sum(Sale.quantity).label('sub_actual')
        ).where(
            and_(
                Sale.customer_id == customer_id,
                Sale.segment == self.segment,
                Sale.sold_at >= month_start,
                Sale.sold_at < month_end
            )
        ).group_by(Sale.customer_id, Sale.seller_id).subquery()

        query = select(
            CustomerGoal.customer_id,
            Customer.name,
            Customer.city,
            CustomerGoal.seller_id,
            CustomerGoal.classification,
            CustomerGoal.sales_last_year,
            CustomerGoal.goal_units,
            func.coalesce(sold_ytd.c.actual, 0).label('actual'),
            func.coalesce(sold_month.c.sub_actual, 0).label('sub_actual'),
        ).join(
            Customer, Customer.customer_id == CustomerGoal.customer_id
        ).outerjoin(
            sold_ytd, sold_ytd.c.customer_id == CustomerGoal.customer_id
        ).outerjoin(
            sold_month, and_(
                sold_month.c.customer_id == CustomerGoal.customer_id,
                sold_month.c.seller_id == CustomerGoal.seller_id
            )
        ).where(
            and_(
                CustomerGoal.customer_id == customer_id,
                CustomerGoal.year == year
            )
        ).order_by(CustomerGoal.id).limit(1)

        async with self.database.async_session() as session:
            row = (await session.execute(query)).first()

        if row is None:
            return None
        return {
            'entity_id': row.customer_id,
            'name': row.name,
            'city': row.city,
            'seller_id': row.seller_id,
            'classification': row.classification,
            'last_year_actual': int(row.sales_last_year or 0),
            'target': int(row.goal_units or 0),
            'actual': int(row.actual or 0),
            'sub_actual': int(row.sub_actual or 0),
        }

    async def goal_rows(self, year: int, seller_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """goal and year-to-date units of every customer with a goal that year (optionally one seller's)"""
        year_start, year_end = _year_window(year)

        sold_ytd = select(
            Sale.customer_id,
            func.sum(Sale.quantity).label('actual')
        ).where(
            and_(
                Sale.segment == self.segment,
                Sale.sold_at >= year_start,
                Sale.sold_at < year_end
            )
        ).group_by(Sale.customer_id).subquery()

        filters = [CustomerGoal.year == year]
        if seller_id is not None:
            filters.append(CustomerGoal.seller_id == seller_id)

        query = select(
            CustomerGoal.customer_id,
            Customer.name,
            CustomerGoal.seller_id,
            CustomerGoal.classification,
            CustomerGoal.goal_units,
            func.coalesce(sold_ytd.c.actual, 0).label('actual'),
        ).join(
            Customer, Customer.customer_id == CustomerGoal.customer_id
        ).outerjoin(
            sold_ytd, sold_ytd.c.customer_id == CustomerGoal.customer_id
        ).where(
            and_(*filters)
        )

        async with self.database.async_session() as session:
            rows = (await session.execute(query)).all()

        return [
            {
                'entity_id': row.customer_id,
                'name': row.name,
                'seller_id': row.seller_id,
                'classification': row.classification,
                'target': int(row.goal_units or 0),
                'actual': int(row.actual or 0),
            }
            for row in rows
        ]
