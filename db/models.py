# async sqlalchemy models for postgres
# these map the crm tables the goals engine reads to python objects

from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import Column, Integer, String, DECIMAL, TIMESTAMP, ForeignKey, Index, text
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from goals.config import settings

Base = declarative_base()

# customer model - identity fields shown on the goals dashboard
class Customer(Base):
    __tablename__ = 'customers'

    customer_id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False)
    city = Column(String(100))
    state = Column(String(2))
    created_at = Column(TIMESTAMP, default=datetime.now)

    goals = relationship('CustomerGoal', back_populates='customer')
    sales = relationship('Sale', back_populates='customer')

# customer goal - yearly unit goal per customer, assigned to a seller
class CustomerGoal(Base):
    __tablename__ = 'customer_goals'

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey('customers.customer_id'), nullable=False)
    seller_id = Column(Integer, nullable=False)
    year = Column(Integer, nullable=False)
    classification = Column(String(1))  # A/B/C/I (abc curve, I = inactive)
    sales_last_year = Column(Integer, default=0)  # units sold the year before
    goal_units = Column(Integer, nullable=False, default=0)
    updated_at = Column(TIMESTAMP, default=datetime.now, onupdate=datetime.now)

    customer = relationship('Customer', back_populates='goals')

    __table_args__ = (
        Index('idx_goals_seller_year', 'seller_id', 'year', 'classification'),
    )

# sale - one invoiced line, the source of every actual
class Sale(Base):
    __tablename__ = 'sales'

    sale_id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey('customers.customer_id'), nullable=False)
    seller_id = Column(Integer, nullable=False)
    sold_at = Column(TIMESTAMP, default=datetime.now, nullable=False)
    segment = Column(String(50), nullable=False)  # product segment (machines, parts, ...)
    quantity = Column(DECIMAL(12, 2), nullable=False)

    customer = relationship('Customer', back_populates='sales')

    __table_args__ = (
        # year-to-date and month-to-date aggregates filter on these
        Index('idx_sales_customer_segment_time', 'customer_id', 'segment', 'sold_at'),
        Index('idx_sales_seller_time', 'seller_id', 'sold_at'),
    )

# database connection helpers
class Database:
    """manages async database connections"""

    def __init__(self, database_url: str = None):
        self.database_url = database_url or settings.database_url
        # create async engine with connection pooling
        self.engine = create_async_engine(
            self.database_url,
            echo=False,  # set to True to see all sql queries (useful for debugging)
            pool_size=10,  # max 10 concurrent connections
            max_overflow=20  # can create up to 20 extra connections if needed
        )
        # session factory for creating async sessions
        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

    async def ping(self) -> bool:
        """True if a trivial query goes through"""
        async with self.async_session() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1

    async def create_tables(self):
        """create all tables (usually done via migration, but useful for testing)"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """close database connections"""
        await self.engine.dispose()

# global database instance, created on first use
db = None

def get_database() -> Database:
    """get or create the global database instance"""
    global db
    if db is None:
        db = Database()
    return db
