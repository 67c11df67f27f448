# fastapi application - rest api for customer goals
# provides /goals/seller/{id} for the per-customer goals dashboard

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from contextlib import asynccontextmanager
from datetime import date
import asyncio
import uvicorn

from goals.config import settings
from goals.logger import get_logger
from goals.pipeline import CustomerGoalsEngine, build_engine
from goals.ranking import DEFAULT_ORDERING, UnknownOrderingError
from goals.scope import GoalsScope, InvalidScopeError
from worker.cache_sweeper import CacheSweeper

logger = get_logger("api")

# pydantic models for response validation
class GoalsResponse(BaseModel):
    """response from /goals/seller/{seller_id}"""
    seller_id: int
    year: int
    month: int
    classification: Optional[str] = None
    entities: List[Dict[str, Any]] = Field(..., description="customers in rank order (current page)")
    summary: Dict[str, Any] = Field(..., description="totals over all customers in scope")
    ranking: Dict[str, Any] = Field(..., description="comparator used and rank of every customer")
    tier_summaries: Dict[str, Dict[str, Any]] = Field(..., description="tier-level totals as computed")
    cache: Dict[str, Any] = Field(..., description="hit/miss and failure diagnostics per tier")

class CustomerGoalResponse(BaseModel):
    """response from /goals/customer/{customer_id}"""
    year: int
    month: int
    goal: Dict[str, Any] = Field(..., description="goal, sales, derived fields and status")

class RankingResponse(BaseModel):
    """response from /goals/ranking"""
    year: int
    seller_id: Optional[int] = None
    order_by: str
    total: int = Field(..., description="customers ranked before the limit")
    ranking: List[Dict[str, Any]]

class InvalidateResponse(BaseModel):
    """response from /goals/seller/{seller_id}/invalidate"""
    seller_id: int
    invalidated: int

class HealthResponse(BaseModel):
    """response from /health endpoint"""
    status: str
    database_connected: bool
    cache: Dict[str, Any]

# process-lifetime engine and sweeper, built on first use
engine = None
sweeper = None

def get_engine() -> CustomerGoalsEngine:
    """
    get or create the global engine
    the tier cache lives as long as the process
    """
    global engine
    if engine is None:
        from db.fragments import SqlFragmentSource
        engine = build_engine(SqlFragmentSource(), settings)
    return engine

def get_sweeper() -> CacheSweeper:
    """get or create the sweeper for the engine's cache"""
    global sweeper
    if sweeper is None:
        sweeper = CacheSweeper(get_engine().static.cache, interval_seconds=settings.cache_sweep_interval)
    return sweeper

@asynccontextmanager
async def lifespan(app: FastAPI):
    """start the cache sweeper on startup, stop it on shutdown"""
    logger.info("🚀 starting customer goals api...")
    get_engine()
    task = asyncio.create_task(get_sweeper().start())
    yield
    logger.info("👋 shutting down...")
    get_sweeper().stop()
    task.cancel()

# create fastapi app
app = FastAPI(
    title="Customer Goals API",
    description="Per-customer goal tracking over tiered, cached sales aggregates",
    version="1.0.0",
    lifespan=lifespan
)

@app.get("/", tags=["root"])
async def root():
    """api root - basic info"""
    return {
        "service": "Customer Goals",
        "version": "1.0.0",
        "endpoints": {
            "goals": "/goals/seller/{seller_id} - customer goals for a seller",
            "invalidate": "/goals/seller/{seller_id}/invalidate - drop cached goals",
            "customer": "/goals/customer/{customer_id} - one customer's goal",
            "ranking": "/goals/ranking - customers ranked by goal achievement",
            "health": "/health - health check",
            "docs": "/docs - api documentation"
        }
    }

@app.get("/health", response_model=HealthResponse, tags=["monitoring"])
async def health_check(engine: CustomerGoalsEngine = Depends(get_engine)):
    """
    health check endpoint
    verifies the database is reachable and reports cache stats
    """
    from db.models import get_database

    db_connected = True
    try:
        db_connected = await get_database().ping()
    except Exception as e:
        db_connected = False
        logger.warning(f"⚠️  database health check failed: {e}")

    return HealthResponse(
        status="healthy" if db_connected else "degraded",
        database_connected=db_connected,
        cache=engine.static.cache.stats()
    )

@app.get("/goals/seller/{seller_id}", response_model=GoalsResponse, tags=["goals"])
async def get_seller_goals(
    seller_id: int,
    year: Optional[int] = None,
    month: Optional[int] = None,
    classification: Optional[str] = None,
    order_by: str = DEFAULT_ORDERING,
    limit: Optional[int] = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    engine: CustomerGoalsEngine = Depends(get_engine)
):
    """
    customer goals for a seller

    - static data (customers, goals, class) cached 30 min
    - year-to-date sales cached 10 min
    - current month sales cached 1 min
    - a failing tier blanks its fields and is listed in cache.failed_tiers

    example:
        curl "http://localhost:8000/goals/seller/7?year=2026&month=3&order_by=attention"
    """
    try:
        scope = GoalsScope.for_request(
            seller_id=seller_id,
            year=year,
            month=month,
            classification=classification
        )
        return await engine.get_by_seller(scope, order_by=order_by, limit=limit, offset=offset)
    except (InvalidScopeError, UnknownOrderingError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.exception(f"goals request failed for seller {seller_id}")
        raise HTTPException(
            status_code=500,
            detail=f"goals query failed: {str(e)}"
        )

@app.post("/goals/seller/{seller_id}/invalidate", response_model=InvalidateResponse, tags=["goals"])
async def invalidate_seller_goals(
    seller_id: int,
    engine: CustomerGoalsEngine = Depends(get_engine)
):
    """drop every cached tier for a seller, call after registering a sale"""
    if seller_id <= 0:
        raise HTTPException(status_code=422, detail="seller_id must be a positive integer")
    removed = engine.invalidate_seller(seller_id)
    return InvalidateResponse(seller_id=seller_id, invalidated=removed)

@app.get("/goals/customer/{customer_id}", response_model=CustomerGoalResponse, tags=["goals"])
async def get_customer_goal(
    customer_id: int,
    year: Optional[int] = None,
    month: Optional[int] = None,
    engine: CustomerGoalsEngine = Depends(get_engine)
):
    """one customer's goal, read directly (not cached)"""
    today = date.today()
    year = today.year if year is None else year
    month = today.month if month is None else month
    try:
        goal = await engine.get_by_customer(customer_id, year=year, month=month)
    except InvalidScopeError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.exception(f"goal lookup failed for customer {customer_id}")
        raise HTTPException(status_code=500, detail=f"goal lookup failed: {str(e)}")

    if goal is None:
        raise HTTPException(status_code=404, detail=f"no goal for customer {customer_id} in {year}")
    return CustomerGoalResponse(year=year, month=month, goal=goal)

@app.get("/goals/ranking", response_model=RankingResponse, tags=["goals"])
async def get_goals_ranking(
    year: Optional[int] = None,
    seller_id: Optional[int] = None,
    limit: int = Query(50, ge=1, le=1000),
    order_by: str = "achievement",
    engine: CustomerGoalsEngine = Depends(get_engine)
):
    """
    customers ranked by yearly goal achievement, all sellers unless seller_id is given

    example:
        curl "http://localhost:8000/goals/ranking?year=2026&order_by=gap&limit=20"
    """
    try:
        return await engine.get_ranking(year=year, seller_id=seller_id, limit=limit, order_by=order_by)
    except (InvalidScopeError, UnknownOrderingError) as e:
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.exception("goals ranking failed")
        raise HTTPException(status_code=500, detail=f"ranking query failed: {str(e)}")

if __name__ == "__main__":
    # run with: python -m goals.main
    uvicorn.run(
        "goals.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True  # auto-reload on code changes
    )
