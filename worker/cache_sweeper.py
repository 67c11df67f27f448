# background worker for cache maintenance
# periodically drops expired tier fragments so memory doesn't grow between requests

import asyncio
from datetime import datetime

from goals.cache import TTLCache
from goals.logger import get_logger

logger = get_logger("worker")

class CacheSweeper:
    """
    background worker that sweeps expired entries out of the goals cache
    lazy eviction only catches keys that are read again, this catches the rest
    """

    def __init__(self, cache: TTLCache, interval_seconds: int = 60):
        """
        initialize cache sweeper

        args:
            cache: cache to keep clean
            interval_seconds: how often to run (default 1 minute)
        """
        self.cache = cache
        self.interval = interval_seconds
        self.running = False

    async def start(self):
        """start the background worker"""
        self.running = True
        logger.info(f"🔄 cache sweeper started (interval: {self.interval}s)")

        while self.running:
            try:
                self.sweep_once()
            except Exception as e:
                logger.warning(f"⚠️  cache sweep error: {e}")

            await asyncio.sleep(self.interval)

    def stop(self):
        """stop the background worker"""
        self.running = False
        logger.info("🛑 cache sweeper stopped")

    def sweep_once(self) -> int:
        """remove expired entries once, returns how many went"""
        start_time = datetime.now()
        removed = self.cache.sweep()
        elapsed = (datetime.now() - start_time).total_seconds()

        if removed:
            logger.info(f"🧹 swept {removed} expired entries in {elapsed:.3f}s ({self.cache.size()} left)")
        else:
            logger.debug("no expired entries to sweep")
        return removed
