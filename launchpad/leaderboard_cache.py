"""
Leaderboard Cache

TTL cache in front of XP leaderboard computation.

Each timeframe has its own TTL; shorter windows go stale sooner. A
windowed entry also expires once its oldest included log entry leaves the
window. Any XP-earning action invalidates the cache.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Tuple

from .xp_ledger import XPLedger, LeaderboardEntry, LeaderboardSortKey, Timeframe

logger = logging.getLogger("leaderboard_cache")

CACHE_TTL: Dict[Timeframe, timedelta] = {
    Timeframe.DAILY: timedelta(minutes=2),
    Timeframe.WEEKLY: timedelta(minutes=5),
    Timeframe.MONTHLY: timedelta(minutes=10),
    Timeframe.ALL_TIME: timedelta(minutes=15),
}

DEFAULT_LIMIT = 100


@dataclass
class CachedLeaderboard:
    entries: List[LeaderboardEntry]
    last_updated: datetime
    ttl: timedelta
    expires_at: Optional[datetime] = None  # oldest windowed entry leaves the window

    def is_expired(self, now: datetime) -> bool:
        if self.expires_at is not None and now > self.expires_at:
            return True
        return now - self.last_updated > self.ttl


CacheKey = Tuple[Timeframe, LeaderboardSortKey]


class LeaderboardCache:
    """Cached leaderboards keyed by (timeframe, sort key)."""

    def __init__(self):
        self._cache: Dict[CacheKey, CachedLeaderboard] = {}

    def get(
        self,
        timeframe: Timeframe,
        sort_key: LeaderboardSortKey = LeaderboardSortKey.TOTAL_XP,
        now: Optional[datetime] = None,
        allow_stale: bool = False,
    ) -> Optional[List[LeaderboardEntry]]:
        key = (Timeframe(timeframe), LeaderboardSortKey(sort_key))
        cached = self._cache.get(key)
        if cached is None:
            return None

        # Expired entries stay until overwritten so errors can serve them
        if cached.is_expired(now or datetime.utcnow()) and not allow_stale:
            return None

        return cached.entries

    def set(
        self,
        timeframe: Timeframe,
        entries: List[LeaderboardEntry],
        sort_key: LeaderboardSortKey = LeaderboardSortKey.TOTAL_XP,
        now: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
    ) -> None:
        timeframe = Timeframe(timeframe)
        self._cache[(timeframe, LeaderboardSortKey(sort_key))] = CachedLeaderboard(
            entries=entries,
            last_updated=now or datetime.utcnow(),
            ttl=CACHE_TTL[timeframe],
            expires_at=expires_at,
        )

    def clear(self, timeframe: Optional[Timeframe] = None) -> None:
        """Drop one timeframe, or everything."""
        if timeframe is None:
            self._cache.clear()
            return
        timeframe = Timeframe(timeframe)
        for key in [k for k in self._cache if k[0] == timeframe]:
            del self._cache[key]

    def get_status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        status = {}
        for (timeframe, sort_key), cached in self._cache.items():
            age = now - cached.last_updated
            status[f"{timeframe.value}:{sort_key.value}"] = {
                "entries": len(cached.entries),
                "age_seconds": int(age.total_seconds()),
                "ttl_seconds": int(cached.ttl.total_seconds()),
                "is_expired": cached.is_expired(now),
            }
        return status


class LeaderboardService:
    """
    Leaderboard reads with caching.

    Falls back to a stale cached copy if computing a fresh one fails.
    """

    def __init__(self, xp_ledger: XPLedger, cache: Optional[LeaderboardCache] = None):
        self._xp_ledger = xp_ledger
        self._cache = cache or LeaderboardCache()

    @property
    def cache(self) -> LeaderboardCache:
        return self._cache

    def get_leaderboard(
        self,
        timeframe: Timeframe = Timeframe.ALL_TIME,
        sort_key: LeaderboardSortKey = LeaderboardSortKey.TOTAL_XP,
        limit: int = DEFAULT_LIMIT,
        force_refresh: bool = False,
        now: Optional[datetime] = None,
    ) -> List[LeaderboardEntry]:
        timeframe = Timeframe(timeframe)
        sort_key = LeaderboardSortKey(sort_key)

        if not force_refresh:
            cached = self._cache.get(timeframe, sort_key, now)
            if cached is not None:
                logger.debug(f"Leaderboard cache hit for {timeframe.value}")
                return cached[:limit]

        logger.debug(f"Computing fresh leaderboard for {timeframe.value}")
        try:
            entries = self._xp_ledger.leaderboard(sort_key, timeframe, now=now)
        except Exception as e:
            logger.error(f"Error computing leaderboard: {e}")
            stale = self._cache.get(timeframe, sort_key, now, allow_stale=True)
            if stale is not None:
                logger.info(f"Returning stale cache for {timeframe.value} due to error")
                return stale[:limit]
            raise

        expires_at = self._xp_ledger.window_expires_at(timeframe, now)
        self._cache.set(timeframe, entries, sort_key, now, expires_at=expires_at)
        return entries[:limit]

    def get_user_rank(
        self,
        wallet: str,
        timeframe: Timeframe = Timeframe.ALL_TIME,
        sort_key: LeaderboardSortKey = LeaderboardSortKey.TOTAL_XP,
    ) -> Optional[LeaderboardEntry]:
        wallet = wallet.lower()
        limit = max(DEFAULT_LIMIT, self._xp_ledger.account_count())
        for entry in self.get_leaderboard(timeframe, sort_key, limit=limit):
            if entry.wallet == wallet:
                return entry
        return None

    def invalidate(self, timeframe: Optional[Timeframe] = None) -> None:
        self._cache.clear(timeframe)

    def get_cache_stats(self) -> Dict[str, Any]:
        return self._cache.get_status()
