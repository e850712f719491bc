"""
Leaderboard Stream

Server-sent event push of leaderboard updates.

Each subscriber watches one timeframe (optionally with a wallet whose rank
is included) and receives payloads through its own asyncio.Queue. The SSE
route drains that queue via event_stream().

Message types:
- initial_data: first frame on connect
- leaderboard_update: pushed by broadcast()
- heartbeat: keep-alive every HEARTBEAT_INTERVAL_SECONDS
- error: initial data could not be produced
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional, AsyncIterator

from .leaderboard_cache import LeaderboardService
from .xp_ledger import Timeframe

logger = logging.getLogger("leaderboard_stream")

HEARTBEAT_INTERVAL_SECONDS = 30
STALE_CONNECTION_SECONDS = 300
STREAM_LEADERBOARD_LIMIT = 100
QUEUE_MAX_SIZE = 100


@dataclass
class Subscription:
    subscription_id: str
    timeframe: Timeframe
    wallet: Optional[str] = None
    queue: asyncio.Queue = field(default_factory=lambda: asyncio.Queue(maxsize=QUEUE_MAX_SIZE))
    last_sent: datetime = field(default_factory=datetime.utcnow)
    closed: bool = False


class LeaderboardBroadcaster:
    """Fan-out of leaderboard payloads to SSE subscribers."""

    def __init__(self, leaderboard_service: LeaderboardService):
        self._service = leaderboard_service
        self._subscriptions: Dict[str, Subscription] = {}
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._running = False

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        timeframe: Timeframe = Timeframe.ALL_TIME,
        wallet: Optional[str] = None,
        subscription_id: Optional[str] = None,
    ) -> Subscription:
        subscription = Subscription(
            subscription_id=subscription_id or uuid.uuid4().hex[:8],
            timeframe=Timeframe(timeframe),
            wallet=wallet.lower() if wallet else None,
        )
        self._subscriptions[subscription.subscription_id] = subscription
        logger.info(
            f"SSE connection opened: {subscription.subscription_id} "
            f"(range: {subscription.timeframe.value}, connections: {len(self._subscriptions)})"
        )
        return subscription

    def unsubscribe(self, subscription_id: str) -> bool:
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return False
        subscription.closed = True
        # Wake a consumer blocked on get()
        try:
            subscription.queue.put_nowait(None)
        except asyncio.QueueFull:
            pass
        logger.info(f"SSE connection closed: {subscription_id} (connections: {len(self._subscriptions)})")
        return True

    @property
    def connection_count(self) -> int:
        return len(self._subscriptions)

    # -------------------------------------------------------------------------
    # Payloads
    # -------------------------------------------------------------------------

    def _leaderboard_payload(self, message_type: str, subscription: Subscription, force_refresh: bool) -> Dict[str, Any]:
        entries = self._service.get_leaderboard(
            subscription.timeframe,
            limit=STREAM_LEADERBOARD_LIMIT,
            force_refresh=force_refresh,
        )
        user_rank = None
        if subscription.wallet:
            entry = self._service.get_user_rank(subscription.wallet, subscription.timeframe)
            user_rank = entry.to_dict() if entry else None
        return {
            "type": message_type,
            "range": subscription.timeframe.value,
            "leaderboard": [e.to_dict() for e in entries],
            "timestamp": datetime.utcnow().isoformat(),
            "user_rank": user_rank,
        }

    def initial_payload(self, subscription: Subscription) -> Dict[str, Any]:
        try:
            return self._leaderboard_payload("initial_data", subscription, force_refresh=False)
        except Exception as e:
            logger.error(f"Error sending initial leaderboard data: {e}")
            return {
                "type": "error",
                "message": "Failed to load leaderboard data",
                "timestamp": datetime.utcnow().isoformat(),
            }

    @staticmethod
    def format_sse(payload: Dict[str, Any]) -> str:
        return f"data: {json.dumps(payload)}\n\n"

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def _deliver(self, subscription: Subscription, payload: Dict[str, Any]) -> bool:
        try:
            subscription.queue.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning(f"Dropping SSE subscriber {subscription.subscription_id}: queue full")
            self.unsubscribe(subscription.subscription_id)
            return False
        subscription.last_sent = datetime.utcnow()
        return True

    def broadcast(self, timeframe: Optional[Timeframe] = None) -> int:
        """
        Push a fresh leaderboard to subscribers of a timeframe.

        Without a timeframe every timeframe is refreshed.
        Returns: number of payloads delivered
        """
        if not self._subscriptions:
            return 0

        timeframes = [Timeframe(timeframe)] if timeframe else list(Timeframe)
        delivered = 0
        for target in timeframes:
            for subscription in list(self._subscriptions.values()):
                if subscription.timeframe != target:
                    continue
                try:
                    payload = self._leaderboard_payload("leaderboard_update", subscription, force_refresh=True)
                except Exception as e:
                    logger.error(f"Error broadcasting leaderboard update for {target.value}: {e}")
                    break
                if self._deliver(subscription, payload):
                    delivered += 1
        return delivered

    def send_heartbeat(self) -> int:
        payload = {"type": "heartbeat", "timestamp": datetime.utcnow().isoformat()}
        sent = 0
        for subscription in list(self._subscriptions.values()):
            if self._deliver(subscription, payload):
                sent += 1
        return sent

    def cleanup_stale(self, max_idle_seconds: int = STALE_CONNECTION_SECONDS, now: Optional[datetime] = None) -> List[str]:
        """Drop subscribers that have not been sent anything recently."""
        now = now or datetime.utcnow()
        stale = [
            sub_id for sub_id, sub in self._subscriptions.items()
            if (now - sub.last_sent).total_seconds() > max_idle_seconds
        ]
        for sub_id in stale:
            self.unsubscribe(sub_id)
        return stale

    async def event_stream(self, subscription: Subscription) -> AsyncIterator[str]:
        """SSE frames for one subscriber, starting with the initial payload."""
        try:
            yield self.format_sse(self.initial_payload(subscription))
            while not subscription.closed:
                payload = await subscription.queue.get()
                if payload is None:
                    break
                yield self.format_sse(payload)
        finally:
            self.unsubscribe(subscription.subscription_id)

    # -------------------------------------------------------------------------
    # Heartbeat Task
    # -------------------------------------------------------------------------

    async def start(self, interval: int = HEARTBEAT_INTERVAL_SECONDS) -> None:
        if self._running:
            return
        self._running = True
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(interval))
        logger.info("Leaderboard heartbeat started")

    async def stop(self) -> None:
        self._running = False
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            try:
                await self._heartbeat_task
            except asyncio.CancelledError:
                pass
        for sub_id in list(self._subscriptions):
            self.unsubscribe(sub_id)
        logger.info("Leaderboard heartbeat stopped")

    async def _heartbeat_loop(self, interval: int) -> None:
        while self._running:
            try:
                await asyncio.sleep(interval)
                self.cleanup_stale()
                self.send_heartbeat()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Heartbeat error: {e}")


# Singleton instance
_broadcaster: Optional[LeaderboardBroadcaster] = None


def get_broadcaster() -> LeaderboardBroadcaster:
    """Get the broadcaster singleton bound to the service leaderboard."""
    global _broadcaster
    if _broadcaster is None:
        from .launchpad_service import get_service
        _broadcaster = LeaderboardBroadcaster(get_service().leaderboard)
    return _broadcaster


def set_broadcaster(broadcaster: Optional[LeaderboardBroadcaster]) -> None:
    global _broadcaster
    _broadcaster = broadcaster
