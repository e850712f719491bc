"""
Lifecycle Scheduler

The daily rotation that moves projects between phases.

Rotation steps, in order:
1. Winner selection: strictly most votes in active, first seen wins ties
2. Winner promotion: presale seed + 24h presale window
3. Winner removal from active
4. Aging: votes reset, days_active + 1, archive past MAX_DAYS_ACTIVE
5. Submission promotion (FIFO, days_active = 1)
6. Vote allowance reset

HARD CONSTRAINTS:
- The rotation runs as one registry transaction and commits once
- At most one rotation per UTC calendar day unless explicitly forced
- The new collections are built fresh, never edited while iterating
"""

import logging
import os
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, Any, List, Optional

from .project_registry import (
    ProjectRegistry,
    Project,
    WinningProject,
    MAX_DAYS_ACTIVE,
)
from .voting_ledger import VotingLedger

logger = logging.getLogger("lifecycle_scheduler")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
ROTATION_POLL_SECONDS = int(os.getenv("ROTATION_POLL_SECONDS", "60"))
ROTATION_HISTORY_LIMIT = 30


@dataclass
class RotationResult:
    """What a single rotation did."""
    rotated_at: str
    rotation_date: str
    skipped: bool = False
    forced: bool = False
    winner: Optional[WinningProject] = None
    archived_ids: List[str] = field(default_factory=list)
    continued_ids: List[str] = field(default_factory=list)
    promoted_ids: List[str] = field(default_factory=list)
    wallets_reset: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rotated_at": self.rotated_at,
            "rotation_date": self.rotation_date,
            "skipped": self.skipped,
            "forced": self.forced,
            "winner": self.winner.to_dict() if self.winner else None,
            "archived_ids": list(self.archived_ids),
            "continued_ids": list(self.continued_ids),
            "promoted_ids": list(self.promoted_ids),
            "wallets_reset": self.wallets_reset,
        }


def select_winner(active: List[Project]) -> Optional[Project]:
    """Project with strictly the most votes; the first one seen wins ties."""
    winner = None
    for project in active:
        if winner is None or project.votes > winner.votes:
            winner = project
    return winner


class LifecycleScheduler:
    """
    Runs the end-of-day rotation over the registry and voting ledger.
    """

    def __init__(
        self,
        registry: ProjectRegistry,
        voting_ledger: VotingLedger,
        max_days_active: int = MAX_DAYS_ACTIVE,
        presale_seed: Optional[int] = None,
    ):
        self._registry = registry
        self._voting_ledger = voting_ledger
        self._max_days_active = max_days_active
        self._presale_seed = presale_seed
        self._history: List[RotationResult] = []

    # -------------------------------------------------------------------------
    # Rotation
    # -------------------------------------------------------------------------

    def is_rotation_due(self, now: Optional[datetime] = None) -> bool:
        """True when no rotation has run yet on this UTC day."""
        today = (now or datetime.utcnow()).date().isoformat()
        return self._registry.last_rotation_date != today

    def run_if_due(self, now: Optional[datetime] = None) -> Optional[RotationResult]:
        if not self.is_rotation_due(now):
            return None
        return self.end_of_day_reset(now)

    def end_of_day_reset(self, now: Optional[datetime] = None, force: bool = False) -> RotationResult:
        """
        Rotate projects between phases.

        A second call on the same UTC day is a no-op returning a skipped
        result, unless force is set.
        """
        now = now or datetime.utcnow()
        today = now.date().isoformat()

        with self._registry.transaction():
            if not force and self._registry.last_rotation_date == today:
                logger.info(f"Rotation already ran for {today}, skipping")
                return RotationResult(rotated_at=now.isoformat(), rotation_date=today, skipped=True)

            logger.info("Starting end of day reset...")
            result = RotationResult(rotated_at=now.isoformat(), rotation_date=today, forced=force)

            active = self._registry.get_active_projects()
            submissions = self._registry.get_submissions()
            archived = self._registry.get_archived_projects()
            winner = self._registry.get_current_winner()

            # 1-3. Winner selection, promotion and removal
            selected = select_winner(active)
            if selected is not None:
                logger.info(f"Winner: {selected.name} with {selected.votes} votes")
                winner = WinningProject.from_project(selected, now=now, presale_seed=self._presale_seed)
                active = [p for p in active if p.project_id != selected.project_id]
                result.winner = replace(winner)
            else:
                logger.info("No active projects, winner slot unchanged")

            # 4. Aging pass
            next_active: List[Project] = []
            for project in active:
                aged = replace(project, votes=0, days_active=project.days_active + 1)
                if aged.days_active > self._max_days_active:
                    aged.archived_at = now.isoformat()
                    archived.append(aged)
                    result.archived_ids.append(aged.project_id)
                    logger.info(f"Archived: {aged.name} ({aged.days_active} days active)")
                else:
                    next_active.append(aged)
                    result.continued_ids.append(aged.project_id)
                    logger.info(f"{aged.name} continues (Day {aged.days_active}/{self._max_days_active})")

            # 5. Submission promotion
            for project in submissions:
                next_active.append(replace(project, votes=0, days_active=1))
                result.promoted_ids.append(project.project_id)
                logger.info(f"Added to voting: {project.name}")

            self._registry.replace_state(
                submissions=[],
                active=next_active,
                archived=archived,
                winner=winner,
                last_rotation_date=today,
            )

            self._registry.check_invariants()

            # 6. Vote allowance reset
            result.wallets_reset = self._voting_ledger.reset_daily_allowances(now)

        self._record(result)
        logger.info(
            f"End of day reset completed! Active: {len(next_active)}, "
            f"Submissions: 0, Archived: {len(archived)}"
        )
        return result

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_history(self, limit: int = 10) -> List[RotationResult]:
        """Most recent rotations first."""
        return list(reversed(self._history))[:limit]

    def get_status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        last = self._history[-1] if self._history else None
        return {
            "last_rotation_date": self._registry.last_rotation_date,
            "rotation_due": self.is_rotation_due(now),
            "max_days_active": self._max_days_active,
            "rotations_recorded": len(self._history),
            "last_rotation": last.to_dict() if last else None,
        }

    def _record(self, result: RotationResult) -> None:
        self._history.append(result)
        if len(self._history) > ROTATION_HISTORY_LIMIT:
            self._history = self._history[-ROTATION_HISTORY_LIMIT:]


# -----------------------------------------------------------------------------
# Daily Rotation Timer
# -----------------------------------------------------------------------------
class DailyRotationTimer:
    """
    Background thread that rotates once per UTC day.

    rotate_if_due is called on every poll; the once-per-day guard behind it
    makes repeated polls harmless.
    """

    def __init__(
        self,
        rotate_if_due: Callable[[Optional[datetime]], Optional[RotationResult]],
        poll_interval: int = ROTATION_POLL_SECONDS,
    ):
        self._rotate_if_due = rotate_if_due
        self._poll_interval = poll_interval
        self._running = False
        self._stop_event = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None
        self._last_poll_timestamp: Optional[str] = None
        self._poll_count = 0
        self._failures = 0

    @property
    def running(self) -> bool:
        return self._running

    def poll_once(self, now: Optional[datetime] = None) -> Optional[RotationResult]:
        """
        Perform a single poll cycle.

        Returns the rotation result if one ran.
        """
        try:
            result = self._rotate_if_due(now)
            self._last_poll_timestamp = datetime.utcnow().isoformat()
            self._poll_count += 1
            return result
        except Exception as e:
            self._failures += 1
            logger.error(f"Rotation poll failed: {e}")
            return None

    def start(self) -> None:
        if self._running:
            logger.warning("Rotation timer already running")
            return

        self._running = True
        self._stop_event.clear()
        self._poll_thread = threading.Thread(target=self._poll_loop, daemon=True)
        self._poll_thread.start()
        logger.info(f"Daily rotation timer started (interval={self._poll_interval}s)")

    def stop(self) -> None:
        self._running = False
        self._stop_event.set()
        if self._poll_thread:
            self._poll_thread.join(timeout=5)
        logger.info("Daily rotation timer stopped")

    def _poll_loop(self) -> None:
        while self._running:
            self.poll_once()
            self._stop_event.wait(self._poll_interval)

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "poll_interval_seconds": self._poll_interval,
            "last_poll": self._last_poll_timestamp,
            "poll_count": self._poll_count,
            "failures": self._failures,
        }
