"""
Voting Ledger

Daily vote budgets per wallet and vote application to active projects.

Allowance = base daily votes + holder tier bonus. The allowance is
recomputed from the current balance on every call; only the votes spent
since the last rotation are stored. Counters clear when the rotation resets
them, never on a calendar change alone.

All mutations run inside a registry transaction so a vote never observes a
half-finished rotation and concurrent votes on one project serialize.
"""

import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from .balance_oracle import BalanceOracle
from .errors import InsufficientAllowanceError, ValidationError, PersistenceError
from .holder_tiers import get_bonus_votes
from .project_registry import ProjectRegistry
from .xp_ledger import XPLedger

logger = logging.getLogger("voting_ledger")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
BASE_DAILY_VOTES = 10
VOTE_XP_PER_VOTE = 1
MILESTONE_STEP = 10


@dataclass
class VoteReceipt:
    """Outcome of a successful vote."""
    wallet: str
    project_id: str
    votes_cast: int
    project_votes: int
    milestone_crossed: bool
    priority_score: int
    remaining_votes: int
    xp_earned: int
    cast_at: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def crosses_milestone(old_votes: int, new_votes: int, step: int = MILESTONE_STEP) -> bool:
    """True when a vote moves the count past a new multiple of step."""
    return new_votes // step > old_votes // step


class VotingLedger:
    """
    Per-wallet daily vote accounting.

    Spent counters cover the period since the last reset_daily_allowances
    call. The counter file is written before memory changes.
    """

    def __init__(
        self,
        registry: ProjectRegistry,
        xp_ledger: XPLedger,
        balance_oracle: BalanceOracle,
        state_file: Optional[Path] = None,
        base_allowance: int = BASE_DAILY_VOTES,
    ):
        self._registry = registry
        self._xp_ledger = xp_ledger
        self._oracle = balance_oracle
        self._state_file = state_file
        self._base_allowance = base_allowance
        self._spent: Dict[str, int] = {}
        self._last_reset: Optional[str] = None

        if self._state_file is not None:
            self._load_state()

    # -------------------------------------------------------------------------
    # Allowance
    # -------------------------------------------------------------------------

    def daily_allowance(self, wallet: str, now: Optional[datetime] = None) -> int:
        """Base allowance plus the wallet's current tier bonus."""
        return self._base_allowance + get_bonus_votes(self._oracle.get_balance(wallet, now))

    def spent_votes(self, wallet: str) -> int:
        """Votes spent since the last reset."""
        with self._registry.lock:
            return self._spent.get(wallet.lower(), 0)

    def remaining_votes(self, wallet: str, now: Optional[datetime] = None) -> int:
        return max(0, self.daily_allowance(wallet, now) - self.spent_votes(wallet))

    # -------------------------------------------------------------------------
    # Voting
    # -------------------------------------------------------------------------

    def cast_vote(
        self,
        wallet: str,
        project_id: str,
        count: int,
        now: Optional[datetime] = None,
    ) -> VoteReceipt:
        """
        Spend votes from the current allowance on an active project.

        The counter file is saved before vote XP is awarded. If either step
        fails the counter is restored and the registry transaction rolls
        back the project's votes.

        Raises:
            ValidationError: missing wallet or non-positive count
            InsufficientAllowanceError: count exceeds remaining votes
            UnknownProjectError: project is not in active voting
        """
        if not wallet:
            raise ValidationError(["Wallet is required"])
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise ValidationError(["Vote count must be a positive integer"])

        now = now or datetime.utcnow()
        wallet = wallet.lower()

        with self._registry.transaction():
            remaining = self.remaining_votes(wallet, now)
            if count > remaining:
                raise InsufficientAllowanceError(wallet, count, remaining)

            old_votes, new_votes = self._registry.add_votes(project_id, count)
            milestone = crosses_milestone(old_votes, new_votes)
            if milestone:
                priority_score = self._registry.bump_priority_score(project_id)
                logger.info(f"Milestone: {project_id} reached {new_votes} votes (priority={priority_score})")
            else:
                priority_score = self._registry.get_active_project(project_id).priority_score

            spent_before = self._spent.get(wallet, 0)
            spent = dict(self._spent)
            spent[wallet] = spent_before + count
            self._save_state(spent)
            self._spent = spent

            xp_earned = count * VOTE_XP_PER_VOTE
            try:
                self._xp_ledger.award_vote_xp(wallet, xp_earned, now)
            except Exception:
                self._undo_spend(wallet, spent_before)
                raise

        logger.info(f"Vote: {wallet} cast {count} on {project_id} ({old_votes} -> {new_votes})")
        return VoteReceipt(
            wallet=wallet,
            project_id=project_id,
            votes_cast=count,
            project_votes=new_votes,
            milestone_crossed=milestone,
            priority_score=priority_score,
            remaining_votes=remaining - count,
            xp_earned=xp_earned,
            cast_at=now.isoformat(),
        )

    def reset_daily_allowances(self, now: Optional[datetime] = None) -> int:
        """
        Clear every wallet's spent counter.

        Returns: number of wallets reset
        """
        reset_on = (now or datetime.utcnow()).date().isoformat()
        with self._registry.lock:
            count = len(self._spent)
            self._save_state({}, reset_on)
            self._spent = {}
            self._last_reset = reset_on

        logger.info(f"Reset votes for {count} wallets")
        return count

    def get_status(self) -> Dict[str, Any]:
        with self._registry.lock:
            return {
                "last_reset": self._last_reset,
                "base_allowance": self._base_allowance,
                "wallets_voted": len(self._spent),
                "votes_spent": sum(self._spent.values()),
            }

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _undo_spend(self, wallet: str, spent_before: int) -> None:
        if spent_before:
            self._spent[wallet] = spent_before
        else:
            self._spent.pop(wallet, None)
        try:
            self._save_state()
        except PersistenceError:
            logger.warning(f"Vote counter for {wallet} on disk is ahead of memory")

    def _load_state(self) -> None:
        if not self._state_file.exists():
            return
        try:
            with open(self._state_file) as f:
                data = json.load(f)
            self._last_reset = data.get("last_reset")
            self._spent = {w: int(v) for w, v in data.get("spent", {}).items()}
            logger.info(f"Loaded vote counters for {len(self._spent)} wallets (last reset {self._last_reset})")
        except Exception as e:
            logger.error(f"Failed to load vote counters: {e}")

    def _save_state(self, spent: Optional[Dict[str, int]] = None, last_reset: Optional[str] = None) -> None:
        if self._state_file is None:
            return
        data = {
            "last_reset": last_reset or self._last_reset,
            "spent": self._spent if spent is None else spent,
        }
        try:
            self._state_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self._state_file.with_suffix(".tmp")
            with open(temp_file, "w") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self._state_file)
        except Exception as e:
            logger.error(f"Failed to save vote counters: {e}")
            raise PersistenceError("vote counters", e)
