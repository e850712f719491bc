"""
Launchpad Service

Single entry point for the launchpad core.

Inbound triggers:
- submit_project: builder submits a project for the next rotation
- cast_vote: holder spends daily votes on an active project
- record_mint: presale mint against the current winner
- run_daily_rotation: end-of-day lifecycle rotation

Outbound reads cover the phase collections, leaderboards, holder tiers and
user profiles. Components are passed in explicitly; create_service() wires
the default set.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Any, List, Optional

from .balance_oracle import BalanceOracle
from .errors import (
    InsufficientBalanceError,
    PresaleUnavailableError,
    UnknownProjectError,
    ValidationError,
)
from .holder_tiers import HolderTier, get_tier_for_balance, get_next_tier, get_tier_progress
from .leaderboard_cache import LeaderboardService
from .lifecycle_scheduler import LifecycleScheduler, RotationResult
from .project_registry import ProjectRegistry, Project, WinningProject, ActiveOrder, DEFAULT_LOGO
from .voting_ledger import VotingLedger, VoteReceipt
from .xp_ledger import XPLedger, XPAccount, LeaderboardEntry, LeaderboardSortKey, Timeframe

logger = logging.getLogger("launchpad_service")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
LAUNCHPAD_STATE_DIR = os.getenv("LAUNCHPAD_STATE_DIR")
LAUNCHPAD_SEED_DEMO = os.getenv("LAUNCHPAD_SEED_DEMO", "false").lower() in ("1", "true", "yes")

SUBMISSION_MIN_BALANCE = 10_000_000
BUILDER_XP_PER_SUBMISSION = 10
PRESALE_XP_PER_MINT = 1
MAX_NFTS_PER_MINT = 10000

REGISTRY_FILENAME = "registry.json"
XP_LOG_FILENAME = "xp_log.jsonl"
VOTES_FILENAME = "votes.json"


class LaunchpadService:
    """Facade over registry, ledgers, scheduler and leaderboards."""

    def __init__(
        self,
        registry: ProjectRegistry,
        xp_ledger: XPLedger,
        balance_oracle: BalanceOracle,
        voting_ledger: VotingLedger,
        scheduler: LifecycleScheduler,
        leaderboard: LeaderboardService,
    ):
        self.registry = registry
        self.xp_ledger = xp_ledger
        self.balance_oracle = balance_oracle
        self.voting_ledger = voting_ledger
        self.scheduler = scheduler
        self.leaderboard = leaderboard
        self._listeners: List[Callable[[], None]] = []

    # -------------------------------------------------------------------------
    # Change Notification
    # -------------------------------------------------------------------------

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Register a callback fired after XP or rotation changes."""
        self._listeners.append(callback)

    def _leaderboard_changed(self) -> None:
        self.leaderboard.invalidate()
        for callback in self._listeners:
            try:
                callback()
            except Exception as e:
                logger.error(f"Leaderboard listener failed: {e}")

    # -------------------------------------------------------------------------
    # Inbound Triggers
    # -------------------------------------------------------------------------

    def submit_project(
        self,
        name: str,
        ticker: str,
        url: str,
        builder_wallet: Optional[str] = None,
        logo: str = DEFAULT_LOGO,
        vaulted_supply: int = 0,
        is_image_logo: bool = False,
        now: Optional[datetime] = None,
    ) -> Project:
        """
        Queue a project for the next rotation.

        A builder wallet must hold SUBMISSION_MIN_BALANCE tokens and earns
        builder XP for the submission.
        """
        if builder_wallet:
            balance = self.balance_oracle.get_balance(builder_wallet, now)
            if balance < SUBMISSION_MIN_BALANCE:
                raise InsufficientBalanceError(builder_wallet.lower(), balance, SUBMISSION_MIN_BALANCE)

        with self.registry.transaction():
            project = self.registry.submit(
                name=name,
                ticker=ticker,
                url=url,
                logo=logo,
                builder_wallet=builder_wallet,
                vaulted_supply=vaulted_supply,
                is_image_logo=is_image_logo,
                now=now,
            )
            if builder_wallet:
                self.xp_ledger.award_builder_xp(builder_wallet, BUILDER_XP_PER_SUBMISSION, now)

        if builder_wallet:
            self._leaderboard_changed()
        return project

    def cast_vote(
        self,
        wallet: str,
        project_id: str,
        count: int,
        now: Optional[datetime] = None,
    ) -> VoteReceipt:
        receipt = self.voting_ledger.cast_vote(wallet, project_id, count, now)
        self._leaderboard_changed()
        return receipt

    def record_mint(
        self,
        wallet: str,
        nft_count: int,
        project_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> XPAccount:
        """
        Count a presale mint against the current winner.

        Raises:
            ValidationError: missing wallet or NFT count out of range
            PresaleUnavailableError: no project holds the winner slot
            UnknownProjectError: project_id does not name the current winner
        """
        errors = []
        if not wallet:
            errors.append("Wallet is required")
        if isinstance(nft_count, bool) or not isinstance(nft_count, int) or not 0 < nft_count <= MAX_NFTS_PER_MINT:
            errors.append(f"NFT count must be between 1 and {MAX_NFTS_PER_MINT}")
        if errors:
            raise ValidationError(errors)

        with self.registry.transaction():
            winner = self.registry.get_current_winner()
            if winner is None:
                raise PresaleUnavailableError("No project is in presale")
            if project_id and project_id != winner.project_id:
                raise UnknownProjectError(project_id, "winner")

            updated = self.registry.increment_presale_mints(nft_count)
            account = self.xp_ledger.award_presale_xp(wallet, nft_count * PRESALE_XP_PER_MINT, now)

        logger.info(f"Presale mint: {wallet.lower()} minted {nft_count} of {winner.name} (total {updated.presale_mints})")
        self._leaderboard_changed()
        return account

    def run_daily_rotation(self, now: Optional[datetime] = None, force: bool = False) -> RotationResult:
        result = self.scheduler.end_of_day_reset(now, force=force)
        if not result.skipped:
            self._leaderboard_changed()
        return result

    def run_rotation_if_due(self, now: Optional[datetime] = None) -> Optional[RotationResult]:
        """Timer entry point: rotate only when today's rotation has not run."""
        if not self.scheduler.is_rotation_due(now):
            return None
        return self.run_daily_rotation(now)

    # -------------------------------------------------------------------------
    # Outbound Reads
    # -------------------------------------------------------------------------

    def get_active_projects(self, order: Optional[ActiveOrder] = None) -> List[Project]:
        if order is None:
            return self.registry.get_active_projects()
        return self.registry.sorted_active(order)

    def get_submissions(self) -> List[Project]:
        return self.registry.get_submissions()

    def get_archived_projects(self) -> List[Project]:
        return self.registry.get_archived_projects()

    def get_current_winner(self) -> Optional[WinningProject]:
        return self.registry.get_current_winner()

    def get_leaderboard(
        self,
        sort_key: LeaderboardSortKey = LeaderboardSortKey.TOTAL_XP,
        timeframe: Timeframe = Timeframe.ALL_TIME,
        limit: int = 100,
        force_refresh: bool = False,
    ) -> List[LeaderboardEntry]:
        return self.leaderboard.get_leaderboard(timeframe, sort_key, limit, force_refresh)

    def get_user_tier(self, wallet: str) -> Optional[HolderTier]:
        return get_tier_for_balance(self.balance_oracle.get_balance(wallet))

    def get_user_profile(self, wallet: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Tier, vote budget and XP standing of a wallet."""
        wallet = wallet.lower()
        balance = self.balance_oracle.get_balance(wallet, now)
        tier = get_tier_for_balance(balance)
        next_tier = get_next_tier(balance)
        account = self.xp_ledger.get_account(wallet) or XPAccount(wallet=wallet)
        rank = self.leaderboard.get_user_rank(wallet)

        return {
            "wallet": wallet,
            "balance": balance,
            "tier": tier.to_dict() if tier else None,
            "next_tier": next_tier.to_dict() if next_tier else None,
            "tier_progress": get_tier_progress(balance),
            "daily_allowance": self.voting_ledger.daily_allowance(wallet),
            "remaining_votes": self.voting_ledger.remaining_votes(wallet, now),
            "xp": account.to_dict(),
            "rank": rank.rank if rank else None,
        }

    def get_stats(self) -> Dict[str, Any]:
        winner = self.registry.get_current_winner()
        return {
            "projects": self.registry.get_project_counts(),
            "winner": winner.to_dict() if winner else None,
            "xp_accounts": self.xp_ledger.account_count(),
            "voting": self.voting_ledger.get_status(),
            "rotation": self.scheduler.get_status(),
            "leaderboard_cache": self.leaderboard.get_cache_stats(),
            "balances": self.balance_oracle.get_cache_status(),
        }


# -----------------------------------------------------------------------------
# Module-Level Functions
# -----------------------------------------------------------------------------

def create_service(
    state_dir: Optional[Path] = None,
    seed_demo: bool = False,
    strict_invariants: Optional[bool] = None,
    balance_oracle: Optional[BalanceOracle] = None,
) -> LaunchpadService:
    """
    Wire a service from its components.

    With a state_dir, the registry, XP log and vote counters persist there.
    Demo data is only seeded into an empty registry.
    """
    registry_file = xp_log_file = votes_file = None
    if state_dir is not None:
        state_dir = Path(state_dir)
        registry_file = state_dir / REGISTRY_FILENAME
        xp_log_file = state_dir / XP_LOG_FILENAME
        votes_file = state_dir / VOTES_FILENAME

    registry = ProjectRegistry(registry_file, strict_invariants=strict_invariants)
    xp_ledger = XPLedger(xp_log_file, strict_invariants=strict_invariants)
    oracle = balance_oracle or BalanceOracle()
    voting = VotingLedger(registry, xp_ledger, oracle, state_file=votes_file)
    scheduler = LifecycleScheduler(registry, voting)
    leaderboard = LeaderboardService(xp_ledger)

    service = LaunchpadService(registry, xp_ledger, oracle, voting, scheduler, leaderboard)

    if seed_demo:
        counts = registry.get_project_counts()
        if sum(counts.values()) == 0:
            from .seed_data import seed_demo_data
            seed_demo_data(service)
        else:
            logger.info("Registry already populated, skipping demo seed")

    return service


_service: Optional[LaunchpadService] = None


def get_service() -> LaunchpadService:
    """Get the application service singleton."""
    global _service
    if _service is None:
        state_dir = Path(LAUNCHPAD_STATE_DIR) if LAUNCHPAD_STATE_DIR else None
        _service = create_service(state_dir=state_dir, seed_demo=LAUNCHPAD_SEED_DEMO)
    return _service


def set_service(service: Optional[LaunchpadService]) -> None:
    """Replace the singleton (tests and custom wiring)."""
    global _service
    _service = service
