"""
XP Ledger

Per-wallet XP accounts built from an append-only action log.

This module provides:
1. XPAccount aggregates (vote, presale, builder, total)
2. Append-only XP log, most recent entry first
3. All-time and windowed (daily, weekly, monthly) leaderboards
4. Optional JSONL persistence, replayed on startup

INVARIANTS:
- total_xp == vote_xp + presale_xp + builder_xp after every award
- Log entries are never modified or removed
- Accounts are created lazily and never deleted
"""

import json
import logging
import os
import threading
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Dict, Any, List, Optional

from .errors import PersistenceError, ValidationError, report_invariant_violation

logger = logging.getLogger("xp_ledger")


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class XPType(str, Enum):
    """Actions that earn XP."""
    VOTE = "vote"
    PRESALE = "presale"
    BUILDER = "builder"


class Timeframe(str, Enum):
    """Leaderboard windows."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL_TIME = "all_time"


class LeaderboardSortKey(str, Enum):
    """Totals a leaderboard can be ranked by."""
    TOTAL_XP = "total_xp"
    VOTE_XP = "vote_xp"
    PRESALE_XP = "presale_xp"
    BUILDER_XP = "builder_xp"


TIMEFRAME_WINDOWS: Dict[Timeframe, timedelta] = {
    Timeframe.DAILY: timedelta(hours=24),
    Timeframe.WEEKLY: timedelta(days=7),
    Timeframe.MONTHLY: timedelta(days=30),
}

SUBTOTAL_FIELDS: Dict[XPType, str] = {
    XPType.VOTE: "vote_xp",
    XPType.PRESALE: "presale_xp",
    XPType.BUILDER: "builder_xp",
}


def timeframe_cutoff(timeframe: Timeframe, now: Optional[datetime] = None) -> Optional[datetime]:
    """Oldest timestamp included in a window, or None for all time."""
    window = TIMEFRAME_WINDOWS.get(Timeframe(timeframe))
    if window is None:
        return None
    return (now or datetime.utcnow()) - window


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class XPLogEntry:
    """A single XP-earning action."""
    wallet: str
    xp_type: str
    amount: int
    timestamp: str

    @property
    def timestamp_datetime(self) -> datetime:
        return datetime.fromisoformat(self.timestamp)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "XPLogEntry":
        return cls(
            wallet=data["wallet"],
            xp_type=data["xp_type"],
            amount=int(data["amount"]),
            timestamp=data["timestamp"],
        )


@dataclass
class XPAccount:
    """XP totals and raw activity counters for one wallet."""
    wallet: str
    vote_xp: int = 0
    presale_xp: int = 0
    builder_xp: int = 0
    total_xp: int = 0
    votes_cast: int = 0
    mints_contributed: int = 0
    projects_submitted: int = 0
    xp_log: List[XPLogEntry] = field(default_factory=list)  # most recent first
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    @property
    def last_activity(self) -> Optional[str]:
        return self.xp_log[0].timestamp if self.xp_log else None

    def to_dict(self, include_log: bool = False) -> Dict[str, Any]:
        data = {
            "wallet": self.wallet,
            "vote_xp": self.vote_xp,
            "presale_xp": self.presale_xp,
            "builder_xp": self.builder_xp,
            "total_xp": self.total_xp,
            "votes_cast": self.votes_cast,
            "mints_contributed": self.mints_contributed,
            "projects_submitted": self.projects_submitted,
            "created_at": self.created_at,
            "last_activity": self.last_activity,
        }
        if include_log:
            data["xp_log"] = [entry.to_dict() for entry in self.xp_log]
        return data


@dataclass
class LeaderboardEntry:
    """One ranked row of a leaderboard."""
    rank: int
    wallet: str
    vote_xp: int
    presale_xp: int
    builder_xp: int
    total_xp: int
    votes_cast: int
    mints_contributed: int
    projects_submitted: int
    last_activity: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# -----------------------------------------------------------------------------
# XP Ledger
# -----------------------------------------------------------------------------
class XPLedger:
    """
    Owner of every XP account.

    The optional log file is append-only with fsync per write. Accounts are
    rebuilt from it on startup.
    """

    def __init__(self, log_file: Optional[Path] = None, strict_invariants: Optional[bool] = None):
        self._log_file = log_file
        self._strict = strict_invariants
        self._lock = threading.Lock()
        self._accounts: Dict[str, XPAccount] = {}

        if self._log_file is not None:
            self._replay_log()

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def award(
        self,
        wallet: str,
        xp_type: XPType,
        amount: int,
        now: Optional[datetime] = None,
    ) -> XPAccount:
        """
        Award XP to a wallet, creating its account on first use.

        APPEND-ONLY: the log entry is inserted, never edited. It is written
        to the log file before the account changes.

        Raises:
            ValidationError: missing wallet or negative amount
            PersistenceError: the log entry could not be written
        """
        if not wallet:
            raise ValidationError(["Wallet is required"])
        if amount < 0:
            raise ValidationError(["XP amount cannot be negative"])

        entry = XPLogEntry(
            wallet=wallet.lower(),
            xp_type=XPType(xp_type).value,
            amount=int(amount),
            timestamp=(now or datetime.utcnow()).isoformat(),
        )

        with self._lock:
            self._append_record(entry)
            account = self._apply(entry)
            self._verify_account(account)
            snapshot = self._copy_account(account)

        logger.debug(f"Awarded {amount} {entry.xp_type} XP to {entry.wallet} (total={snapshot.total_xp})")
        return snapshot

    def award_vote_xp(self, wallet: str, votes: int, now: Optional[datetime] = None) -> XPAccount:
        return self.award(wallet, XPType.VOTE, votes, now)

    def award_presale_xp(self, wallet: str, mints: int, now: Optional[datetime] = None) -> XPAccount:
        return self.award(wallet, XPType.PRESALE, mints, now)

    def award_builder_xp(self, wallet: str, amount: int, now: Optional[datetime] = None) -> XPAccount:
        return self.award(wallet, XPType.BUILDER, amount, now)

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get_account(self, wallet: str) -> Optional[XPAccount]:
        with self._lock:
            account = self._accounts.get(wallet.lower())
            return self._copy_account(account) if account else None

    def get_accounts(self) -> List[XPAccount]:
        """All accounts in creation order."""
        with self._lock:
            return [self._copy_account(a) for a in self._accounts.values()]

    def account_count(self) -> int:
        return len(self._accounts)

    def calculate_timeframe_xp(
        self,
        account: XPAccount,
        timeframe: Timeframe,
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """Sub-totals for an account restricted to a window."""
        cutoff = timeframe_cutoff(timeframe, now)
        if cutoff is None:
            return {
                "vote_xp": account.vote_xp,
                "presale_xp": account.presale_xp,
                "builder_xp": account.builder_xp,
                "total_xp": account.total_xp,
            }

        totals = {"vote_xp": 0, "presale_xp": 0, "builder_xp": 0}
        for entry in account.xp_log:
            if entry.timestamp_datetime >= cutoff:
                totals[SUBTOTAL_FIELDS[XPType(entry.xp_type)]] += entry.amount
        totals["total_xp"] = totals["vote_xp"] + totals["presale_xp"] + totals["builder_xp"]
        return totals

    def window_expires_at(self, timeframe: Timeframe, now: Optional[datetime] = None) -> Optional[datetime]:
        """
        When the oldest entry inside a window falls out of it.

        None for all time or when the window holds no entries.
        """
        timeframe = Timeframe(timeframe)
        cutoff = timeframe_cutoff(timeframe, now)
        if cutoff is None:
            return None

        oldest = None
        with self._lock:
            for account in self._accounts.values():
                for entry in account.xp_log:
                    stamp = entry.timestamp_datetime
                    if stamp >= cutoff and (oldest is None or stamp < oldest):
                        oldest = stamp
        return oldest + TIMEFRAME_WINDOWS[timeframe] if oldest else None

    def leaderboard(
        self,
        sort_key: LeaderboardSortKey = LeaderboardSortKey.TOTAL_XP,
        timeframe: Timeframe = Timeframe.ALL_TIME,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[LeaderboardEntry]:
        """
        Rank accounts descending by the requested total.

        Ties keep account creation order. Windowed timeframes only count log
        entries inside the window.
        """
        sort_field = LeaderboardSortKey(sort_key).value
        timeframe = Timeframe(timeframe)

        rows = []
        for account in self.get_accounts():
            totals = self.calculate_timeframe_xp(account, timeframe, now)
            rows.append((account, totals))

        rows.sort(key=lambda row: row[1][sort_field], reverse=True)
        if limit is not None:
            rows = rows[:limit]

        return [
            LeaderboardEntry(
                rank=index + 1,
                wallet=account.wallet,
                vote_xp=totals["vote_xp"],
                presale_xp=totals["presale_xp"],
                builder_xp=totals["builder_xp"],
                total_xp=totals["total_xp"],
                votes_cast=account.votes_cast,
                mints_contributed=account.mints_contributed,
                projects_submitted=account.projects_submitted,
                last_activity=account.last_activity,
            )
            for index, (account, totals) in enumerate(rows)
        ]

    def get_user_rank(
        self,
        wallet: str,
        timeframe: Timeframe = Timeframe.ALL_TIME,
        sort_key: LeaderboardSortKey = LeaderboardSortKey.TOTAL_XP,
        now: Optional[datetime] = None,
    ) -> Optional[LeaderboardEntry]:
        wallet = wallet.lower()
        for entry in self.leaderboard(sort_key, timeframe, now=now):
            if entry.wallet == wallet:
                return entry
        return None

    # -------------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------------

    def verify_invariants(self) -> List[str]:
        """Check XP additivity for every account. Returns drifted wallets."""
        with self._lock:
            drifted = []
            for account in self._accounts.values():
                if not self._verify_account(account):
                    drifted.append(account.wallet)
            return drifted

    def _verify_account(self, account: XPAccount) -> bool:
        expected = account.vote_xp + account.presale_xp + account.builder_xp
        if account.total_xp == expected:
            return True
        report_invariant_violation(
            f"totalXP drifted for {account.wallet}",
            {"wallet": account.wallet, "total_xp": account.total_xp, "expected": expected},
            strict=self._strict,
        )
        account.total_xp = expected
        return False

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    def _apply(self, entry: XPLogEntry) -> XPAccount:
        account = self._accounts.get(entry.wallet)
        if account is None:
            account = XPAccount(wallet=entry.wallet, created_at=entry.timestamp)
            self._accounts[entry.wallet] = account
            logger.info(f"Created XP account for {entry.wallet}")

        xp_type = XPType(entry.xp_type)
        if xp_type == XPType.VOTE:
            account.vote_xp += entry.amount
            account.votes_cast += entry.amount
        elif xp_type == XPType.PRESALE:
            account.presale_xp += entry.amount
            account.mints_contributed += entry.amount
        elif xp_type == XPType.BUILDER:
            account.builder_xp += entry.amount
            account.projects_submitted += 1

        account.total_xp = account.vote_xp + account.presale_xp + account.builder_xp
        account.xp_log.insert(0, entry)
        return account

    @staticmethod
    def _copy_account(account: XPAccount) -> XPAccount:
        data = account.to_dict()
        data.pop("last_activity")
        return XPAccount(xp_log=list(account.xp_log), **data)

    def _append_record(self, entry: XPLogEntry) -> None:
        """Append a log entry to the JSONL file with fsync."""
        if self._log_file is None:
            return

        try:
            self._log_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._log_file, "a") as f:
                f.write(json.dumps(entry.to_dict()) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            logger.error(f"Failed to append XP log entry: {e}")
            raise PersistenceError("XP log", e)

    def _replay_log(self) -> None:
        """Rebuild accounts from the JSONL log."""
        if not self._log_file.exists():
            logger.info("No existing XP log, starting fresh")
            return

        replayed = 0
        with open(self._log_file, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    self._apply(XPLogEntry.from_dict(json.loads(line)))
                    replayed += 1
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    # Skip malformed lines
                    logger.warning(f"Skipping malformed XP log line: {e}")

        logger.info(f"Replayed {replayed} XP entries into {len(self._accounts)} accounts")
