"""
Unit Tests for XPLedger

Test coverage for:
- Awards per action type and total additivity
- Append-only log ordering
- All-time and windowed leaderboards
- JSONL persistence and replay
"""

from datetime import timedelta

import pytest

from launchpad.errors import InvariantViolationError, PersistenceError, ValidationError
from launchpad.xp_ledger import (
    LeaderboardSortKey,
    Timeframe,
    XPLedger,
    XPType,
    timeframe_cutoff,
)

from tests.conftest import NOW

WALLET_A = "0x" + "a" * 40
WALLET_B = "0x" + "b" * 40
WALLET_C = "0x" + "c" * 40


# -----------------------------------------------------------------------------
# Awards
# -----------------------------------------------------------------------------
class TestAwards:

    def test_vote_award(self, xp_ledger):
        account = xp_ledger.award_vote_xp(WALLET_A, 1, NOW)

        assert account.vote_xp == 1
        assert account.total_xp == 1
        assert account.votes_cast == 1
        assert len(account.xp_log) == 1
        assert account.xp_log[0].xp_type == XPType.VOTE.value

    def test_total_is_sum_of_subtotals(self, xp_ledger):
        xp_ledger.award_vote_xp(WALLET_A, 4, NOW)
        xp_ledger.award_presale_xp(WALLET_A, 7, NOW)
        account = xp_ledger.award_builder_xp(WALLET_A, 10, NOW)

        assert (account.vote_xp, account.presale_xp, account.builder_xp) == (4, 7, 10)
        assert account.total_xp == 21
        assert account.mints_contributed == 7
        assert account.projects_submitted == 1
        assert xp_ledger.verify_invariants() == []

    def test_log_most_recent_first(self, xp_ledger):
        xp_ledger.award_vote_xp(WALLET_A, 1, NOW - timedelta(hours=2))
        xp_ledger.award_presale_xp(WALLET_A, 3, NOW)

        account = xp_ledger.get_account(WALLET_A)
        assert [e.xp_type for e in account.xp_log] == ["presale", "vote"]
        assert account.last_activity == NOW.isoformat()

    def test_wallet_is_case_insensitive(self, xp_ledger):
        xp_ledger.award_vote_xp(WALLET_A.upper().replace("0X", "0x"), 2, NOW)

        assert xp_ledger.get_account(WALLET_A).vote_xp == 2

    def test_accounts_created_lazily(self, xp_ledger):
        assert xp_ledger.get_account(WALLET_A) is None
        xp_ledger.award_vote_xp(WALLET_A, 0, NOW)
        assert xp_ledger.account_count() == 1

    def test_rejects_negative_amount(self, xp_ledger):
        with pytest.raises(ValidationError):
            xp_ledger.award_vote_xp(WALLET_A, -1, NOW)

    def test_rejects_missing_wallet(self, xp_ledger):
        with pytest.raises(ValidationError):
            xp_ledger.award_vote_xp("", 1, NOW)

    def test_returned_account_is_a_copy(self, xp_ledger):
        account = xp_ledger.award_vote_xp(WALLET_A, 1, NOW)
        account.total_xp = 999

        assert xp_ledger.get_account(WALLET_A).total_xp == 1


# -----------------------------------------------------------------------------
# Invariants
# -----------------------------------------------------------------------------
class TestInvariants:

    def test_drift_raises_in_strict_mode(self, xp_ledger):
        xp_ledger.award_vote_xp(WALLET_A, 1, NOW)
        xp_ledger._accounts[WALLET_A].total_xp = 50

        with pytest.raises(InvariantViolationError):
            xp_ledger.verify_invariants()

    def test_drift_repaired_in_lenient_mode(self):
        ledger = XPLedger(strict_invariants=False)
        ledger.award_vote_xp(WALLET_A, 3, NOW)
        ledger._accounts[WALLET_A].total_xp = 50

        assert ledger.verify_invariants() == [WALLET_A]
        assert ledger.get_account(WALLET_A).total_xp == 3


# -----------------------------------------------------------------------------
# Leaderboards
# -----------------------------------------------------------------------------
class TestLeaderboard:

    def test_all_time_ranking(self, xp_ledger):
        xp_ledger.award_vote_xp(WALLET_A, 5, NOW)
        xp_ledger.award_vote_xp(WALLET_B, 20, NOW)
        xp_ledger.award_presale_xp(WALLET_C, 12, NOW)

        entries = xp_ledger.leaderboard(now=NOW)

        assert [e.wallet for e in entries] == [WALLET_B, WALLET_C, WALLET_A]
        assert [e.rank for e in entries] == [1, 2, 3]

    def test_sort_by_subtotal(self, xp_ledger):
        xp_ledger.award_vote_xp(WALLET_A, 5, NOW)
        xp_ledger.award_presale_xp(WALLET_B, 20, NOW)

        entries = xp_ledger.leaderboard(LeaderboardSortKey.VOTE_XP, now=NOW)

        assert entries[0].wallet == WALLET_A

    def test_ties_keep_creation_order(self, xp_ledger):
        xp_ledger.award_vote_xp(WALLET_C, 5, NOW)
        xp_ledger.award_vote_xp(WALLET_A, 5, NOW)
        xp_ledger.award_vote_xp(WALLET_B, 5, NOW)

        assert [e.wallet for e in xp_ledger.leaderboard(now=NOW)] == [WALLET_C, WALLET_A, WALLET_B]

    def test_daily_window_only_counts_recent_entries(self, xp_ledger):
        xp_ledger.award_vote_xp(WALLET_A, 100, NOW - timedelta(days=3))
        xp_ledger.award_vote_xp(WALLET_A, 2, NOW - timedelta(hours=1))
        xp_ledger.award_vote_xp(WALLET_B, 5, NOW - timedelta(hours=23))

        daily = xp_ledger.leaderboard(LeaderboardSortKey.TOTAL_XP, Timeframe.DAILY, now=NOW)
        all_time = xp_ledger.leaderboard(LeaderboardSortKey.TOTAL_XP, Timeframe.ALL_TIME, now=NOW)

        assert [(e.wallet, e.total_xp) for e in daily] == [(WALLET_B, 5), (WALLET_A, 2)]
        assert [(e.wallet, e.total_xp) for e in all_time] == [(WALLET_A, 102), (WALLET_B, 5)]
        assert xp_ledger.get_account(WALLET_A).vote_xp == 102

    def test_weekly_and_monthly_windows(self, xp_ledger):
        xp_ledger.award_vote_xp(WALLET_A, 1, NOW - timedelta(days=3))
        xp_ledger.award_vote_xp(WALLET_A, 10, NOW - timedelta(days=12))
        xp_ledger.award_vote_xp(WALLET_A, 100, NOW - timedelta(days=45))

        weekly = xp_ledger.leaderboard(timeframe=Timeframe.WEEKLY, now=NOW)
        monthly = xp_ledger.leaderboard(timeframe=Timeframe.MONTHLY, now=NOW)

        assert weekly[0].total_xp == 1
        assert monthly[0].total_xp == 11

    def test_limit(self, xp_ledger):
        for wallet in (WALLET_A, WALLET_B, WALLET_C):
            xp_ledger.award_vote_xp(wallet, 1, NOW)

        assert len(xp_ledger.leaderboard(limit=2, now=NOW)) == 2

    def test_user_rank(self, xp_ledger):
        xp_ledger.award_vote_xp(WALLET_A, 5, NOW)
        xp_ledger.award_vote_xp(WALLET_B, 20, NOW)

        assert xp_ledger.get_user_rank(WALLET_A, now=NOW).rank == 2
        assert xp_ledger.get_user_rank(WALLET_C, now=NOW) is None

    def test_timeframe_cutoff(self):
        assert timeframe_cutoff(Timeframe.ALL_TIME, NOW) is None
        assert timeframe_cutoff(Timeframe.DAILY, NOW) == NOW - timedelta(hours=24)
        assert timeframe_cutoff("weekly", NOW) == NOW - timedelta(days=7)

    def test_window_expires_at_oldest_included_entry(self, xp_ledger):
        assert xp_ledger.window_expires_at(Timeframe.DAILY, NOW) is None

        xp_ledger.award_vote_xp(WALLET_A, 1, NOW - timedelta(days=2))
        xp_ledger.award_vote_xp(WALLET_A, 1, NOW - timedelta(hours=20))
        xp_ledger.award_vote_xp(WALLET_B, 1, NOW - timedelta(hours=2))

        assert xp_ledger.window_expires_at(Timeframe.DAILY, NOW) == NOW + timedelta(hours=4)
        assert xp_ledger.window_expires_at(Timeframe.ALL_TIME, NOW) is None


# -----------------------------------------------------------------------------
# Persistence
# -----------------------------------------------------------------------------
class TestPersistence:

    def test_replay_rebuilds_accounts(self, tmp_path):
        log_file = tmp_path / "xp_log.jsonl"
        ledger = XPLedger(log_file, strict_invariants=True)
        ledger.award_vote_xp(WALLET_A, 3, NOW - timedelta(hours=1))
        ledger.award_builder_xp(WALLET_A, 10, NOW)

        replayed = XPLedger(log_file, strict_invariants=True)
        account = replayed.get_account(WALLET_A)

        assert account.total_xp == 13
        assert account.projects_submitted == 1
        assert [e.xp_type for e in account.xp_log] == ["builder", "vote"]
        assert len(log_file.read_text().splitlines()) == 2

    def test_malformed_lines_skipped(self, tmp_path):
        log_file = tmp_path / "xp_log.jsonl"
        ledger = XPLedger(log_file, strict_invariants=True)
        ledger.award_vote_xp(WALLET_A, 3, NOW)
        with open(log_file, "a") as f:
            f.write("{broken\n\n")

        assert XPLedger(log_file, strict_invariants=True).get_account(WALLET_A).vote_xp == 3

    def test_failed_append_leaves_account_untouched(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        ledger = XPLedger(blocker / "xp_log.jsonl", strict_invariants=True)

        with pytest.raises(PersistenceError):
            ledger.award_vote_xp(WALLET_A, 3, NOW)

        assert ledger.get_account(WALLET_A) is None
        assert ledger.account_count() == 0
