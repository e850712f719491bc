"""
Pytest configuration for launchpad tests.

This module provides:
1. Component fixtures wired in memory (or on tmp_path for persistence tests)
2. Test wallets with fallback balances in known holder tiers
3. A fixed clock for deterministic rotations and windows
"""

from datetime import datetime

import pytest

from launchpad.balance_oracle import BalanceOracle
from launchpad.launchpad_service import LaunchpadService
from launchpad.leaderboard_cache import LeaderboardService
from launchpad.lifecycle_scheduler import LifecycleScheduler
from launchpad.project_registry import ProjectRegistry
from launchpad.voting_ledger import VotingLedger
from launchpad.xp_ledger import XPLedger


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
NOW = datetime(2024, 6, 1, 12, 0, 0)

WALLET_NO_TIER = "0x" + "1" * 40
WALLET_CONTRIBUTOR = "0x" + "2" * 40   # 10M, +3 bonus votes
WALLET_LEADER = "0x" + "3" * 40        # 100M, +15 bonus votes
WALLET_LEGENDARY = "0x" + "4" * 40     # 2B, +151 bonus votes

TEST_BALANCES = {
    WALLET_CONTRIBUTOR: 10_000_000,
    WALLET_LEADER: 100_000_000,
    WALLET_LEGENDARY: 2_000_000_000,
}

TX_HASH = "0x" + "ab" * 32


# -----------------------------------------------------------------------------
# Component Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def now():
    return NOW


@pytest.fixture
def registry():
    return ProjectRegistry(strict_invariants=True)


@pytest.fixture
def xp_ledger():
    return XPLedger(strict_invariants=True)


@pytest.fixture
def oracle():
    return BalanceOracle(rpc_url="http://rpc.test", fallback_balances=TEST_BALANCES)


@pytest.fixture
def voting_ledger(registry, xp_ledger, oracle):
    return VotingLedger(registry, xp_ledger, oracle)


@pytest.fixture
def scheduler(registry, voting_ledger):
    return LifecycleScheduler(registry, voting_ledger)


@pytest.fixture
def leaderboard(xp_ledger):
    return LeaderboardService(xp_ledger)


@pytest.fixture
def service(registry, xp_ledger, oracle, voting_ledger, scheduler, leaderboard):
    return LaunchpadService(registry, xp_ledger, oracle, voting_ledger, scheduler, leaderboard)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def make_active(registry, now, *names):
    """Submit projects and promote them straight into active voting."""
    for name in names:
        registry.submit(name=name, ticker=name[:4], url=f"https://{name.lower()}.xyz", now=now)
    return registry.promote_submissions_to_active()


@pytest.fixture
def active_projects(registry, now):
    """Three active projects: Alpha, Beta, Gamma (in that order)."""
    return make_active(registry, now, "Alpha", "Beta", "Gamma")
