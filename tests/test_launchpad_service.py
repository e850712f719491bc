"""
Unit Tests for LaunchpadService

Test coverage for:
- Project submission (balance gate, builder XP)
- Presale mint recording against the winner
- Rotation through the service (cache invalidation, listeners)
- Outbound reads: profile, tiers, stats
- create_service wiring, persistence and demo seeding
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from launchpad.balance_oracle import BalanceOracle
from launchpad.errors import (
    InsufficientBalanceError,
    PersistenceError,
    PresaleUnavailableError,
    UnknownProjectError,
    ValidationError,
)
from launchpad.launchpad_service import BUILDER_XP_PER_SUBMISSION, create_service
from launchpad.project_registry import ActiveOrder
from launchpad.seed_data import DEMO_ACTIVE, DEMO_XP
from launchpad.xp_ledger import Timeframe

from tests.conftest import (
    NOW,
    TEST_BALANCES,
    WALLET_CONTRIBUTOR,
    WALLET_LEADER,
    WALLET_NO_TIER,
    make_active,
)


@pytest.fixture
def winner(registry):
    (project,) = make_active(registry, NOW, "Gamma")
    return registry.set_winner(project, now=NOW, presale_seed=100)


# -----------------------------------------------------------------------------
# Submission
# -----------------------------------------------------------------------------
class TestSubmitProject:

    def test_builder_submission_awards_xp(self, service):
        listener = MagicMock()
        service.add_listener(listener)

        project = service.submit_project("Alpha", "ALP", "https://alpha.xyz", builder_wallet=WALLET_CONTRIBUTOR, now=NOW)

        assert [p.project_id for p in service.get_submissions()] == [project.project_id]
        account = service.xp_ledger.get_account(WALLET_CONTRIBUTOR)
        assert account.builder_xp == BUILDER_XP_PER_SUBMISSION
        assert account.projects_submitted == 1
        listener.assert_called_once()

    def test_builder_below_minimum_balance(self, service):
        with pytest.raises(InsufficientBalanceError) as exc_info:
            service.submit_project("Alpha", "ALP", "https://alpha.xyz", builder_wallet=WALLET_NO_TIER)

        assert exc_info.value.details["required"] == 10_000_000
        assert service.get_submissions() == []

    def test_anonymous_submission_has_no_xp(self, service):
        service.submit_project("Alpha", "ALP", "https://alpha.xyz")

        assert len(service.get_submissions()) == 1
        assert service.xp_ledger.account_count() == 0

    def test_invalid_submission_awards_nothing(self, service):
        with pytest.raises(ValidationError):
            service.submit_project("", "ALP", "https://alpha.xyz", builder_wallet=WALLET_CONTRIBUTOR)

        assert service.xp_ledger.get_account(WALLET_CONTRIBUTOR) is None


# -----------------------------------------------------------------------------
# Presale Mints
# -----------------------------------------------------------------------------
class TestRecordMint:

    def test_mint_counts_against_winner(self, service, winner):
        account = service.record_mint(WALLET_NO_TIER, 4, now=NOW)

        assert service.get_current_winner().presale_mints == 104
        assert account.presale_xp == 4
        assert account.mints_contributed == 4
        assert account.xp_log[0].xp_type == "presale"

    def test_mint_with_matching_project(self, service, winner):
        service.record_mint(WALLET_NO_TIER, 1, project_id=winner.project_id, now=NOW)
        assert service.get_current_winner().presale_mints == 101

    def test_no_winner(self, service):
        with pytest.raises(PresaleUnavailableError):
            service.record_mint(WALLET_NO_TIER, 1, now=NOW)

        assert service.xp_ledger.get_account(WALLET_NO_TIER) is None

    def test_wrong_project(self, service, winner):
        with pytest.raises(UnknownProjectError):
            service.record_mint(WALLET_NO_TIER, 1, project_id="someone-else", now=NOW)

        assert service.get_current_winner().presale_mints == 100

    @pytest.mark.parametrize("count", [0, -3, 10001, True])
    def test_count_out_of_range(self, service, winner, count):
        with pytest.raises(ValidationError):
            service.record_mint(WALLET_NO_TIER, count, now=NOW)

    def test_failed_xp_write_rolls_back_mint(self, service, winner):
        failure = PersistenceError("XP log", OSError("disk full"))

        with patch.object(service.xp_ledger, "_append_record", side_effect=failure):
            with pytest.raises(PersistenceError):
                service.record_mint(WALLET_NO_TIER, 4, now=NOW)

        assert service.get_current_winner().presale_mints == 100
        assert service.xp_ledger.get_account(WALLET_NO_TIER) is None

    def test_mint_invalidates_leaderboard(self, service, winner):
        assert service.get_leaderboard() == []

        service.record_mint(WALLET_NO_TIER, 2, now=NOW)

        assert service.get_leaderboard()[0].wallet == WALLET_NO_TIER


# -----------------------------------------------------------------------------
# Voting and Rotation
# -----------------------------------------------------------------------------
class TestVotingAndRotation:

    def test_vote_refreshes_leaderboard(self, service, active_projects):
        service.get_leaderboard()

        service.cast_vote(WALLET_CONTRIBUTOR, active_projects[0].project_id, 5, now=NOW)

        assert service.get_leaderboard()[0].vote_xp == 5

    def test_rotation_notifies_listeners(self, service, active_projects):
        listener = MagicMock()
        service.add_listener(listener)
        service.xp_ledger.award_vote_xp(WALLET_NO_TIER, 1, NOW)
        service.get_leaderboard()
        service.xp_ledger.award_vote_xp(WALLET_LEADER, 9, NOW)

        result = service.run_daily_rotation(NOW)

        assert result.winner.project_id == active_projects[0].project_id
        listener.assert_called_once()
        assert service.get_leaderboard()[0].wallet == WALLET_LEADER

    def test_skipped_rotation_is_silent(self, service, active_projects):
        service.run_daily_rotation(NOW)
        listener = MagicMock()
        service.add_listener(listener)

        assert service.run_daily_rotation(NOW).skipped
        listener.assert_not_called()

    def test_run_rotation_if_due(self, service, active_projects):
        assert service.run_rotation_if_due(NOW) is not None
        assert service.run_rotation_if_due(NOW + timedelta(hours=3)) is None

    def test_failing_listener_does_not_break_caller(self, service, active_projects):
        service.add_listener(MagicMock(side_effect=RuntimeError("closed")))

        receipt = service.cast_vote(WALLET_NO_TIER, active_projects[0].project_id, 1, now=NOW)

        assert receipt.votes_cast == 1


# -----------------------------------------------------------------------------
# Outbound Reads
# -----------------------------------------------------------------------------
class TestReads:

    def test_active_projects_ordering(self, service, registry, active_projects):
        registry.add_votes(active_projects[2].project_id, 5)

        ordered = service.get_active_projects(ActiveOrder.VOTES)

        assert ordered[0].project_id == active_projects[2].project_id
        assert [p.project_id for p in service.get_active_projects()] == [p.project_id for p in active_projects]

    def test_user_tier(self, service):
        assert service.get_user_tier(WALLET_LEADER).name == "Leader"
        assert service.get_user_tier(WALLET_NO_TIER) is None

    def test_user_profile(self, service, active_projects):
        service.cast_vote(WALLET_CONTRIBUTOR, active_projects[0].project_id, 5, now=NOW)

        profile = service.get_user_profile(WALLET_CONTRIBUTOR, NOW)

        assert profile["balance"] == TEST_BALANCES[WALLET_CONTRIBUTOR]
        assert profile["tier"]["name"] == "Contributor"
        assert profile["next_tier"]["name"] == "Advocate"
        assert profile["daily_allowance"] == 13
        assert profile["remaining_votes"] == 8
        assert profile["xp"]["vote_xp"] == 5
        assert profile["rank"] == 1

    def test_profile_for_new_wallet(self, service):
        profile = service.get_user_profile(WALLET_NO_TIER, NOW)

        assert profile["tier"] is None
        assert profile["xp"]["total_xp"] == 0
        assert profile["rank"] is None

    def test_stats(self, service, active_projects):
        stats = service.get_stats()

        assert stats["projects"]["active"] == 3
        assert stats["xp_accounts"] == 0
        assert "rotation" in stats and "leaderboard_cache" in stats


# -----------------------------------------------------------------------------
# Wiring
# -----------------------------------------------------------------------------
class TestCreateService:

    def test_state_persists_across_restarts(self, tmp_path):
        oracle = BalanceOracle(rpc_url="http://rpc.test", fallback_balances=TEST_BALANCES)
        service = create_service(tmp_path, strict_invariants=True, balance_oracle=oracle)
        (project,) = make_active(service.registry, NOW, "Alpha")
        service.cast_vote(WALLET_CONTRIBUTOR, project.project_id, 3)

        restarted = create_service(tmp_path, strict_invariants=True, balance_oracle=oracle)

        assert restarted.registry.get_active_project(project.project_id).votes == 3
        assert restarted.xp_ledger.get_account(WALLET_CONTRIBUTOR).vote_xp == 3
        assert restarted.voting_ledger.remaining_votes(WALLET_CONTRIBUTOR) == 10
        assert {p.name for p in tmp_path.iterdir()} >= {"registry.json", "xp_log.jsonl", "votes.json"}

    def test_demo_seed(self, tmp_path):
        service = create_service(tmp_path, seed_demo=True, strict_invariants=True)

        counts = service.registry.get_project_counts()
        assert counts == {"submissions": 2, "active": len(DEMO_ACTIVE), "archived": 1, "winner": 1}
        assert service.get_current_winner().name == "Gaming Token Hub"
        assert service.xp_ledger.account_count() == len(DEMO_XP)
        assert service.registry.check_invariants() == []
        assert not service.scheduler.is_rotation_due()

        top = service.get_leaderboard()[0]
        assert top.wallet == "0x742d35cc6635c0532925a3b8d82e8db7dc2f7b90"
        assert top.total_xp == sum(DEMO_XP["0x742d35Cc6635C0532925a3b8D82E8DB7dc2f7b90"])
        assert service.get_leaderboard(timeframe=Timeframe.DAILY)[0].total_xp < top.total_xp

    def test_demo_seed_only_into_empty_registry(self, tmp_path):
        create_service(tmp_path, seed_demo=True, strict_invariants=True)

        reloaded = create_service(tmp_path, seed_demo=True, strict_invariants=True)

        wallet = "0x742d35cc6635c0532925a3b8d82e8db7dc2f7b90"
        assert reloaded.xp_ledger.get_account(wallet).total_xp == sum(DEMO_XP["0x742d35Cc6635C0532925a3b8D82E8DB7dc2f7b90"])
        assert len(reloaded.get_active_projects()) == len(DEMO_ACTIVE)
