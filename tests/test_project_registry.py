"""
Unit Tests for ProjectRegistry

Test coverage for:
- Submission intake and validation
- Phase mutations (promote, archive, winner slot)
- Transactions: rollback and single persist
- Invariant checks (strict and repair modes)
- Persistence round trip through the registry file
"""

import json
from dataclasses import replace
from unittest.mock import patch

import pytest

from launchpad.errors import InvariantViolationError, UnknownProjectError, ValidationError
from launchpad.project_registry import (
    ActiveOrder,
    DEFAULT_LOGO,
    Project,
    ProjectPhase,
    ProjectRegistry,
    WINNER_PRESALE_SEED,
)

from tests.conftest import NOW, make_active


# -----------------------------------------------------------------------------
# Submission Intake
# -----------------------------------------------------------------------------
class TestSubmit:

    def test_submit_appends_to_submissions(self, registry):
        project = registry.submit(name="Alpha", ticker="alp", url="https://alpha.xyz", now=NOW)

        assert project.project_id.startswith("sub-")
        assert project.ticker == "ALP"
        assert project.logo == DEFAULT_LOGO
        assert project.votes == 0
        assert project.days_active == 0
        assert [p.project_id for p in registry.get_submissions()] == [project.project_id]
        assert registry.phase_of(project.project_id) == ProjectPhase.SUBMISSION

    def test_submit_normalizes_builder_wallet(self, registry):
        project = registry.submit(
            name="Alpha", ticker="ALP", url="https://alpha.xyz",
            builder_wallet="0xABCDEF1234567890ABCDEF1234567890ABCDEF12",
        )
        assert project.builder_wallet == "0xabcdef1234567890abcdef1234567890abcdef12"

    def test_submit_rejects_missing_fields(self, registry):
        with pytest.raises(ValidationError) as exc_info:
            registry.submit(name="", ticker=" ", url="")

        assert len(exc_info.value.details["errors"]) == 3
        assert registry.get_submissions() == []

    def test_submit_rejects_vaulted_supply_out_of_range(self, registry):
        with pytest.raises(ValidationError):
            registry.submit(name="Alpha", ticker="ALP", url="https://alpha.xyz", vaulted_supply=31)

    def test_returned_project_is_a_copy(self, registry):
        project = registry.submit(name="Alpha", ticker="ALP", url="https://alpha.xyz")
        project.votes = 99

        assert registry.get_submissions()[0].votes == 0


# -----------------------------------------------------------------------------
# Phase Mutations
# -----------------------------------------------------------------------------
class TestPhaseMutations:

    def test_promote_drains_submissions_fifo(self, registry):
        promoted = make_active(registry, NOW, "Alpha", "Beta")

        assert [p.name for p in promoted] == ["Alpha", "Beta"]
        assert registry.get_submissions() == []
        assert all(p.days_active == 1 and p.votes == 0 for p in registry.get_active_projects())

    def test_archive_moves_active_project(self, registry, active_projects):
        archived = registry.archive(active_projects[0].project_id, now=NOW)

        assert archived.archived_at == NOW.isoformat()
        assert registry.phase_of(archived.project_id) == ProjectPhase.ARCHIVED
        assert len(registry.get_active_projects()) == 2

    def test_archive_unknown_project(self, registry):
        with pytest.raises(UnknownProjectError):
            registry.archive("missing")

    def test_set_winner_removes_from_active(self, registry, active_projects):
        winner = registry.set_winner(active_projects[1], now=NOW)

        assert winner.project_id == active_projects[1].project_id
        assert winner.presale_mints == WINNER_PRESALE_SEED
        assert registry.phase_of(winner.project_id) == ProjectPhase.WINNER
        assert active_projects[1].project_id not in [p.project_id for p in registry.get_active_projects()]

    def test_set_winner_discards_previous_winner(self, registry, active_projects):
        first = registry.set_winner(active_projects[0], now=NOW)
        registry.set_winner(active_projects[1], now=NOW)

        assert registry.get_current_winner().project_id == active_projects[1].project_id
        with pytest.raises(UnknownProjectError):
            registry.phase_of(first.project_id)

    def test_set_winner_from_archive_is_invariant_violation(self, registry, active_projects):
        archived = registry.archive(active_projects[0].project_id)

        with pytest.raises(InvariantViolationError):
            registry.set_winner(archived)

    def test_add_votes_returns_old_and_new(self, registry, active_projects):
        project_id = active_projects[0].project_id

        assert registry.add_votes(project_id, 3) == (0, 3)
        assert registry.add_votes(project_id, 4) == (3, 7)

    def test_add_votes_requires_active_project(self, registry):
        submitted = registry.submit(name="Alpha", ticker="ALP", url="https://alpha.xyz")

        with pytest.raises(UnknownProjectError):
            registry.add_votes(submitted.project_id, 1)

    def test_increment_presale_mints_without_winner(self, registry):
        assert registry.increment_presale_mints(5) is None

    def test_increment_presale_mints(self, registry, active_projects):
        registry.set_winner(active_projects[0], now=NOW, presale_seed=0)

        assert registry.increment_presale_mints(5).presale_mints == 5


# -----------------------------------------------------------------------------
# Queries
# -----------------------------------------------------------------------------
class TestQueries:

    def test_sorted_active_orders(self, registry, active_projects):
        alpha, beta, gamma = [p.project_id for p in active_projects]
        registry.add_votes(alpha, 5)
        registry.add_votes(beta, 8)
        registry.bump_priority_score(alpha, 4)

        assert [p.project_id for p in registry.sorted_active(ActiveOrder.VOTES)] == [beta, alpha, gamma]
        assert [p.project_id for p in registry.sorted_active(ActiveOrder.HOT)] == [alpha, beta, gamma]

    def test_project_counts(self, registry, active_projects):
        registry.submit(name="Delta", ticker="DEL", url="https://delta.xyz")
        registry.set_winner(active_projects[0])

        assert registry.get_project_counts() == {"submissions": 1, "active": 2, "archived": 0, "winner": 1}

    def test_phase_of_unknown(self, registry):
        with pytest.raises(UnknownProjectError):
            registry.phase_of("nope")


# -----------------------------------------------------------------------------
# Transactions
# -----------------------------------------------------------------------------
class TestTransactions:

    def test_rollback_restores_state(self, registry, active_projects):
        project_id = active_projects[0].project_id

        with pytest.raises(RuntimeError):
            with registry.transaction():
                registry.add_votes(project_id, 7)
                registry.archive(active_projects[1].project_id)
                raise RuntimeError("boom")

        assert registry.get_active_project(project_id).votes == 0
        assert len(registry.get_active_projects()) == 3
        assert registry.get_archived_projects() == []

    def test_transaction_saves_once(self, tmp_path, now):
        registry = ProjectRegistry(tmp_path / "registry.json", strict_invariants=True)
        projects = make_active(registry, now, "Alpha", "Beta")

        with patch.object(registry, "_save_registry", wraps=registry._save_registry) as save:
            with registry.transaction():
                registry.add_votes(projects[0].project_id, 1)
                registry.add_votes(projects[1].project_id, 1)
                registry.bump_priority_score(projects[0].project_id)

        assert save.call_count == 1


# -----------------------------------------------------------------------------
# Invariants
# -----------------------------------------------------------------------------
class TestInvariants:

    def test_clean_registry_has_no_violations(self, registry, active_projects):
        registry.set_winner(active_projects[0])
        assert registry.check_invariants() == []

    def test_duplicate_raises_in_strict_mode(self, registry, active_projects):
        registry.replace_state(
            submissions=[active_projects[0]],
            active=active_projects,
            archived=[],
            winner=None,
        )
        with pytest.raises(InvariantViolationError):
            registry.check_invariants()

    def test_duplicate_repaired_in_lenient_mode(self, now):
        registry = ProjectRegistry(strict_invariants=False)
        projects = make_active(registry, now, "Alpha", "Beta")
        archived = replace(projects[0], archived_at=now.isoformat())
        registry.replace_state(
            submissions=[projects[1]],
            active=projects,
            archived=[archived],
            winner=None,
        )

        duplicates = registry.check_invariants()

        assert sorted(duplicates) == sorted(p.project_id for p in projects)
        assert registry.phase_of(projects[0].project_id) == ProjectPhase.ARCHIVED
        assert [p.project_id for p in registry.get_active_projects()] == [projects[1].project_id]
        assert registry.get_submissions() == []
        assert registry.check_invariants() == []


# -----------------------------------------------------------------------------
# Persistence
# -----------------------------------------------------------------------------
class TestPersistence:

    def test_state_survives_reload(self, tmp_path, now):
        registry_file = tmp_path / "registry.json"
        registry = ProjectRegistry(registry_file, strict_invariants=True)
        projects = make_active(registry, now, "Alpha", "Beta")
        registry.add_votes(projects[0].project_id, 4)
        registry.set_winner(projects[1], now=now)

        reloaded = ProjectRegistry(registry_file, strict_invariants=True)

        assert reloaded.get_active_project(projects[0].project_id).votes == 4
        assert reloaded.get_current_winner().project_id == projects[1].project_id
        assert json.loads(registry_file.read_text())["version"] == "1.0"

    def test_corrupt_file_starts_fresh(self, tmp_path):
        registry_file = tmp_path / "registry.json"
        registry_file.write_text("{not json")

        registry = ProjectRegistry(registry_file, strict_invariants=True)

        assert registry.get_project_counts()["active"] == 0

    def test_project_round_trip(self):
        project = Project(project_id="p1", name="Alpha", ticker="ALP", url="https://alpha.xyz", votes=3)
        assert Project.from_dict(project.to_dict()) == project
