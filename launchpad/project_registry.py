"""
Project Registry

Canonical source of truth for the phase of every launchpad project.

This module provides:
1. Project and WinningProject models
2. The four phase collections (submissions, active, winner slot, archived)
3. Transactional, atomically persisted mutations
4. Phase queries and invariant checks

HARD CONSTRAINTS:
- A project lives in exactly one of: submissions, active, winner slot, archived
- Archived projects are terminal and never mutated again
- All mutations run under the registry lock (single writer)
- A failed transaction restores the state captured when it began
"""

import json
import logging
import os
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple

from .errors import (
    UnknownProjectError,
    ValidationError,
    PersistenceError,
    report_invariant_violation,
)

logger = logging.getLogger("project_registry")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
REGISTRY_VERSION = "1.0"
MAX_DAYS_ACTIVE = 5
PRESALE_WINDOW_HOURS = 24
WINNER_PRESALE_SEED = int(os.getenv("WINNER_PRESALE_SEED", "1200"))
MAX_VAULTED_SUPPLY = 30
DEFAULT_LOGO = "🚀"


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------
class ProjectPhase(str, Enum):
    """Phase a project currently occupies."""
    SUBMISSION = "submission"
    ACTIVE = "active"
    WINNER = "winner"
    ARCHIVED = "archived"


class ActiveOrder(str, Enum):
    """Orderings offered for the active voting list."""
    VOTES = "votes"
    HOT = "hot"
    NEWEST = "newest"
    ENDING = "ending"


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------
@dataclass
class Project:
    """
    A builder-submitted project moving through the daily lifecycle.

    votes resets on every phase transition, days_active counts rotations
    survived in active voting, priority_score only ever grows.
    """
    project_id: str
    name: str
    ticker: str
    url: str
    logo: str = DEFAULT_LOGO
    votes: int = 0
    days_active: int = 0
    priority_score: int = 0
    is_image_logo: bool = False
    builder_wallet: Optional[str] = None
    vaulted_supply: int = 0
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())
    archived_at: Optional[str] = None

    @property
    def hot_score(self) -> int:
        return self.votes + self.priority_score

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Project":
        """Create from dictionary."""
        return cls(**data)


@dataclass
class WinningProject:
    """The single project currently running its timed presale."""
    project_id: str
    name: str
    ticker: str
    url: str
    logo: str
    presale_mints: int
    ends_at: str
    promoted_at: str
    is_image_logo: bool = False
    vaulted_supply: int = 0
    builder_wallet: Optional[str] = None

    @classmethod
    def from_project(
        cls,
        project: Project,
        now: Optional[datetime] = None,
        presale_seed: Optional[int] = None,
        window_hours: int = PRESALE_WINDOW_HOURS,
    ) -> "WinningProject":
        """Promote a project into the winner slot."""
        now = now or datetime.utcnow()
        return cls(
            project_id=project.project_id,
            name=project.name,
            ticker=project.ticker,
            url=project.url,
            logo=project.logo,
            presale_mints=WINNER_PRESALE_SEED if presale_seed is None else presale_seed,
            ends_at=(now + timedelta(hours=window_hours)).isoformat(),
            promoted_at=now.isoformat(),
            is_image_logo=project.is_image_logo,
            vaulted_supply=project.vaulted_supply,
            builder_wallet=project.builder_wallet,
        )

    @property
    def ends_at_datetime(self) -> datetime:
        return datetime.fromisoformat(self.ends_at)

    def is_presale_open(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.utcnow()) < self.ends_at_datetime

    def seconds_remaining(self, now: Optional[datetime] = None) -> int:
        delta = self.ends_at_datetime - (now or datetime.utcnow())
        return max(0, int(delta.total_seconds()))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WinningProject":
        return cls(**data)


# -----------------------------------------------------------------------------
# Project Registry
# -----------------------------------------------------------------------------
class ProjectRegistry:
    """
    Holder of the four phase collections.

    Provides:
    - Submission intake
    - Phase mutations used by the lifecycle scheduler
    - Transactions with rollback and a single persist on commit
    - Read accessors that hand out copies
    """

    def __init__(
        self,
        registry_file: Optional[Path] = None,
        strict_invariants: Optional[bool] = None,
    ):
        self._registry_file = registry_file
        self._strict = strict_invariants
        self._lock = threading.RLock()
        self._tx_depth = 0
        self._dirty = False
        self._submissions: List[Project] = []
        self._active: List[Project] = []
        self._archived: List[Project] = []
        self._winner: Optional[WinningProject] = None
        self._last_rotation_date: Optional[str] = None

        if self._registry_file is not None:
            self._load_registry()

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Serializable snapshot of the whole registry."""
        with self._lock:
            return {
                "version": REGISTRY_VERSION,
                "updated_at": datetime.utcnow().isoformat(),
                "submissions": [p.to_dict() for p in self._submissions],
                "active": [p.to_dict() for p in self._active],
                "archived": [p.to_dict() for p in self._archived],
                "winner": self._winner.to_dict() if self._winner else None,
                "last_rotation_date": self._last_rotation_date,
            }

    def _restore(self, data: Dict[str, Any]) -> None:
        self._submissions = [Project.from_dict(p) for p in data.get("submissions", [])]
        self._active = [Project.from_dict(p) for p in data.get("active", [])]
        self._archived = [Project.from_dict(p) for p in data.get("archived", [])]
        winner = data.get("winner")
        self._winner = WinningProject.from_dict(winner) if winner else None
        self._last_rotation_date = data.get("last_rotation_date")

    def _load_registry(self) -> None:
        """Load collections from persistent storage."""
        if not self._registry_file.exists():
            logger.info("No existing registry file, starting fresh")
            return

        try:
            with open(self._registry_file) as f:
                data = json.load(f)
            self._restore(data)
            logger.info(
                f"Loaded registry: {len(self._submissions)} submissions, "
                f"{len(self._active)} active, {len(self._archived)} archived"
            )
        except Exception as e:
            logger.error(f"Failed to load registry: {e}")
            self._restore({})

    def _save_registry(self) -> None:
        """Save collections to persistent storage."""
        self._dirty = False
        if self._registry_file is None:
            return

        try:
            self._registry_file.parent.mkdir(parents=True, exist_ok=True)

            # Atomic write
            temp_file = self._registry_file.with_suffix(".tmp")
            with open(temp_file, "w") as f:
                json.dump(self.to_dict(), f, indent=2)
            temp_file.replace(self._registry_file)

            logger.debug(f"Saved registry to {self._registry_file}")
        except Exception as e:
            logger.error(f"Failed to save registry: {e}")
            raise PersistenceError("project registry", e)

    def _changed(self) -> None:
        if self._tx_depth:
            self._dirty = True
        else:
            self._save_registry()

    @contextmanager
    def transaction(self):
        """
        Run several mutations as one atomic unit.

        Holds the registry lock for the whole block, persists once on
        success and restores the starting state if the block raises.
        """
        with self._lock:
            outermost = self._tx_depth == 0
            snapshot = self.to_dict() if outermost else None
            self._tx_depth += 1
            try:
                yield self
            except Exception:
                self._tx_depth -= 1
                if outermost:
                    self._restore(snapshot)
                    self._dirty = False
                    logger.warning("Registry transaction rolled back")
                raise
            self._tx_depth -= 1
            if outermost and self._dirty:
                self._save_registry()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    # -------------------------------------------------------------------------
    # Submission Intake
    # -------------------------------------------------------------------------

    def submit(
        self,
        name: str,
        ticker: str,
        url: str,
        logo: Optional[str] = None,
        builder_wallet: Optional[str] = None,
        vaulted_supply: int = 0,
        is_image_logo: bool = False,
        now: Optional[datetime] = None,
    ) -> Project:
        """
        Append a new project to submissions.

        The project waits there until the next rotation promotes it.
        """
        errors = []
        if not name or not name.strip():
            errors.append("Name is required")
        if not ticker or not ticker.strip():
            errors.append("Ticker is required")
        if not url or not url.strip():
            errors.append("URL is required")
        if not 0 <= vaulted_supply <= MAX_VAULTED_SUPPLY:
            errors.append(f"Vaulted supply must be between 0 and {MAX_VAULTED_SUPPLY}")
        if errors:
            raise ValidationError(errors)

        project = Project(
            project_id=f"sub-{uuid.uuid4().hex[:12]}",
            name=name.strip(),
            ticker=ticker.strip().upper(),
            url=url.strip(),
            logo=logo or DEFAULT_LOGO,
            is_image_logo=is_image_logo,
            builder_wallet=builder_wallet.lower() if builder_wallet else None,
            vaulted_supply=vaulted_supply,
            created_at=(now or datetime.utcnow()).isoformat(),
        )

        with self._lock:
            self._submissions.append(project)
            self._changed()

        logger.info(f"Submitted project: {project.name} ({project.ticker}, id={project.project_id})")
        return replace(project)

    # -------------------------------------------------------------------------
    # Phase Mutations
    # -------------------------------------------------------------------------

    def promote_submissions_to_active(self) -> List[Project]:
        """Drain submissions into active voting in FIFO order."""
        with self._lock:
            promoted = []
            while self._submissions:
                project = self._submissions.pop(0)
                project.days_active = 1
                project.votes = 0
                self._active.append(project)
                promoted.append(replace(project))
                logger.info(f"Added to voting: {project.name}")
            if promoted:
                self._changed()
            return promoted

    def archive(self, project_id: str, now: Optional[datetime] = None) -> Project:
        """Move a project from active to the terminal archive."""
        with self._lock:
            index = self._active_index(project_id)
            project = self._active.pop(index)
            project.archived_at = (now or datetime.utcnow()).isoformat()
            self._archived.append(project)
            self._changed()

        logger.info(f"Archived: {project.name} ({project.days_active} days active)")
        return replace(project)

    def remove_active(self, project_id: str) -> Project:
        """Take a project out of active voting."""
        with self._lock:
            project = self._active.pop(self._active_index(project_id))
            self._changed()
            return replace(project)

    def set_winner(
        self,
        project: Project,
        now: Optional[datetime] = None,
        presale_seed: Optional[int] = None,
    ) -> WinningProject:
        """
        Overwrite the winner slot.

        The previous winner is discarded. A project still sitting in active
        voting is removed from it.
        """
        with self._lock:
            phase = self._phase_of(project.project_id)
            if phase in (ProjectPhase.SUBMISSION, ProjectPhase.ARCHIVED):
                report_invariant_violation(
                    f"Project {project.project_id} cannot win from {phase.value}",
                    {"project_id": project.project_id, "phase": phase.value},
                    strict=self._strict,
                )
                self._submissions = [p for p in self._submissions if p.project_id != project.project_id]
                self._archived = [p for p in self._archived if p.project_id != project.project_id]
            self._active = [p for p in self._active if p.project_id != project.project_id]

            previous = self._winner
            self._winner = WinningProject.from_project(project, now=now, presale_seed=presale_seed)
            self._changed()
            winner = replace(self._winner)

        if previous:
            logger.info(f"Winner slot: {previous.name} replaced by {project.name}")
        else:
            logger.info(f"Winner slot: {project.name}")
        return winner

    def add_votes(self, project_id: str, count: int) -> Tuple[int, int]:
        """
        Add votes to an active project.

        Returns: (old_votes, new_votes)
        """
        with self._lock:
            project = self._active[self._active_index(project_id)]
            old_votes = project.votes
            project.votes += count
            self._changed()
            return old_votes, project.votes

    def bump_priority_score(self, project_id: str, amount: int = 1) -> int:
        """Raise the priority score of an active project."""
        with self._lock:
            project = self._active[self._active_index(project_id)]
            project.priority_score += amount
            self._changed()
            return project.priority_score

    def increment_presale_mints(self, amount: int) -> Optional[WinningProject]:
        """Count presale mints against the current winner."""
        with self._lock:
            if self._winner is None:
                return None
            self._winner.presale_mints += amount
            self._changed()
            return replace(self._winner)

    def replace_state(
        self,
        submissions: List[Project],
        active: List[Project],
        archived: List[Project],
        winner: Optional[WinningProject],
        last_rotation_date: Optional[str] = None,
    ) -> None:
        """Commit a complete new set of collections in one step."""
        with self._lock:
            self._submissions = list(submissions)
            self._active = list(active)
            self._archived = list(archived)
            self._winner = winner
            if last_rotation_date is not None:
                self._last_rotation_date = last_rotation_date
            self._changed()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def last_rotation_date(self) -> Optional[str]:
        return self._last_rotation_date

    def get_submissions(self) -> List[Project]:
        with self._lock:
            return [replace(p) for p in self._submissions]

    def get_active_projects(self) -> List[Project]:
        with self._lock:
            return [replace(p) for p in self._active]

    def get_archived_projects(self) -> List[Project]:
        with self._lock:
            return [replace(p) for p in self._archived]

    def get_current_winner(self) -> Optional[WinningProject]:
        with self._lock:
            return replace(self._winner) if self._winner else None

    def get_all_projects(self) -> List[Project]:
        """Every project outside the winner slot."""
        with self._lock:
            return [replace(p) for p in self._submissions + self._active + self._archived]

    def get_project(self, project_id: str) -> Optional[Project]:
        """Get a project by ID from any collection."""
        with self._lock:
            for project in self._submissions + self._active + self._archived:
                if project.project_id == project_id:
                    return replace(project)
            return None

    def get_active_project(self, project_id: str) -> Project:
        with self._lock:
            return replace(self._active[self._active_index(project_id)])

    def phase_of(self, project_id: str) -> ProjectPhase:
        """Get the phase a project currently occupies."""
        with self._lock:
            phase = self._phase_of(project_id)
            if phase is None:
                raise UnknownProjectError(project_id)
            return phase

    def sorted_active(self, order: ActiveOrder = ActiveOrder.VOTES) -> List[Project]:
        """Active projects in one of the voting page orderings."""
        projects = self.get_active_projects()
        order = ActiveOrder(order)

        if order == ActiveOrder.VOTES:
            projects.sort(key=lambda p: p.votes, reverse=True)
        elif order == ActiveOrder.HOT:
            projects.sort(key=lambda p: p.hot_score, reverse=True)
        elif order == ActiveOrder.NEWEST:
            # Fewest days first, then most votes
            projects.sort(key=lambda p: (p.days_active, -p.votes))
        elif order == ActiveOrder.ENDING:
            projects.sort(key=lambda p: p.days_active, reverse=True)

        return projects

    def get_project_counts(self) -> Dict[str, int]:
        with self._lock:
            return {
                "submissions": len(self._submissions),
                "active": len(self._active),
                "archived": len(self._archived),
                "winner": 1 if self._winner else 0,
            }

    # -------------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------------

    def check_invariants(self) -> List[str]:
        """
        Verify every project occupies exactly one collection.

        Returns the IDs that were found in more than one place (after repair
        when strict mode is off).
        """
        with self._lock:
            seen: Dict[str, List[str]] = {}
            for phase, projects in (
                (ProjectPhase.SUBMISSION, self._submissions),
                (ProjectPhase.ACTIVE, self._active),
                (ProjectPhase.ARCHIVED, self._archived),
            ):
                for project in projects:
                    seen.setdefault(project.project_id, []).append(phase.value)
            if self._winner:
                seen.setdefault(self._winner.project_id, []).append(ProjectPhase.WINNER.value)

            duplicates = sorted(pid for pid, phases in seen.items() if len(phases) > 1)
            if not duplicates:
                return []

            report_invariant_violation(
                f"Projects found in more than one collection: {duplicates}",
                {"projects": {pid: seen[pid] for pid in duplicates}},
                strict=self._strict,
            )
            self._repair_duplicates(duplicates)
            self._changed()
            return duplicates

    def _repair_duplicates(self, duplicates: List[str]) -> None:
        """Keep the most advanced phase: archived > winner > active > submission."""
        for project_id in duplicates:
            keep = self._phase_of(project_id)
            if keep != ProjectPhase.WINNER and self._winner and self._winner.project_id == project_id:
                self._winner = None
            self._submissions = self._keep_first(self._submissions, project_id, keep == ProjectPhase.SUBMISSION)
            self._active = self._keep_first(self._active, project_id, keep == ProjectPhase.ACTIVE)
            self._archived = self._keep_first(self._archived, project_id, keep == ProjectPhase.ARCHIVED)

    @staticmethod
    def _keep_first(projects: List[Project], project_id: str, keep: bool) -> List[Project]:
        result, kept = [], False
        for project in projects:
            if project.project_id == project_id:
                if not keep or kept:
                    continue
                kept = True
            result.append(project)
        return result

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _active_index(self, project_id: str) -> int:
        for index, project in enumerate(self._active):
            if project.project_id == project_id:
                return index
        raise UnknownProjectError(project_id, ProjectPhase.ACTIVE.value)

    def _phase_of(self, project_id: str) -> Optional[ProjectPhase]:
        if any(p.project_id == project_id for p in self._archived):
            return ProjectPhase.ARCHIVED
        if self._winner and self._winner.project_id == project_id:
            return ProjectPhase.WINNER
        if any(p.project_id == project_id for p in self._active):
            return ProjectPhase.ACTIVE
        if any(p.project_id == project_id for p in self._submissions):
            return ProjectPhase.SUBMISSION
        return None
