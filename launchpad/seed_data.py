"""
Demo seed data for a fresh launchpad.

Loads a small set of submissions, active projects, a presale winner, an
archived project, XP history for a handful of wallets, and fallback token
balances covering several holder tiers.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from .project_registry import Project, WinningProject, WINNER_PRESALE_SEED

logger = logging.getLogger("seed_data")

DEMO_SUBMISSIONS = [
    ("sub-1", "AI Trading Bot", "AITB", "🤖", "https://aitrading.bot", "0xabcdef1234567890abcdef1234567890abcdef12", 15),
    ("sub-2", "Decentralized Storage", "DSTOR", "💾", "https://decentstore.io", "0x9876543210fedcba9876543210fedcba98765432", 20),
]

# (id, name, ticker, logo, url, votes, days_active, priority_score, builder, vaulted)
DEMO_ACTIVE = [
    ("1", "DeFi Yield Protocol", "DYP", "🌾", "https://defiyield.com", 23, 2, 2, "0x742d35Cc6635C0532925a3b8D82E8DB7dc2f7b90", 30),
    ("2", "Base Social Network", "BSN", "🔗", "https://basesocial.xyz", 18, 1, 1, "0x89205A3A3b2A69De6Dbf7f01ED13B2108B2c43e7", 10),
    ("3", "NFT Marketplace Plus", "NMP", "🎨", "https://nftmarketplus.io", 14, 3, 1, "0x1234567890abcdef1234567890abcdef12345678", 5),
    ("4", "Cross Chain Bridge", "CCB", "🌉", "https://crossbridge.fi", 8, 4, 0, "0x9876543210fedcba9876543210fedcba98765432", 0),
    ("5", "Mobile Wallet SDK", "MSDK", "📱", "https://mobilesdk.dev", 6, 1, 0, "0xabcdef1234567890abcdef1234567890abcdef12", 12),
    ("6", "DAO Governance Tool", "DGOV", "🏛️", "https://daotools.xyz", 4, 2, 0, "0x742d35Cc6635C0532925a3b8D82E8DB7dc2f7b90", 18),
    ("7", "Privacy Mixer", "PMIX", "🔒", "https://privacymix.io", 2, 5, 0, "0x89205A3A3b2A69De6Dbf7f01ED13B2108B2c43e7", 22),
]

DEMO_ARCHIVED = [
    ("arch-1", "Lending Protocol", "LEND", "💰", "https://lendingpro.base", 5, 1, "0x1234567890abcdef1234567890abcdef12345678", 8),
]

DEMO_WINNER = ("winning-1", "Gaming Token Hub", "GTH", "🎮", "https://gamingtoken.gg", 25)

# wallet -> (vote_xp, presale_xp, builder_xp)
DEMO_XP: Dict[str, Tuple[int, int, int]] = {
    "0x742d35Cc6635C0532925a3b8D82E8DB7dc2f7b90": (42, 65, 20),
    "0x89205A3A3b2A69De6Dbf7f01ED13B2108B2c43e7": (31, 54, 10),
    "0x1234567890abcdef1234567890abcdef12345678": (24, 39, 10),
    "0x9876543210fedcba9876543210fedcba98765432": (18, 38, 0),
    "0xabcdef1234567890abcdef1234567890abcdef12": (11, 23, 0),
}

DEMO_BALANCES: Dict[str, int] = {
    "0x1234567890abcdef1234567890abcdef12345678": 125_000_000,
    "0xabcdef1234567890abcdef1234567890abcdef12": 75_000_000,
    "0x9876543210fedcba9876543210fedcba98765432": 500_000_000,
    "0xfedcba9876543210fedcba9876543210fedcba98": 15_000_000,
    "0x5555666677778888999900001111222233334444": 2_500_000_000,
}

# Vote and presale XP is spread over these ages so every window has data
XP_AGES_DAYS = (0, 3, 12, 45)
BUILDER_XP_AGE_DAYS = 3
BUILDER_XP_PER_PROJECT = 10


def _split(total: int, parts: int) -> List[int]:
    base, extra = divmod(total, parts)
    return [base + (1 if i < extra else 0) for i in range(parts)]


def demo_projects(now: datetime) -> Tuple[List[Project], List[Project], List[Project], WinningProject]:
    created = now.isoformat()
    submissions = [
        Project(project_id=pid, name=name, ticker=ticker, logo=logo, url=url,
                builder_wallet=builder.lower(), vaulted_supply=vaulted, created_at=created)
        for pid, name, ticker, logo, url, builder, vaulted in DEMO_SUBMISSIONS
    ]
    active = [
        Project(project_id=pid, name=name, ticker=ticker, logo=logo, url=url, votes=votes,
                days_active=days, priority_score=priority, builder_wallet=builder.lower(),
                vaulted_supply=vaulted, created_at=created)
        for pid, name, ticker, logo, url, votes, days, priority, builder, vaulted in DEMO_ACTIVE
    ]
    archived = [
        Project(project_id=pid, name=name, ticker=ticker, logo=logo, url=url, days_active=days,
                priority_score=priority, builder_wallet=builder.lower(), vaulted_supply=vaulted,
                created_at=created, archived_at=created)
        for pid, name, ticker, logo, url, days, priority, builder, vaulted in DEMO_ARCHIVED
    ]
    pid, name, ticker, logo, url, vaulted = DEMO_WINNER
    winner = WinningProject.from_project(
        Project(project_id=pid, name=name, ticker=ticker, logo=logo, url=url, vaulted_supply=vaulted),
        now=now,
        presale_seed=WINNER_PRESALE_SEED,
    )
    return submissions, active, archived, winner


def seed_demo_data(service, now: Optional[datetime] = None) -> None:
    """Populate an empty service with the demo data set."""
    now = now or datetime.utcnow()
    submissions, active, archived, winner = demo_projects(now)

    service.registry.replace_state(
        submissions=submissions,
        active=active,
        archived=archived,
        winner=winner,
        last_rotation_date=now.date().isoformat(),
    )

    for wallet, balance in DEMO_BALANCES.items():
        service.balance_oracle.set_fallback_balance(wallet, balance)

    # Oldest first so each account's log ends most recent first
    for age in reversed(XP_AGES_DAYS):
        timestamp = now - timedelta(days=age)
        index = XP_AGES_DAYS.index(age)
        for wallet, (vote_xp, presale_xp, _) in DEMO_XP.items():
            votes = _split(vote_xp, len(XP_AGES_DAYS))[index]
            mints = _split(presale_xp, len(XP_AGES_DAYS))[index]
            if votes:
                service.xp_ledger.award_vote_xp(wallet, votes, timestamp)
            if mints:
                service.xp_ledger.award_presale_xp(wallet, mints, timestamp)
        if age == BUILDER_XP_AGE_DAYS:
            for wallet, (_, _, builder_xp) in DEMO_XP.items():
                for _ in range(builder_xp // BUILDER_XP_PER_PROJECT):
                    service.xp_ledger.award_builder_xp(wallet, BUILDER_XP_PER_PROJECT, timestamp)

    service.leaderboard.invalidate()
    logger.info(
        f"Seeded demo data: {len(submissions)} submissions, {len(active)} active, "
        f"{len(archived)} archived, {len(DEMO_XP)} XP accounts"
    )
