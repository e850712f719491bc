"""
Launchpad Core

Participation core of a token-launch community platform.

- ProjectRegistry: submissions, active voting, winner slot and archive
- VotingLedger: daily vote allowance (base + holder tier bonus) and votes
- LifecycleScheduler: end-of-day rotation and the daily rotation timer
- XPLedger: append-only XP log, additive totals and leaderboards
- LeaderboardService / LeaderboardBroadcaster: cached and streamed leaderboards
- MintTracker / MintWatcher: presale mint detection and the mint webhook
- LaunchpadService: inbound triggers and outbound reads over all of the above
"""

__version__ = "1.0.0"
