"""Activity Service - Who has been active recently, per guild.

Rain eligibility depends only on the ActivityProvider contract; the chat layer
feeds ActivityTracker from message and presence events, or supplies its own
provider.
"""

import time
from typing import Protocol


class ActivityProvider(Protocol):
    """Best-effort set of recently active identities in a scope (guild)."""

    def get_active_identities(self, scope: str, window_minutes: int) -> set[str]: ...


class ActivityTracker:
    """In-memory last-seen tracker implementing ActivityProvider."""

    def __init__(self, clock=time.time):
        self._clock = clock
        # scope -> identity -> last seen (epoch seconds)
        self._last_seen: dict[str, dict[str, float]] = {}

    def _touch(self, scope: str, identity: str) -> None:
        self._last_seen.setdefault(scope, {})[identity] = self._clock()

    def track_message(self, scope: str | None, identity: str, is_bot: bool = False) -> None:
        """Record a message; bots and direct messages (no scope) are ignored."""
        if is_bot or not scope:
            return
        self._touch(scope, identity)

    def track_presence(
        self, scope: str | None, identity: str, status: str, is_bot: bool = False
    ) -> None:
        """Record a presence change; going offline does not count as activity."""
        if is_bot or not scope or status == "offline":
            return
        self._touch(scope, identity)

    def get_active_identities(self, scope: str, window_minutes: int = 60) -> set[str]:
        cutoff = self._clock() - window_minutes * 60
        seen = self._last_seen.get(scope, {})
        return {identity for identity, last in seen.items() if last >= cutoff}

    def prune(self, max_age_minutes: int = 24 * 60) -> int:
        """Forget entries older than ``max_age_minutes``; returns how many."""
        cutoff = self._clock() - max_age_minutes * 60
        removed = 0
        for scope in list(self._last_seen):
            seen = self._last_seen[scope]
            for identity in [i for i, last in seen.items() if last < cutoff]:
                del seen[identity]
                removed += 1
            if not seen:
                del self._last_seen[scope]
        return removed
