"""ActivityTracker: who counts as recently active."""

from hedvac.services.activity_service import ActivityTracker

GUILD = "900000000000000000"


class Clock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_messages_mark_users_active():
    clock = Clock()
    tracker = ActivityTracker(clock=clock)

    tracker.track_message(GUILD, "1")
    clock.now += 30 * 60
    tracker.track_message(GUILD, "2")
    clock.now += 45 * 60

    assert tracker.get_active_identities(GUILD, 60) == {"2"}
    assert tracker.get_active_identities(GUILD, 120) == {"1", "2"}


def test_bots_and_direct_messages_are_ignored():
    tracker = ActivityTracker(clock=Clock())

    tracker.track_message(GUILD, "1", is_bot=True)
    tracker.track_message(None, "2")

    assert tracker.get_active_identities(GUILD) == set()


def test_presence_counts_unless_offline():
    tracker = ActivityTracker(clock=Clock())

    tracker.track_presence(GUILD, "1", "online")
    tracker.track_presence(GUILD, "2", "offline")
    tracker.track_presence(GUILD, "3", "idle", is_bot=True)

    assert tracker.get_active_identities(GUILD) == {"1"}


def test_scopes_are_separate():
    tracker = ActivityTracker(clock=Clock())

    tracker.track_message(GUILD, "1")
    tracker.track_message("800000000000000000", "2")

    assert tracker.get_active_identities(GUILD) == {"1"}


def test_prune_forgets_old_entries():
    clock = Clock()
    tracker = ActivityTracker(clock=clock)
    tracker.track_message(GUILD, "1")
    clock.now += 2 * 24 * 3600
    tracker.track_message(GUILD, "2")

    assert tracker.prune() == 1
    assert tracker.get_active_identities(GUILD, window_minutes=10 * 24 * 60) == {"2"}
