"""
Tests for the sticky activation tracker.
"""

from memory.activation import ActivationTracker


class TestActivationTracker:
    def test_records_and_reads(self):
        tracker = ActivationTracker()
        tracker.record_activation("a", 3)

        assert "a" in tracker
        assert tracker.get_last_activation("a") == 3
        assert tracker.get_last_activation("missing") is None

    def test_later_activation_overwrites(self):
        tracker = ActivationTracker({"a": 3})
        tracker.record_activation("a", 7)

        assert tracker.get_last_activation("a") == 7
        assert len(tracker) == 1

    def test_turns_since(self):
        tracker = ActivationTracker({"a": 3})

        assert tracker.turns_since("a", 5) == 2
        assert tracker.turns_since("b", 5) is None

    def test_prune_removes_only_stale(self):
        """Entries older than the window are dropped; ones at the edge stay."""
        tracker = ActivationTracker({"old": 1, "edge": 5, "fresh": 9})

        removed = tracker.prune_older_than(5, current_turn=10)

        assert removed == 1
        assert "old" not in tracker
        assert "edge" in tracker
        assert "fresh" in tracker

    def test_dict_round_trip_is_a_copy(self):
        tracker = ActivationTracker.from_dict({"a": "4"})
        snapshot = tracker.to_dict()
        snapshot["a"] = 99

        assert tracker.get_last_activation("a") == 4
