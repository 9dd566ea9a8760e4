"""
Activation tracking for sticky lorebook entries.

Maps an entry ID to the transcript position at which Tier 2 or Tier 3 last
surfaced it. Positions are story-entry positions, not user-visible turns:
a turn made of a user action plus narration advances the clock by two.
"""

from typing import Dict, Mapping, Optional


class ActivationTracker:
    """
    In-memory last-activation map.

    The tracker does not know what "now" is; callers pass the current
    position into every retrieval pass. Each key is written independently,
    so concurrent readers never see a half-applied update.
    """

    def __init__(self, activations: Optional[Mapping[str, int]] = None):
        self._activations: Dict[str, int] = dict(activations or {})

    def __len__(self) -> int:
        return len(self._activations)

    def __contains__(self, entry_id: str) -> bool:
        return entry_id in self._activations

    def get_last_activation(self, entry_id: str) -> Optional[int]:
        return self._activations.get(entry_id)

    def record_activation(self, entry_id: str, turn: int) -> None:
        self._activations[entry_id] = turn

    def turns_since(self, entry_id: str, current_turn: int) -> Optional[int]:
        last = self._activations.get(entry_id)
        if last is None:
            return None
        return current_turn - last

    def prune_older_than(self, max_window: int, current_turn: int) -> int:
        """
        Forget activations more than ``max_window`` positions old.

        Returns:
            Number of activations removed
        """
        stale = [
            entry_id
            for entry_id, turn in self._activations.items()
            if current_turn - turn > max_window
        ]
        for entry_id in stale:
            del self._activations[entry_id]
        return len(stale)

    def to_dict(self) -> Dict[str, int]:
        """Snapshot for persistence."""
        return dict(self._activations)

    @classmethod
    def from_dict(cls, data: Mapping[str, int]) -> "ActivationTracker":
        return cls({str(k): int(v) for k, v in data.items()})
