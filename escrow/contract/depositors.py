# escrow/contract/depositors.py
from typing import Dict, Iterator, List, Optional, Tuple

from escrow.core.errors import IndexOutOfRange

# Compact once this many slots are dead and they outnumber the live ones
_COMPACT_MIN_DEAD = 64


class DepositorRegistry:
    """
    Insertion-ordered set of identities holding an active deposit.

    Slots are append-only: removing an identity leaves a hole instead of
    shifting or reusing positions, so the relative order of everyone else is
    untouched. `_positions` gives O(1) membership.
    """

    def __init__(self) -> None:
        self._slots: List[Optional[str]] = []
        self._positions: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, identity: object) -> bool:
        return identity in self._positions

    def __iter__(self) -> Iterator[str]:
        return (who for who in self._slots if who is not None)

    def add(self, identity: str) -> None:
        if identity in self._positions:
            raise ValueError(f"{identity} is already registered")
        self._positions[identity] = len(self._slots)
        self._slots.append(identity)

    def remove(self, identity: str) -> None:
        slot = self._positions.pop(identity, None)
        if slot is None:
            raise KeyError(identity)
        self._slots[slot] = None
        dead = len(self._slots) - len(self._positions)
        if dead >= _COMPACT_MIN_DEAD and dead > len(self._positions):
            self._compact()

    def clear(self) -> None:
        self._slots = []
        self._positions = {}

    def at(self, index: int) -> str:
        """Return the index-th live identity, in deposit order."""
        if index < 0 or index >= len(self._positions):
            raise IndexOutOfRange(index, len(self._positions))
        if len(self._slots) == len(self._positions):
            return self._slots[index]  # no holes
        for i, who in enumerate(self):
            if i == index:
                return who
        raise IndexOutOfRange(index, len(self._positions))

    def to_list(self) -> List[str]:
        return list(self)

    def snapshot(self) -> Tuple[List[Optional[str]], Dict[str, int]]:
        return self._slots.copy(), self._positions.copy()

    def restore(self, state: Tuple[List[Optional[str]], Dict[str, int]]) -> None:
        slots, positions = state
        self._slots = slots.copy()
        self._positions = positions.copy()

    def _compact(self) -> None:
        self._slots = [who for who in self._slots if who is not None]
        self._positions = {who: i for i, who in enumerate(self._slots)}
