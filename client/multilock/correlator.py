"""Tag bookkeeping that binds asynchronous completions to requests."""

import string
import threading
from typing import List, Optional

SLOTS = string.ascii_lowercase


class TagCorrelator:
    """Global tag counter plus 26 named slots ``a``-``z``.

    In replay mode minting a tag takes the number of the script line
    being executed instead of incrementing, so reports point straight
    back at the script.

    All operations are serialized by one lock; forked actors share a
    single correlator.
    """

    def __init__(self, replay: bool = False) -> None:
        self.replay = replay
        self._counter = 0
        self._slots = [0] * len(SLOTS)  # type: List[int]
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return "TagCorrelator(counter={}, replay={})".format(
            self._counter, self.replay)

    @staticmethod
    def slot_index(letter: str) -> int:
        """Map a slot letter (either case) to its index.

        Raises ValueError for anything but a single ASCII letter.
        """
        folded = letter.lower()
        if len(folded) != 1 or folded not in SLOTS:
            raise ValueError("Invalid tag slot {!r}".format(letter))
        return SLOTS.index(folded)

    def next(self, advance: bool = True,
             lineno: Optional[int] = None) -> int:
        """Return the counter, first advancing it when *advance* is set."""
        with self._lock:
            if advance:
                if self.replay and lineno:
                    self._counter = lineno
                else:
                    self._counter += 1
            return self._counter

    def mint(self, letter: Optional[str] = None,
             lineno: Optional[int] = None) -> int:
        """Advance the counter and optionally remember it in a slot."""
        index = self.slot_index(letter) if letter is not None else None
        with self._lock:
            if self.replay and lineno:
                self._counter = lineno
            else:
                self._counter += 1
            if index is not None:
                self._slots[index] = self._counter
            return self._counter

    def save(self, letter: str, value: int) -> None:
        index = self.slot_index(letter)
        with self._lock:
            self._slots[index] = value

    def load(self, letter: str) -> int:
        index = self.slot_index(letter)
        with self._lock:
            return self._slots[index]
