from __future__ import annotations

import random
from typing import Optional, Sequence

from engine.tuning import SelectionPolicy


class Selector:
    """Pick the next playlist index.

    NO_REPEAT redraws until the pick differs from `last_index` (only when the
    playlist has more than one entry). RANDOM is a plain uniform draw. The
    selector keeps no history; callers store the returned index.
    """

    def __init__(self, policy: SelectionPolicy = SelectionPolicy.NO_REPEAT, *, rng: Optional[random.Random] = None) -> None:
        self.policy = SelectionPolicy(policy)
        self._rng = rng or random.Random()

    def pick_next(self, playlist: Sequence[str], last_index: int = -1) -> int:
        n = len(playlist)
        if n == 0:
            return -1
        idx = self._rng.randrange(n)
        if self.policy is SelectionPolicy.NO_REPEAT and n > 1:
            while idx == last_index:
                idx = self._rng.randrange(n)
        return idx
