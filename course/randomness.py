"""Single injectable random source for layout, timing and tie-breaks."""

import random
from typing import List, Optional, Sequence, TypeVar


T = TypeVar("T")


class RandomSource:
    """Thin wrapper over one ``random.Random``.

    Seed it to make course generation and vote tie-breaks reproducible.
    """

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._random = random.Random(seed)

    def random(self) -> float:
        """Uniform float in [0, 1)."""
        return self._random.random()

    def uniform(self, a: float, b: float) -> float:
        return self._random.uniform(a, b)

    def randint(self, a: int, b: int) -> int:
        """Inclusive on both ends."""
        return self._random.randint(a, b)

    def choice(self, seq: Sequence[T]) -> T:
        return self._random.choice(seq)

    def sample(self, seq: Sequence[T], k: int) -> List[T]:
        """``k`` distinct picks without replacement."""
        return self._random.sample(list(seq), k)
