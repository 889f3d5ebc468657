from __future__ import annotations
from dataclasses import dataclass, field

import numpy as np


@dataclass(frozen=True, slots=True, eq=False)
class DecodedBuffer:
    """Decoded PCM for one sound url, shape (frames, channels), float32."""
    url: str
    pcm: np.ndarray = field(repr=False)
    sample_rate: int
    channels: int

    @property
    def frames(self) -> int:
        return int(self.pcm.shape[0])

    @property
    def duration_seconds(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return self.frames / float(self.sample_rate)
