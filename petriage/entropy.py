from __future__ import annotations

import math


def shannon_entropy(blob: bytes) -> float:
    """Shannon entropy of ``blob`` in bits per byte, in [0.0, 8.0]."""
    if not blob:
        return 0.0
    counts = [0] * 256
    for x in blob:
        counts[x] += 1
    n = len(blob)
    ent = 0.0
    for c in counts:
        if c:
            p = c / n
            ent -= p * math.log2(p)
    return float(ent)
