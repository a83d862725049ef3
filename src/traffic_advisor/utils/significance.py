"""Online statistics used by the route scorer.

All functions are pure. ``RunningStats`` is folded one sample at a time with Welford's
update so that no raw history has to be kept between recommendation passes.
"""
from __future__ import annotations
from dataclasses import dataclass, asdict
from math import exp, floor, log10, sqrt


@dataclass(frozen=True)
class RunningStats:
    count: int = 0
    mean: float = 0.0
    m2: float = 0.0
    std_dev: float | None = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["stdDev"] = d.pop("std_dev")
        return d

    @classmethod
    def from_dict(cls, raw: dict | None) -> RunningStats | None:
        if not raw:
            return None
        return cls(
            count=int(raw.get("count", 0)),
            mean=float(raw.get("mean", 0.0)),
            m2=float(raw.get("m2", 0.0)),
            std_dev=raw.get("stdDev"),
        )


def welford_update(stats: RunningStats, value: float) -> RunningStats:
    count = stats.count + 1
    delta = value - stats.mean
    mean = stats.mean + delta / count
    delta2 = value - mean
    m2 = stats.m2 + delta * delta2
    return RunningStats(count=count, mean=mean, m2=m2, std_dev=sqrt(m2 / count))


def gaussian_kernel(x: float, mu: float, sigma: float, scale: float = 1.0) -> float:
    """Unnormalized similarity weight of ``x`` around ``mu``; 1 at the mean, decaying towards 0.

    ``scale`` narrows the kernel (sigma / scale).
    """
    if sigma <= 0:
        raise ValueError("sigma must be > 0")
    s = sigma / scale
    return exp(-((x - mu) ** 2) / (2 * s ** 2))


def round_significant(n: float) -> float:
    """Round to two decimals, or to two significant digits for values below 0.1."""
    magnitude = floor(log10(abs(n))) if n else 0
    div = 10 ** (1 - magnitude) if magnitude < 0 else 100
    return floor(n * div + 0.5) / div
