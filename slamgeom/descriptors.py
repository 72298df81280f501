"""Binary descriptor distance, rotation-consistency histogram and epipolar checks."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

TH_HIGH = 100
TH_LOW = 50
HISTO_LENGTH = 30

DESCRIPTOR_BYTES = 32


@dataclass(frozen=True)
class KeyPoint:
    """An image keypoint: position, pyramid level and orientation in degrees."""

    x: float
    y: float
    octave: int = 0
    angle: float = 0.0

    @property
    def pt(self) -> tuple[float, float]:
        return (self.x, self.y)


def _as_descriptor(value) -> np.ndarray:
    if isinstance(value, (bytes, bytearray, memoryview)):
        arr = np.frombuffer(bytes(value), dtype=np.uint8)
    else:
        arr = np.asarray(value)
        if arr.dtype != np.uint8:
            arr = arr.astype(np.uint8)
        arr = arr.ravel()
    if arr.size < DESCRIPTOR_BYTES:
        raise ValueError(
            f"descriptor must hold at least {DESCRIPTOR_BYTES} bytes, got {arr.size}"
        )
    return arr[:DESCRIPTOR_BYTES]


def descriptor_distance(a, b) -> int:
    """Hamming distance between two 256-bit binary descriptors."""
    xor = np.bitwise_xor(_as_descriptor(a), _as_descriptor(b))
    return int(np.unpackbits(xor).sum())


def compute_three_maxima(histogram: Iterable[int]) -> tuple[int, int, int]:
    """Indices of the three largest bins; -1 for bins under 10% of the largest."""
    max1 = max2 = max3 = 0
    ind1 = ind2 = ind3 = -1
    for i, s in enumerate(histogram):
        if s > max1:
            max3, max2, max1 = max2, max1, s
            ind3, ind2, ind1 = ind2, ind1, i
        elif s > max2:
            max3, max2 = max2, s
            ind3, ind2 = ind2, i
        elif s > max3:
            max3 = s
            ind3 = i

    if max2 < 0.1 * max1:
        ind2 = ind3 = -1
    elif max3 < 0.1 * max1:
        ind3 = -1
    return ind1, ind2, ind3


class RotationHistogram:
    """Bins matches by keypoint rotation difference to reject inconsistent ones."""

    def __init__(self, length: int = HISTO_LENGTH):
        if length <= 0:
            raise ValueError("histogram length must be positive")
        self.length = length
        self._factor = 1.0 / length
        self.bins: list[list[int]] = [[] for _ in range(length)]

    def add(self, angle1: float, angle2: float, index: int) -> int:
        """Record a match by the rotation between its two keypoints; return the bin."""
        rot = angle1 - angle2
        if rot < 0.0:
            rot += 360.0
        bin_ = math.floor(rot * self._factor + 0.5)
        if bin_ == self.length:
            bin_ = 0
        if not 0 <= bin_ < self.length:
            raise ValueError(f"rotation {rot} falls outside the histogram")
        self.bins[bin_].append(index)
        return bin_

    def counts(self) -> list[int]:
        return [len(b) for b in self.bins]

    def outliers(self) -> list[int]:
        """Indices stored in bins other than the three dominant ones."""
        keep = set(compute_three_maxima(self.counts()))
        return [
            index
            for i, bucket in enumerate(self.bins)
            if i not in keep
            for index in bucket
        ]


def radius_by_viewing_cos(view_cos: float) -> float:
    """Search window radius for a given viewing-angle cosine."""
    return 2.5 if view_cos > 0.998 else 4.0


def check_dist_epipolar_line(
    kp1: KeyPoint, kp2: KeyPoint, f12: Sequence[Sequence[float]], sigma2: float
) -> bool:
    """Whether kp2 lies close to the epipolar line of kp1 under F12.

    ``sigma2`` is the squared scale sigma of kp2's pyramid level.
    """
    f = np.asarray(f12, dtype=float)
    if f.shape != (3, 3):
        raise ValueError("fundamental matrix must be 3x3")
    a = kp1.x * f[0, 0] + kp1.y * f[1, 0] + f[2, 0]
    b = kp1.x * f[0, 1] + kp1.y * f[1, 1] + f[2, 1]
    c = kp1.x * f[0, 2] + kp1.y * f[1, 2] + f[2, 2]

    num = a * kp2.x + b * kp2.y + c
    den = a * a + b * b
    if den == 0:
        return False
    return num * num / den < 3.84 * sigma2