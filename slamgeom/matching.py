"""Descriptor matching between feature sets: vocabulary-guided, windowed and epipolar."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np

from slamgeom.descriptors import (
    TH_LOW,
    KeyPoint,
    RotationHistogram,
    check_dist_epipolar_line,
    descriptor_distance,
)

BowVector = Mapping[int, Sequence[int]]


def _default_scale_factors() -> list[float]:
    return [1.2**level for level in range(8)]


def _usable(landmark: Any) -> bool:
    """A landmark slot counts when it is filled and not flagged ``bad``."""
    return landmark is not None and not getattr(landmark, "bad", False)


@dataclass
class FeatureSet:
    """Keypoints of one image with their descriptors and per-feature data.

    ``landmarks`` holds the map point attached to each feature, or None.
    ``right`` holds the stereo right-image coordinate, negative for monocular.
    Landmarks may carry a boolean ``bad`` attribute; bad ones are ignored.
    """

    keypoints: Sequence[KeyPoint]
    descriptors: Any
    landmarks: list | None = None
    right: Sequence[float] | None = None
    scale_factors: Sequence[float] = field(default_factory=_default_scale_factors)
    level_sigma2: Sequence[float] | None = None

    def __post_init__(self) -> None:
        self.keypoints = list(self.keypoints)
        n = len(self.keypoints)
        desc = np.asarray(self.descriptors, dtype=np.uint8)
        if n == 0:
            desc = desc.reshape(0, -1) if desc.size == 0 else desc
        else:
            desc = desc.reshape(n, -1) if desc.ndim != 2 else desc
        if desc.shape[0] != n:
            raise ValueError("one descriptor row is needed per keypoint")
        self.descriptors = desc

        self.landmarks = [None] * n if self.landmarks is None else list(self.landmarks)
        if len(self.landmarks) != n:
            raise ValueError("one landmark slot is needed per keypoint")

        self.right = [-1.0] * n if self.right is None else [float(u) for u in self.right]
        if len(self.right) != n:
            raise ValueError("one right coordinate is needed per keypoint")

        self.scale_factors = [float(s) for s in self.scale_factors]
        if self.level_sigma2 is None:
            self.level_sigma2 = [s * s for s in self.scale_factors]
        else:
            self.level_sigma2 = [float(s) for s in self.level_sigma2]

    def __len__(self) -> int:
        return len(self.keypoints)

    def features_in_area(
        self, x: float, y: float, r: float, min_level: int = -1, max_level: int = -1
    ) -> list[int]:
        """Indices of keypoints inside the square window of half-size ``r``.

        A positive ``min_level`` and a non-negative ``max_level`` bound the octave.
        """
        check_levels = min_level > 0 or max_level >= 0
        found = []
        for idx, kp in enumerate(self.keypoints):
            if check_levels:
                if kp.octave < min_level:
                    continue
                if max_level >= 0 and kp.octave > max_level:
                    continue
            if abs(kp.x - x) < r and abs(kp.y - y) < r:
                found.append(idx)
        return found


class Matcher:
    """Matches binary descriptors with a nearest-neighbour ratio test."""

    def __init__(self, nn_ratio: float = 0.6, check_orientation: bool = True):
        self.nn_ratio = nn_ratio
        self.check_orientation = check_orientation

    def _histogram(self) -> RotationHistogram | None:
        return RotationHistogram() if self.check_orientation else None

    def search_by_bow(
        self, set1: FeatureSet, bow1: BowVector, set2: FeatureSet, bow2: BowVector
    ) -> list:
        """Match landmarks of ``set1`` to landmarks of ``set2`` sharing vocabulary nodes.

        Returns, for each feature of ``set1``, the matched landmark of ``set2`` or None.
        """
        matches: list = [None] * len(set1)
        matched2 = [False] * len(set2)
        hist = self._histogram()

        for node in sorted(bow1.keys() & bow2.keys()):
            candidates = bow2[node]
            for idx1 in bow1[node]:
                if not _usable(set1.landmarks[idx1]):
                    continue
                d1 = set1.descriptors[idx1]
                best1 = best2 = 256
                best_idx2 = -1
                for idx2 in candidates:
                    if matched2[idx2] or not _usable(set2.landmarks[idx2]):
                        continue
                    dist = descriptor_distance(d1, set2.descriptors[idx2])
                    if dist < best1:
                        best2, best1, best_idx2 = best1, dist, idx2
                    elif dist < best2:
                        best2 = dist

                if best1 < TH_LOW and best1 < self.nn_ratio * best2:
                    matches[idx1] = set2.landmarks[best_idx2]
                    matched2[best_idx2] = True
                    if hist is not None:
                        hist.add(
                            set1.keypoints[idx1].angle,
                            set2.keypoints[best_idx2].angle,
                            idx1,
                        )

        if hist is not None:
            for idx1 in hist.outliers():
                matches[idx1] = None
        return matches

    def search_for_initialization(
        self,
        set1: FeatureSet,
        set2: FeatureSet,
        prev_matched: Sequence[tuple[float, float]],
        window_size: float,
    ) -> tuple[list[int], list[tuple[float, float]]]:
        """Match finest-level features of ``set1`` around their previous positions.

        Returns the index in ``set2`` for each feature of ``set1`` (-1 if none)
        and the previous positions updated to the matched ``set2`` keypoints.
        """
        if len(prev_matched) != len(set1):
            raise ValueError("one previous position is needed per feature of set1")

        matches12 = [-1] * len(set1)
        matched_distance = [math.inf] * len(set2)
        matches21 = [-1] * len(set2)
        hist = self._histogram()

        for i1, kp1 in enumerate(set1.keypoints):
            level1 = kp1.octave
            if level1 > 0:
                continue
            px, py = prev_matched[i1]
            candidates = set2.features_in_area(px, py, window_size, level1, level1)
            if not candidates:
                continue

            d1 = set1.descriptors[i1]
            best = best2 = math.inf
            best_idx2 = -1
            for i2 in candidates:
                dist = descriptor_distance(d1, set2.descriptors[i2])
                if matched_distance[i2] <= dist:
                    continue
                if dist < best:
                    best2, best, best_idx2 = best, dist, i2
                elif dist < best2:
                    best2 = dist

            if best <= TH_LOW and best < best2 * self.nn_ratio:
                previous = matches21[best_idx2]
                if previous >= 0:
                    matches12[previous] = -1
                matches12[i1] = best_idx2
                matches21[best_idx2] = i1
                matched_distance[best_idx2] = best
                if hist is not None:
                    hist.add(kp1.angle, set2.keypoints[best_idx2].angle, i1)

        if hist is not None:
            for i1 in hist.outliers():
                matches12[i1] = -1

        updated = [
            set2.keypoints[m].pt if m >= 0 else tuple(prev_matched[i1])
            for i1, m in enumerate(matches12)
        ]
        return matches12, updated

    def search_for_triangulation(
        self,
        set1: FeatureSet,
        bow1: BowVector,
        set2: FeatureSet,
        bow2: BowVector,
        f12,
        epipole: tuple[float, float],
        only_stereo: bool = False,
    ) -> list[tuple[int, int]]:
        """Pair untracked features of two views that satisfy the epipolar constraint.

        ``epipole`` is the projection of the first camera centre into the second image.
        Returns (index1, index2) pairs ordered by index1.
        """
        ex, ey = epipole
        matched2 = [False] * len(set2)
        matches12 = [-1] * len(set1)
        hist = self._histogram()

        for node in sorted(bow1.keys() & bow2.keys()):
            candidates = bow2[node]
            for idx1 in bow1[node]:
                if set1.landmarks[idx1] is not None:
                    continue
                stereo1 = set1.right[idx1] >= 0
                if only_stereo and not stereo1:
                    continue

                kp1 = set1.keypoints[idx1]
                d1 = set1.descriptors[idx1]
                best_dist = TH_LOW
                best_idx2 = -1

                for idx2 in candidates:
                    if matched2[idx2] or set2.landmarks[idx2] is not None:
                        continue
                    stereo2 = set2.right[idx2] >= 0
                    if only_stereo and not stereo2:
                        continue

                    dist = descriptor_distance(d1, set2.descriptors[idx2])
                    if dist > TH_LOW or dist > best_dist:
                        continue

                    kp2 = set2.keypoints[idx2]
                    if not stereo1 and not stereo2:
                        dx = ex - kp2.x
                        dy = ey - kp2.y
                        if dx * dx + dy * dy < 100 * set2.scale_factors[kp2.octave]:
                            continue

                    if check_dist_epipolar_line(
                        kp1, kp2, f12, set2.level_sigma2[kp2.octave]
                    ):
                        best_idx2 = idx2
                        best_dist = dist

                if best_idx2 >= 0:
                    matches12[idx1] = best_idx2
                    if hist is not None:
                        hist.add(kp1.angle, set2.keypoints[best_idx2].angle, idx1)

        if hist is not None:
            for idx1 in hist.outliers():
                matches12[idx1] = -1

        return [(i, m) for i, m in enumerate(matches12) if m >= 0]