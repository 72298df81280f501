"""Matching of map landmarks to image features by projection into a camera."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Sequence

import numpy as np

from slamgeom.descriptors import TH_HIGH, TH_LOW, descriptor_distance
from slamgeom.matching import FeatureSet


def _vector3(value) -> np.ndarray:
    arr = np.asarray(value, dtype=float).reshape(-1)
    if arr.size != 3:
        raise ValueError("a 3-vector is required")
    return arr


@dataclass
class Camera:
    """Pinhole intrinsics, image bounds and the world-to-camera pose."""

    fx: float
    fy: float
    cx: float
    cy: float
    min_x: float
    max_x: float
    min_y: float
    max_y: float
    rotation: Any = field(default_factory=lambda: np.eye(3))
    translation: Any = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        self.rotation = np.asarray(self.rotation, dtype=float)
        if self.rotation.shape != (3, 3):
            raise ValueError("rotation must be 3x3")
        self.translation = _vector3(self.translation)

    def is_in_image(self, u: float, v: float) -> bool:
        """Whether pixel (u, v) lies within the image bounds."""
        return self.min_x <= u <= self.max_x and self.min_y <= v <= self.max_y

    def project(self, point) -> tuple[float, float]:
        """Pixel coordinates of a point given in camera coordinates."""
        x, y, z = _vector3(point)
        if z == 0:
            raise ValueError("cannot project a point with zero depth")
        invz = 1.0 / z
        return self.fx * x * invz + self.cx, self.fy * y * invz + self.cy

    def _to_camera(self, point: np.ndarray) -> np.ndarray:
        return self.rotation @ point + self.translation


@dataclass(eq=False)
class Landmark:
    """A 3D map point with its descriptor, mean viewing direction and distance range.

    ``min_distance`` and ``max_distance`` bound the distances at which the point
    can be observed without losing scale invariance.
    """

    position: Any
    descriptor: Any
    normal: Any = field(default_factory=lambda: np.array([0.0, 0.0, 1.0]))
    min_distance: float = 0.0
    max_distance: float = math.inf
    bad: bool = False

    def __post_init__(self) -> None:
        self.position = _vector3(self.position)
        self.normal = _vector3(self.normal)
        self.descriptor = np.asarray(self.descriptor, dtype=np.uint8).reshape(-1)

    def predict_scale(self, distance: float, scale_factors: Sequence[float]) -> int:
        """Pyramid level at which the point is expected to appear at ``distance``."""
        n_levels = len(scale_factors)
        if n_levels < 2:
            return 0
        log_factor = math.log(scale_factors[1] / scale_factors[0])
        if distance <= 0:
            return n_levels - 1
        ratio = self.max_distance / distance
        if math.isinf(ratio):
            return n_levels - 1
        level = math.ceil(math.log(ratio) / log_factor)
        return min(max(level, 0), n_levels - 1)


def decompose_sim3(scw) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split a similarity transform into rotation, unscaled translation and centre."""
    m = np.asarray(scw, dtype=float)
    if m.shape not in ((3, 4), (4, 4)):
        raise ValueError("similarity transform must be 3x4 or 4x4")
    s_rcw = m[:3, :3]
    scale = float(np.sqrt(s_rcw[0] @ s_rcw[0]))
    if scale == 0:
        raise ValueError("similarity transform has zero scale")
    rcw = s_rcw / scale
    tcw = m[:3, 3] / scale
    ow = -rcw.T @ tcw
    return rcw, tcw, ow


def _best_in_window(
    features: FeatureSet,
    descriptor: np.ndarray,
    indices: Sequence[int],
    level: int,
    skip=lambda idx: False,
) -> tuple[float, int]:
    best_dist: float = math.inf
    best_idx = -1
    for idx in indices:
        if skip(idx):
            continue
        octave = features.keypoints[idx].octave
        if octave < level - 1 or octave > level:
            continue
        dist = descriptor_distance(descriptor, features.descriptors[idx])
        if dist < best_dist:
            best_dist, best_idx = dist, idx
    return best_dist, best_idx


def search_by_projection(
    features: FeatureSet,
    camera: Camera,
    scw,
    landmarks: Sequence[Landmark],
    matched: Sequence[Landmark | None],
    th: float,
) -> tuple[list, int]:
    """Project landmarks with the similarity ``scw`` and match them to free features.

    Returns the updated per-feature landmark list and the number of new matches.
    """
    if len(matched) != len(features):
        raise ValueError("one matched slot is needed per feature")
    rcw, tcw, ow = decompose_sim3(scw)
    result = list(matched)
    already_found = {id(lm) for lm in matched if lm is not None}
    nmatches = 0

    for lm in landmarks:
        if lm.bad or id(lm) in already_found:
            continue
        p3dc = rcw @ lm.position + tcw
        if p3dc[2] <= 0.0:
            continue
        u, v = camera.project(p3dc)
        if not camera.is_in_image(u, v):
            continue

        po = lm.position - ow
        dist = float(np.linalg.norm(po))
        if dist < lm.min_distance or dist > lm.max_distance:
            continue
        if po @ lm.normal < 0.5 * dist:
            continue

        level = lm.predict_scale(dist, features.scale_factors)
        radius = th * features.scale_factors[level]
        indices = features.features_in_area(u, v, radius)
        if not indices:
            continue

        best_dist, best_idx = _best_in_window(
            features, lm.descriptor, indices, level, lambda i: result[i] is not None
        )
        if best_dist <= TH_LOW:
            result[best_idx] = lm
            nmatches += 1

    return result, nmatches


def _match_into(
    landmarks_src: Sequence[Landmark | None],
    blocked: Sequence[bool],
    to_target,
    target_camera: Camera,
    target_features: FeatureSet,
    th: float,
) -> list[int]:
    found = [-1] * len(landmarks_src)
    for i, lm in enumerate(landmarks_src):
        if lm is None or blocked[i] or lm.bad:
            continue
        p3dc = to_target(lm.position)
        if p3dc[2] <= 0.0:
            continue
        u, v = target_camera.project(p3dc)
        if not target_camera.is_in_image(u, v):
            continue
        dist = float(np.linalg.norm(p3dc))
        if dist < lm.min_distance or dist > lm.max_distance:
            continue
        level = lm.predict_scale(dist, target_features.scale_factors)
        radius = th * target_features.scale_factors[level]
        indices = target_features.features_in_area(u, v, radius)
        if not indices:
            continue
        best_dist, best_idx = _best_in_window(
            target_features, lm.descriptor, indices, level
        )
        if best_dist <= TH_HIGH:
            found[i] = best_idx
    return found


def search_by_sim3(
    features1: FeatureSet,
    landmarks1: Sequence[Landmark | None],
    features2: FeatureSet,
    landmarks2: Sequence[Landmark | None],
    camera1: Camera,
    camera2: Camera,
    s12: float,
    r12,
    t12,
    matches12: Sequence[Landmark | None],
    th: float,
) -> tuple[list, int]:
    """Find extra matches between two views related by the similarity (s12, R12, t12).

    A match is kept only when projecting in both directions agrees. Returns the
    updated per-feature matches of view 1 and the number of new matches.
    """
    if len(landmarks1) != len(features1) or len(landmarks2) != len(features2):
        raise ValueError("one landmark slot is needed per feature")
    if len(matches12) != len(landmarks1):
        raise ValueError("one match slot is needed per landmark of view 1")
    if s12 == 0:
        raise ValueError("scale must be non-zero")

    r12 = np.asarray(r12, dtype=float)
    if r12.shape != (3, 3):
        raise ValueError("rotation must be 3x3")
    t12 = _vector3(t12)
    s_r12 = s12 * r12
    s_r21 = (1.0 / s12) * r12.T
    t21 = -s_r21 @ t12

    index_in_2 = {id(lm): i for i, lm in enumerate(landmarks2) if lm is not None}
    already1 = [m is not None for m in matches12]
    already2 = [False] * len(landmarks2)
    for m in matches12:
        if m is not None and id(m) in index_in_2:
            already2[index_in_2[id(m)]] = True

    match1 = _match_into(
        landmarks1,
        already1,
        lambda p: s_r21 @ camera1._to_camera(p) + t21,
        camera2,
        features2,
        th,
    )
    match2 = _match_into(
        landmarks2,
        already2,
        lambda p: s_r12 @ camera2._to_camera(p) + t12,
        camera1,
        features1,
        th,
    )

    result = list(matches12)
    found = 0
    for i1, idx2 in enumerate(match1):
        if idx2 >= 0 and match2[idx2] == i1:
            result[i1] = landmarks2[idx2]
            found += 1
    return result, found