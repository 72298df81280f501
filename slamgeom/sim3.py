"""Similarity transform estimation between two sets of 3D points, with RANSAC."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Sequence

import numpy as np

_CHI2_2DOF_99 = 9.210


def _points(value, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    if arr.ndim == 1 and arr.size == 3:
        arr = arr.reshape(1, 3)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise ValueError(f"{name} must have shape (n, 3)")
    return arr


def _intrinsics(k) -> np.ndarray:
    arr = np.asarray(k, dtype=float)
    if arr.shape != (3, 3):
        raise ValueError("calibration matrix must be 3x3")
    return arr


def _rodrigues(vec: np.ndarray) -> np.ndarray:
    theta = float(np.linalg.norm(vec))
    if theta == 0.0:
        return np.eye(3)
    kx, ky, kz = vec / theta
    skew = np.array([[0.0, -kz, ky], [kz, 0.0, -kx], [-ky, kx, 0.0]])
    return np.eye(3) + math.sin(theta) * skew + (1.0 - math.cos(theta)) * (skew @ skew)


@dataclass
class Sim3:
    """Similarity transform ``x1 = scale * rotation @ x2 + translation``."""

    rotation: np.ndarray
    translation: np.ndarray
    scale: float = 1.0

    def __post_init__(self) -> None:
        self.rotation = np.asarray(self.rotation, dtype=float)
        if self.rotation.shape != (3, 3):
            raise ValueError("rotation must be 3x3")
        self.translation = np.asarray(self.translation, dtype=float).reshape(-1)
        if self.translation.size != 3:
            raise ValueError("translation must be a 3-vector")
        self.scale = float(self.scale)

    @property
    def matrix(self) -> np.ndarray:
        """The 4x4 matrix ``[sR t; 0 1]``."""
        out = np.eye(4)
        out[:3, :3] = self.scale * self.rotation
        out[:3, 3] = self.translation
        return out

    def inverse(self) -> "Sim3":
        """The transform mapping the first frame back into the second."""
        if self.scale == 0.0:
            raise ValueError("a similarity with zero scale has no inverse")
        inv_scale = 1.0 / self.scale
        s_r_inv = inv_scale * self.rotation.T
        return Sim3(self.rotation.T.copy(), -s_r_inv @ self.translation, inv_scale)

    def apply(self, points) -> np.ndarray:
        """Transform points given as rows of an (n, 3) array."""
        pts = _points(points, "points")
        return self.scale * pts @ self.rotation.T + self.translation


def compute_sim3(p1, p2, fix_scale: bool = False) -> Sim3:
    """Closed-form similarity mapping points ``p2`` onto ``p1`` (Horn's method).

    Both inputs are (n, 3) arrays of corresponding points, n >= 3. With
    ``fix_scale`` the scale is held at 1.
    """
    a = _points(p1, "p1")
    b = _points(p2, "p2")
    if a.shape != b.shape:
        raise ValueError("p1 and p2 must hold the same number of points")
    if a.shape[0] < 3:
        raise ValueError("at least three point pairs are needed")

    o1 = a.mean(axis=0)
    o2 = b.mean(axis=0)
    pr1 = a - o1
    pr2 = b - o2

    m = pr2.T @ pr1

    n11 = m[0, 0] + m[1, 1] + m[2, 2]
    n12 = m[1, 2] - m[2, 1]
    n13 = m[2, 0] - m[0, 2]
    n14 = m[0, 1] - m[1, 0]
    n22 = m[0, 0] - m[1, 1] - m[2, 2]
    n23 = m[0, 1] + m[1, 0]
    n24 = m[2, 0] + m[0, 2]
    n33 = -m[0, 0] + m[1, 1] - m[2, 2]
    n34 = m[1, 2] + m[2, 1]
    n44 = -m[0, 0] - m[1, 1] + m[2, 2]
    n = np.array(
        [
            [n11, n12, n13, n14],
            [n12, n22, n23, n24],
            [n13, n23, n33, n34],
            [n14, n24, n34, n44],
        ]
    )

    evals, evecs = np.linalg.eigh(n)
    q = evecs[:, int(np.argmax(evals))]

    vec = q[1:]
    vec_norm = float(np.linalg.norm(vec))
    if vec_norm == 0.0:
        rotation = np.eye(3)
    else:
        angle = math.atan2(vec_norm, q[0])
        rotation = _rodrigues(2.0 * angle * vec / vec_norm)

    p3 = pr2 @ rotation.T

    if fix_scale:
        scale = 1.0
    else:
        den = float((p3 * p3).sum())
        with np.errstate(divide="ignore", invalid="ignore"):
            scale = float(np.float64((pr1 * p3).sum()) / np.float64(den))

    translation = o1 - scale * rotation @ o2
    return Sim3(rotation, translation, scale)


def camera_to_image(points, k) -> np.ndarray:
    """Pixel coordinates, shape (n, 2), of points given in camera coordinates."""
    pts = _points(points, "points")
    kk = _intrinsics(k)
    with np.errstate(divide="ignore", invalid="ignore"):
        inv_z = 1.0 / pts[:, 2]
        u = kk[0, 0] * pts[:, 0] * inv_z + kk[0, 2]
        v = kk[1, 1] * pts[:, 1] * inv_z + kk[1, 2]
    return np.column_stack([u, v])


def project(points, transform, k) -> np.ndarray:
    """Transform points by a 3x4/4x4 matrix or a Sim3, then project with ``k``."""
    matrix = transform.matrix if isinstance(transform, Sim3) else np.asarray(
        transform, dtype=float
    )
    if matrix.shape not in ((3, 4), (4, 4)):
        raise ValueError("transform must be 3x4 or 4x4")
    pts = _points(points, "points")
    pc = pts @ matrix[:3, :3].T + matrix[:3, 3]
    return camera_to_image(pc, k)


class Sim3Solver:
    """RANSAC estimation of the similarity between two camera frames.

    ``points1`` and ``points2`` give, per match slot, the matched point in the
    coordinates of camera 1 and camera 2, or None where the slot has no match.
    ``sigma2_1`` and ``sigma2_2`` give the squared scale sigma of the keypoint
    observing each point.
    """

    def __init__(
        self,
        points1: Sequence,
        points2: Sequence,
        sigma2_1: Sequence[float],
        sigma2_2: Sequence[float],
        k1,
        k2,
        fix_scale: bool = False,
        seed: int | None = None,
    ):
        slots = len(points1)
        if len(points2) != slots or len(sigma2_1) != slots or len(sigma2_2) != slots:
            raise ValueError("points and sigmas must have one entry per slot")
        self._slots = slots
        self.fix_scale = fix_scale

        x1, x2, err1, err2, indices = [], [], [], [], []
        for i, (a, b) in enumerate(zip(points1, points2)):
            if a is None or b is None:
                continue
            pa = np.asarray(a, dtype=float).reshape(-1)
            pb = np.asarray(b, dtype=float).reshape(-1)
            if pa.size != 3 or pb.size != 3:
                raise ValueError("each point must have three coordinates")
            x1.append(pa)
            x2.append(pb)
            err1.append(_CHI2_2DOF_99 * float(sigma2_1[i]))
            err2.append(_CHI2_2DOF_99 * float(sigma2_2[i]))
            indices.append(i)

        self._x1 = np.array(x1, dtype=float).reshape(-1, 3)
        self._x2 = np.array(x2, dtype=float).reshape(-1, 3)
        self._max_error1 = np.array(err1, dtype=float)
        self._max_error2 = np.array(err2, dtype=float)
        self._indices = indices

        self.k1 = _intrinsics(k1)
        self.k2 = _intrinsics(k2)
        self._p1_im1 = camera_to_image(self._x1, self.k1)
        self._p2_im2 = camera_to_image(self._x2, self.k2)

        self._rng = random.Random(seed)
        self._best: Sim3 | None = None
        self._best_count = 0
        self._best_inliers = np.zeros(self.n, dtype=bool)
        self.iterations = 0

        self.set_ransac_parameters()

    @property
    def n(self) -> int:
        """Number of usable correspondences."""
        return len(self._indices)

    @property
    def best(self) -> Sim3 | None:
        """The best transform found so far, or None."""
        if self._best is None:
            return None
        return Sim3(self._best.rotation.copy(), self._best.translation.copy(), self._best.scale)

    def set_ransac_parameters(
        self, probability: float = 0.99, min_inliers: int = 6, max_iterations: int = 300
    ) -> None:
        """Configure RANSAC and restart the iteration count."""
        n = self.n
        self.probability = probability
        self.min_inliers = min_inliers

        if min_inliers == n:
            n_iterations = 1
        elif n == 0:
            n_iterations = max_iterations
        else:
            epsilon = min_inliers / n
            denom_arg = 1.0 - epsilon**3
            num_arg = 1.0 - probability
            if 0.0 < denom_arg < 1.0 and num_arg > 0.0:
                n_iterations = math.ceil(math.log(num_arg) / math.log(denom_arg))
            else:
                n_iterations = max_iterations

        self.max_iterations = max(1, min(n_iterations, max_iterations))
        self.iterations = 0

    def _check_inliers(self, sim: Sim3) -> np.ndarray:
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            p2_im1 = project(self._x2, sim.matrix, self.k1)
            p1_im2 = project(self._x1, sim.inverse().matrix, self.k2)
            err1 = ((self._p1_im1 - p2_im1) ** 2).sum(axis=1)
            err2 = ((p1_im2 - self._p2_im2) ** 2).sum(axis=1)
            return (err1 < self._max_error1) & (err2 < self._max_error2)

    def _expand(self, flags: np.ndarray) -> list[bool]:
        out = [False] * self._slots
        for i, flag in zip(self._indices, flags):
            if flag:
                out[i] = True
        return out

    def iterate(self, n_iterations: int) -> tuple[Sim3 | None, list[bool], int, bool]:
        """Run up to ``n_iterations`` RANSAC steps; state carries over between calls.

        Returns the accepted transform (or None), one inlier flag per slot,
        the inlier count and whether the iteration budget is exhausted.
        """
        no_inliers = [False] * self._slots
        if self.n < max(self.min_inliers, 3):
            return None, no_inliers, 0, True

        current = 0
        while self.iterations < self.max_iterations and current < n_iterations:
            current += 1
            self.iterations += 1

            available = list(range(self.n))
            sample = []
            for _ in range(3):
                k = self._rng.randint(0, len(available) - 1)
                sample.append(available[k])
                available[k] = available[-1]
                available.pop()

            try:
                sim = compute_sim3(self._x1[sample], self._x2[sample], self.fix_scale)
                inliers = self._check_inliers(sim)
            except (np.linalg.LinAlgError, ValueError):
                continue
            count = int(inliers.sum())

            if count >= self._best_count:
                self._best = sim
                self._best_count = count
                self._best_inliers = inliers
                if count > self.min_inliers:
                    return self.best, self._expand(inliers), count, False

        return None, no_inliers, 0, self.iterations >= self.max_iterations

    def find(self) -> tuple[Sim3 | None, list[bool], int]:
        """Run RANSAC up to the configured limit; return transform, inliers and count."""
        sim, inliers, count, _ = self.iterate(self.max_iterations)
        return sim, inliers, count