import math

import numpy as np
import pytest

from slamgeom.sim3 import Sim3, Sim3Solver, camera_to_image, compute_sim3, project

K = np.array([[500.0, 0.0, 320.0], [0.0, 500.0, 240.0], [0.0, 0.0, 1.0]])


def _rotation(ax, ay, az):
    cx, sx = math.cos(ax), math.sin(ax)
    cy, sy = math.cos(ay), math.sin(ay)
    cz, sz = math.cos(az), math.sin(az)
    rx = np.array([[1, 0, 0], [0, cx, -sx], [0, sx, cx]])
    ry = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]])
    rz = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]])
    return rz @ ry @ rx


def _scene(n, scale=1.3, seed=0):
    rng = np.random.default_rng(seed)
    p2 = np.column_stack(
        [rng.uniform(-1, 1, n), rng.uniform(-1, 1, n), rng.uniform(4, 8, n)]
    )
    r = _rotation(0.05, -0.08, 0.1)
    t = np.array([0.2, -0.1, 0.3])
    p1 = scale * p2 @ r.T + t
    return p1, p2, r, t


def test_compute_sim3_recovers_transform():
    p1, p2, r, t = _scene(3, scale=1.3)
    sim = compute_sim3(p1, p2)
    assert np.allclose(sim.rotation, r, atol=1e-9)
    assert sim.scale == pytest.approx(1.3)
    assert np.allclose(sim.translation, t, atol=1e-9)


def test_compute_sim3_many_points_maps_p2_onto_p1():
    p1, p2, _, _ = _scene(12, scale=0.7, seed=3)
    sim = compute_sim3(p1, p2)
    assert np.allclose(sim.apply(p2), p1, atol=1e-9)


def test_compute_sim3_fixed_scale():
    p1, p2, r, t = _scene(5, scale=1.0, seed=1)
    sim = compute_sim3(p1, p2, fix_scale=True)
    assert sim.scale == 1.0
    assert np.allclose(sim.rotation, r, atol=1e-9)
    assert np.allclose(sim.translation, t, atol=1e-9)


def test_compute_sim3_identity():
    _, p2, _, _ = _scene(4, seed=2)
    sim = compute_sim3(p2, p2)
    assert np.allclose(sim.rotation, np.eye(3))
    assert sim.scale == pytest.approx(1.0)
    assert np.allclose(sim.translation, 0.0, atol=1e-9)


def test_compute_sim3_rejects_too_few_points():
    with pytest.raises(ValueError):
        compute_sim3(np.zeros((2, 3)), np.zeros((2, 3)))


def test_compute_sim3_rejects_shape_mismatch():
    with pytest.raises(ValueError):
        compute_sim3(np.zeros((3, 3)), np.zeros((4, 3)))


def test_inverse_composes_to_identity():
    p1, p2, _, _ = _scene(3, scale=2.0)
    sim = compute_sim3(p1, p2)
    assert np.allclose(sim.matrix @ sim.inverse().matrix, np.eye(4), atol=1e-9)
    assert np.allclose(sim.inverse().apply(p1), p2, atol=1e-9)


def test_camera_to_image_principal_point():
    uv = camera_to_image([[0.0, 0.0, 2.0]], K)
    assert np.allclose(uv, [[320.0, 240.0]])


def test_project_identity_matches_camera_to_image():
    _, p2, _, _ = _scene(6)
    assert np.allclose(project(p2, np.eye(4), K), camera_to_image(p2, K))


def test_project_with_sim3_matches_transformed_points():
    p1, p2, _, _ = _scene(6, scale=1.1)
    sim = compute_sim3(p1, p2)
    assert np.allclose(project(p2, sim, K), camera_to_image(p1, K), atol=1e-6)


def test_project_rejects_bad_transform():
    with pytest.raises(ValueError):
        project(np.zeros((1, 3)), np.eye(3), K)


def test_solver_finds_transform_and_flags_outliers():
    p1, p2, r, t = _scene(20, scale=1.3, seed=5)
    points1 = list(p1)
    points2 = list(p2)
    outliers = [2, 9, 15]
    for i in outliers:
        points1[i] = points1[i] + np.array([0.8, -0.6, 0.5])
    points1.append(None)
    points2.append(np.array([0.0, 0.0, 5.0]))
    sig = [1.0] * len(points1)

    solver = Sim3Solver(points1, points2, sig, sig, K, K, seed=7)
    sim, inliers, count = solver.find()

    assert sim is not None
    assert np.allclose(sim.rotation, r, atol=1e-6)
    assert sim.scale == pytest.approx(1.3)
    assert np.allclose(sim.translation, t, atol=1e-6)
    assert len(inliers) == 21
    assert count == sum(inliers) == 17
    assert all(not inliers[i] for i in outliers)
    assert inliers[20] is False


def test_solver_with_too_few_points_gives_up():
    p1, p2, _, _ = _scene(4)
    sig = [1.0] * 4
    solver = Sim3Solver(list(p1), list(p2), sig, sig, K, K, seed=1)
    sim, inliers, count, no_more = solver.iterate(5)
    assert sim is None
    assert inliers == [False] * 4
    assert count == 0
    assert no_more is True


def test_solver_all_points_required_uses_one_iteration():
    p1, p2, _, _ = _scene(6)
    sig = [1.0] * 6
    solver = Sim3Solver(list(p1), list(p2), sig, sig, K, K, seed=1)
    solver.set_ransac_parameters(min_inliers=6)
    assert solver.max_iterations == 1


def test_solver_rejects_length_mismatch():
    with pytest.raises(ValueError):
        Sim3Solver([None, None], [None], [1.0, 1.0], [1.0, 1.0], K, K)