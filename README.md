# slamgeom

Geometry building blocks for feature-based visual SLAM, written with NumPy.

## Modules

- `slamgeom.descriptors` – `descriptor_distance` (Hamming distance between
  256-bit binary descriptors given as 32 bytes), the `KeyPoint` dataclass,
  `RotationHistogram` for rejecting matches whose keypoint rotation disagrees
  with the three dominant rotation bins, `compute_three_maxima`,
  `radius_by_viewing_cos` and `check_dist_epipolar_line`.
- `slamgeom.matching` – `FeatureSet` (keypoints, descriptors, attached
  landmarks, stereo right coordinates and pyramid scale factors, with
  `features_in_area`) and `Matcher`, a nearest-neighbour ratio-test matcher:
  - `search_by_bow` matches landmarks of two feature sets that share
    vocabulary nodes (the bag-of-words vectors are mappings from node id to
    feature indices);
  - `search_for_initialization` matches finest-level features inside a window
    around their previous positions;
  - `search_for_triangulation` pairs features without landmarks that satisfy
    the epipolar constraint of a fundamental matrix.
- `slamgeom.projection` – `Camera` (pinhole intrinsics, image bounds and
  world-to-camera pose), `Landmark` (3D point with descriptor, viewing normal
  and distance range, `predict_scale`), `decompose_sim3`,
  `search_by_projection` (project landmarks through a similarity transform and
  match them to free features) and `search_by_sim3` (mutual projection between
  two views related by a similarity).
- `slamgeom.sim3` – the `Sim3` transform (`matrix`, `inverse`, `apply`),
  `compute_sim3` (Horn's closed-form similarity between two point sets),
  `project`, `camera_to_image` and `Sim3Solver`, a RANSAC estimator with
  `set_ransac_parameters`, `iterate`, `find` and the `best` property.

## Installation

```
pip install .
```

The only runtime dependency is NumPy. Python 3.10 or newer is required.

## Examples

Descriptor distance:

```python
import numpy as np
from slamgeom.descriptors import descriptor_distance

a = np.zeros(32, dtype=np.uint8)
b = np.full(32, 0xFF, dtype=np.uint8)
descriptor_distance(a, b)  # 256
```

Closed-form similarity between two point sets:

```python
import numpy as np
from slamgeom.sim3 import Sim3, compute_sim3

p2 = np.random.default_rng(0).normal(size=(10, 3))
truth = Sim3(np.eye(3), [1.0, 2.0, 3.0], 2.0)
p1 = truth.apply(p2)

estimate = compute_sim3(p1, p2)
estimate.scale  # close to 2.0
```

Robust similarity between two keyframes' camera-frame points. Each list holds
one entry per match slot, `None` where the slot has no match:

```python
from slamgeom.sim3 import Sim3Solver

solver = Sim3Solver(points1, points2, sigma2_1, sigma2_2, k1, k2, fix_scale=False, seed=0)
sim, inliers, count = solver.find()
```

`find` returns `None` for the transform when no hypothesis gathers more than
the minimum number of inliers within the iteration budget.

## What the package does not do

It does not estimate a camera pose from 3D–2D correspondences (no PnP
solver), it does not refine poses or maps by bundle adjustment, and it has no
command-line program: everything is called from Python.

## Running the tests

```
pip install .[test]
pytest
```