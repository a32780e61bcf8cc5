# vslam

Building blocks for visual odometry and bundle adjustment, written with
NumPy, SciPy and Pillow:

- angle-axis / quaternion rotations (`vslam.rotation`) and SO(3)/SE(3)
  exponentials, logarithms and poses (`vslam.lie`)
- pinhole camera intrinsics (`vslam.camera.Intrinsics`)
- FAST-9 keypoints and steered BRIEF (ORB) descriptors (`vslam.orb`) with
  brute-force Hamming matching and match filtering (`vslam.matching`)
- bilinear sub-pixel sampling and image pyramids (`vslam.imaging`)
- 3D-2D pose estimation by Gauss-Newton (`vslam.pnp`)
- 3D-3D alignment by SVD and by Levenberg-Marquardt refinement (`vslam.icp`)
- Lucas-Kanade optical flow, single and multi level (`vslam.optical_flow`)
- sparse direct (photometric) pose estimation over image pyramids
  (`vslam.direct`)
- loading, normalising, perturbing, saving and solving bundle adjustment
  problems in the BAL text format (`vslam.noise`, `vslam.reprojection`,
  `vslam.bal`, `vslam.bundle_adjustment`)

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Command line

Solve a BAL dataset. The problem is normalised, perturbed with Gaussian noise
(rotation 0.1, translation 0.5, points 0.5), written to `initial.ply`,
optimised with a Huber loss for at most 40 function evaluations, and written
to `final.ply`:

```
vslam-ba problem-16-22106-pre.txt
```

Detect FAST keypoints (threshold 40), compute ORB descriptors and match two
images; the matches are drawn side by side into `matches.png`. Without
arguments the images `./1.png` and `./2.png` are used:

```
vslam-orb-match 1.png 2.png
```

## Library use

Rotating a point with an angle-axis vector:

```python
import math
from vslam.rotation import angle_axis_rotate_point

angle_axis_rotate_point([0.0, 0.0, math.pi / 2], [1.0, 0.0, 0.0])
# approximately [0, 1, 0]
```

Working with a BAL problem:

```python
from vslam.bal import BALProblem
from vslam.bundle_adjustment import solve_ba

problem = BALProblem.from_file("problem.txt", use_quaternions=False)
problem.normalize()
problem.write_to_ply_file("initial.ply")
solve_ba(problem, robust=True, max_iterations=40)
problem.write_to_ply_file("final.ply")
problem.write_to_file("solved.txt")
```

`solve_ba` works on angle-axis cameras only and raises `ValueError` for a
problem loaded with `use_quaternions=True`. The PLY output holds camera
centres as green points and the 3D structure as white points.

Features and matching:

```python
from vslam.orb import load_gray, fast_keypoints, compute_orb
from vslam.matching import bf_match, filter_good_matches

img1, img2 = load_gray("1.png"), load_gray("2.png")
kp1, kp2 = fast_keypoints(img1, 40), fast_keypoints(img2, 40)
matches = bf_match(compute_orb(img1, kp1), compute_orb(img2, kp2))
good = filter_good_matches(matches)
```

`compute_orb` returns `None` for keypoints within 16 pixels of the border;
`bf_match` skips them.

Pose from correspondences:

```python
from vslam.camera import TUM_FREIBURG2
from vslam.pnp import pose_gauss_newton
from vslam.icp import pose_estimation_3d3d, bundle_adjustment_icp

pose = pose_gauss_newton(points_3d, points_2d, TUM_FREIBURG2)   # SE3
rotation, translation = pose_estimation_3d3d(pts1, pts2)        # pts1 ~= R @ pts2 + t
refined = bundle_adjustment_icp(pts1, pts2)                     # SE3
```

`vslam.pnp.build_3d_2d_pairs` and `vslam.icp.build_3d_3d_pairs` turn matched
keypoints and 16-bit depth images (scale 5000 by default) into these point
arrays.

Tracking and direct alignment:

```python
from vslam.optical_flow import track_multi_level
from vslam.direct import direct_pose_multi_layer

tracked, success = track_multi_level(img1, img2, kp1, inverse=True)
pose = direct_pose_multi_layer(img1, img2, pixels, depths)
```

## What the package does not do

- There is no estimation of fundamental, essential or homography matrices,
  no recovery of a pose from 2D-2D matches and no triangulation; 3D points
  must come from depth images or from elsewhere.
- Nothing is shown on screen. Results are returned as arrays and objects;
  the only images written are the `matches.png` of `vslam-orb-match` and the
  PLY point clouds of `vslam-ba`.