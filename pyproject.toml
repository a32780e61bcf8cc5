[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vslam"
version = "0.1.0"
description = "Visual odometry and bundle adjustment building blocks: ORB features, PnP, ICP, optical flow, direct method and BAL problems"
requires-python = ">=3.10"
keywords = [
    "slam",
    "visual odometry",
    "bundle adjustment",
    "orb",
    "optical flow",
    "pnp",
    "icp",
    "computer vision",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "numpy",
    "scipy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
    "hypothesis",
]

[project.scripts]
vslam-ba = "vslam.bundle_adjustment:main"
vslam-orb-match = "vslam.matching:main"

[tool.hatch.build.targets.wheel]
packages = ["vslam"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
