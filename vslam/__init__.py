"""Visual odometry and bundle adjustment: rotations, ORB features, PnP, ICP, optical flow, direct method and BAL problems."""

__version__ = "0.1.0"