"""Plane-sweep multi-view depth estimation with variational refinement."""

from .camera import Intrinsics, PoseConvention, PosedImage, relative_pose
from .config import (
    PipelineConfig,
    PlaneSweepConfig,
    RuntimeConfig,
    SparseFusionConfig,
    TGVConfig,
    TVL1Config,
)
from .context import ComputeContext
from .dense import plane_sweep_depth
from .engine import PlaneSweep
from .errors import ComputeFailureError, PlaneSweepError, ResourceUnavailableError
from .geometry import backproject_depth_map, save_point_cloud
from .quantize import depth_to_uint8
from .regularize import denoise_depth_tvl1, fuse_sparse_depth, refine_depth_tgv

__version__ = "0.1.0"

__all__ = [
    "Intrinsics",
    "PosedImage",
    "PoseConvention",
    "relative_pose",
    "PipelineConfig",
    "PlaneSweepConfig",
    "TVL1Config",
    "TGVConfig",
    "SparseFusionConfig",
    "RuntimeConfig",
    "ComputeContext",
    "PlaneSweep",
    "PlaneSweepError",
    "ResourceUnavailableError",
    "ComputeFailureError",
    "plane_sweep_depth",
    "denoise_depth_tvl1",
    "refine_depth_tgv",
    "fuse_sparse_depth",
    "backproject_depth_map",
    "save_point_cloud",
    "depth_to_uint8",
]
