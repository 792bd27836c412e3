"""Dense depth estimation via plane sweep and windowed NCC."""

from .cost import (
    bilinear_interpolate,
    compute_homography,
    compute_ncc,
    transform_indexes,
    update_best,
    warp_and_score,
)
from .plane_sweep import (
    CostAccumulator,
    PlaneSweepResult,
    generate_depth_hypotheses,
    plane_sweep_depth,
    save_depth_map,
)
from .window import windowed_mean, windowed_stats, windowed_std

__all__ = [
    "compute_homography",
    "transform_indexes",
    "bilinear_interpolate",
    "compute_ncc",
    "warp_and_score",
    "update_best",
    "windowed_mean",
    "windowed_std",
    "windowed_stats",
    "CostAccumulator",
    "PlaneSweepResult",
    "generate_depth_hypotheses",
    "plane_sweep_depth",
    "save_depth_map",
]
