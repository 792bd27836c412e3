"""Variational depth refinement: TV-L1, multi-view TGV2 and sparse fusion."""

from .sparse import fuse_sparse_depth, sparse_depth_weights, tgv_sparse_fusion
from .tensor import DiffusionTensor, anisotropic_diffusion_tensor
from .tgv import TGVState, linearize_view, refine_depth_tgv, tgv_energy, tgv_solve
from .tvl1 import denoise_depth_tvl1, tvl1_energy, tvl1_solve

__all__ = [
    "DiffusionTensor",
    "anisotropic_diffusion_tensor",
    "denoise_depth_tvl1",
    "tvl1_solve",
    "tvl1_energy",
    "TGVState",
    "linearize_view",
    "tgv_solve",
    "tgv_energy",
    "refine_depth_tgv",
    "sparse_depth_weights",
    "tgv_sparse_fusion",
    "fuse_sparse_depth",
]
