"""TGV2 fusion of a sparse or unreliable depth prior into a dense depth map."""

import logging

import torch
from torch.profiler import record_function

from ..config import SparseFusionConfig
from ..context import ComputeContext
from .tensor import DiffusionTensor, anisotropic_diffusion_tensor
from .tgv import TGVState, regularizer_descent, tgv_regularizer_energy, update_tgv_duals

logger = logging.getLogger(__name__)

# Prior samples at or below this depth are treated as missing.
SPARSE_EPS = 1e-6


def sparse_depth_weights(
    sparse: torch.Tensor, confidence: torch.Tensor | None = None
) -> torch.Tensor:
    """Data weights of a sparse depth prior.

    Args:
        sparse: Prior depth, shape (H, W). Non-finite or near-zero samples
            are missing.
        confidence: Optional per-pixel confidence, shape (H, W), multiplied
            into the weight of present samples.

    Returns:
        Weights, shape (H, W), zero wherever the prior is missing.
    """
    present = torch.isfinite(sparse) & (sparse > SPARSE_EPS)
    weights = present.to(sparse.dtype)
    if confidence is not None:
        weights = weights * torch.nan_to_num(confidence.to(sparse.dtype), nan=0.0)
    return weights


def sparse_fusion_energy(
    u: torch.Tensor,
    v1: torch.Tensor,
    v2: torch.Tensor,
    prior: torch.Tensor,
    weights: torch.Tensor,
    tensor: DiffusionTensor,
    alpha0: float,
    alpha1: float,
) -> float:
    """TGV2 regularizer plus sum (w / 2) (u - d)^2."""
    d = torch.where(weights > 0, prior, torch.zeros_like(prior))
    data = 0.5 * (weights * (u - d) ** 2).sum()
    return tgv_regularizer_energy(u, v1, v2, tensor, alpha0, alpha1) + float(data)


def tgv_sparse_fusion(
    init: torch.Tensor,
    prior: torch.Tensor,
    weights: torch.Tensor,
    tensor: DiffusionTensor,
    niter: int,
    alpha0: float,
    alpha1: float,
    tau: float,
    sigma: float,
    theta: float,
    ctx: ComputeContext | None = None,
) -> TGVState:
    """Primal-dual TGV2 with a weighted quadratic pull toward a prior.

    The data term is linear in u after its proximal step,
    u = (u~ + tau * w * d) / (1 + tau * w), so no re-linearization is needed.
    Pixels with zero weight see the regularizer only.

    Args:
        init: Starting depth, shape (H, W), finite.
        prior: Prior depth, shape (H, W). Ignored where weights == 0.
        weights: Data weights, shape (H, W), >= 0.
        tensor: Diffusion tensor of the reference image.
        niter: Number of iterations.
        alpha0: Second-order weight.
        alpha1: First-order weight.
        tau: Primal step size.
        sigma: Dual step size.
        theta: Over-relaxation parameter.
        ctx: Compute context that owns the solver state.

    Returns:
        Final TGVState.
    """
    d = torch.where(weights > 0, prior, torch.zeros_like(prior))
    tw = tau * weights

    state = TGVState.start(init, ctx)
    ubar = state.u.clone()
    v1bar = state.v1.clone()
    v2bar = state.v2.clone()

    for _ in range(niter):
        update_tgv_duals(state, ubar, v1bar, v2bar, tensor, alpha0, alpha1, sigma)

        du, dv1, dv2 = regularizer_descent(state, tensor)
        u_old, v1_old, v2_old = state.u, state.v1, state.v2
        state.u = (state.u - tau * du + tw * d) / (1.0 + tw)
        state.v1 = state.v1 - tau * dv1
        state.v2 = state.v2 - tau * dv2

        ubar = state.u + theta * (state.u - u_old)
        v1bar = state.v1 + theta * (state.v1 - v1_old)
        v2bar = state.v2 + theta * (state.v2 - v2_old)

    return state


def fuse_sparse_depth(
    depth: torch.Tensor,
    sparse: torch.Tensor,
    image: torch.Tensor,
    config: SparseFusionConfig,
    zfar: float,
    confidence: torch.Tensor | None = None,
    ctx: ComputeContext | None = None,
) -> torch.Tensor:
    """Fuse a sparse depth prior into a dense depth map.

    Depths are scaled by 1 / zfar while solving.

    Args:
        depth: Starting metric depth, shape (H, W). NaN pixels start at zfar.
        sparse: Prior metric depth, shape (H, W). Missing samples are NaN,
            non-positive or zero.
        image: Reference image in [0, 1], shape (H, W).
        config: Fusion parameters.
        zfar: Far end of the depth range.
        confidence: Optional per-pixel confidence of the prior.
        ctx: Compute context that owns the solver state.

    Returns:
        Fused metric depth, shape (H, W).
    """
    with record_function("sparse_fusion"):
        weights = sparse_depth_weights(sparse, confidence)
        prior = torch.nan_to_num(sparse / zfar, nan=0.0, posinf=0.0, neginf=0.0)
        init = torch.nan_to_num(depth / zfar, nan=1.0, posinf=1.0, neginf=1.0)
        tensor = anisotropic_diffusion_tensor(image, config.beta, config.gamma)

        state = tgv_sparse_fusion(
            init,
            prior,
            weights,
            tensor,
            niter=config.niter,
            alpha0=config.alpha0,
            alpha1=config.alpha1,
            tau=config.tau,
            sigma=config.sigma,
            theta=config.theta,
            ctx=ctx,
        )
        logger.debug(
            "Sparse fusion: %d prior samples, %d iterations",
            int((weights > 0).sum()),
            config.niter,
        )
        return state.u * zfar
