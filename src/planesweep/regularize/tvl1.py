"""Tensor-weighted TV-L1 denoising of a single depth map."""

import logging

import torch
from torch.profiler import record_function

from ..config import TVL1Config
from ..context import ComputeContext, scratch_zeros
from .operators import divergence, gradient, pointwise_norm, project_ball
from .tensor import DiffusionTensor, anisotropic_diffusion_tensor

logger = logging.getLogger(__name__)


def normalize_depth(
    depth: torch.Tensor, znear: float, zfar: float
) -> tuple[torch.Tensor, torch.Tensor]:
    """Map depth to [0, 1] over [znear, zfar].

    Args:
        depth: Metric depth, shape (H, W). NaN marks undefined pixels.
        znear: Depth mapped to 0.
        zfar: Depth mapped to 1.

    Returns:
        normalized: shape (H, W). Undefined pixels are set to 1 (zfar).
        defined: Boolean mask of defined input pixels, shape (H, W).
    """
    defined = torch.isfinite(depth)
    normalized = (depth - znear) / (zfar - znear)
    normalized = torch.where(defined, normalized, torch.ones_like(normalized))
    return normalized, defined


def denormalize_depth(u: torch.Tensor, znear: float, zfar: float) -> torch.Tensor:
    """Inverse of normalize_depth."""
    return znear + u * (zfar - znear)


def tvl1_energy(
    u: torch.Tensor,
    f: torch.Tensor,
    defined: torch.Tensor,
    tensor: DiffusionTensor,
    lambda_: float,
) -> float:
    """E(u) = sum ||T grad u|| + lambda * sum_defined |u - f|."""
    tx, ty = tensor.apply(*gradient(u))
    regularizer = pointwise_norm(tx, ty).sum()
    data = torch.where(defined, (u - f).abs(), torch.zeros_like(u)).sum()
    return float(regularizer + lambda_ * data)


def tvl1_solve(
    f: torch.Tensor,
    defined: torch.Tensor,
    tensor: DiffusionTensor,
    niter: int,
    lambda_: float,
    tau: float,
    sigma: float,
    theta: float,
    ctx: ComputeContext | None = None,
) -> torch.Tensor:
    """Primal-dual minimization of the tensor-weighted TV-L1 energy.

    Both terms are dualized: p (|p| <= 1) for the regularizer and r
    (|r| <= lambda) for the data term, which is disabled on undefined pixels.
    The first iteration takes a dual step of 1 + sigma for p. Runs exactly
    niter iterations.

    Args:
        f: Normalized input depth, shape (H, W). Also the starting point.
        defined: Mask of pixels carrying a data term, shape (H, W).
        tensor: Diffusion tensor of the reference image.
        niter: Number of iterations (0 returns f).
        lambda_: Data term weight.
        tau: Primal step size.
        sigma: Dual step size.
        theta: Over-relaxation parameter.
        ctx: Compute context that owns the dual fields.

    Returns:
        Denoised normalized depth, shape (H, W).
    """
    u = f.clone()
    ubar = u.clone()
    px = scratch_zeros(ctx, u)
    py = scratch_zeros(ctx, u)
    r = scratch_zeros(ctx, u)

    for it in range(niter):
        if it == 0:
            dual_step = 1.0 + sigma
        else:
            dual_step = sigma

        gx, gy = tensor.apply(*gradient(ubar))
        px, py = project_ball((px + dual_step * gx, py + dual_step * gy), 1.0)

        r = torch.clamp(r + sigma * (ubar - f), -lambda_, lambda_)
        r = torch.where(defined, r, torch.zeros_like(r))

        u_old = u
        u = u + tau * (divergence(*tensor.apply_transpose(px, py)) - r)
        ubar = u + theta * (u - u_old)

    return u


def denoise_depth_tvl1(
    depth: torch.Tensor,
    image: torch.Tensor,
    config: TVL1Config,
    znear: float,
    zfar: float,
    ctx: ComputeContext | None = None,
) -> torch.Tensor:
    """Denoise a raw plane-sweep depth map guided by the reference image.

    Args:
        depth: Metric depth map, shape (H, W). NaN marks undefined pixels.
        image: Reference image in [0, 1], shape (H, W).
        config: Denoiser parameters.
        znear: Near end of the depth range.
        zfar: Far end of the depth range.
        ctx: Compute context that owns the solver fields.

    Returns:
        Metric depth map, shape (H, W). Undefined input pixels are filled in
        by the regularizer.
    """
    if config.niter == 0:
        return depth.clone()

    with record_function("tvl1"):
        f, defined = normalize_depth(depth, znear, zfar)
        tensor = anisotropic_diffusion_tensor(image, config.beta, config.gamma)
        u = tvl1_solve(
            f,
            defined,
            tensor,
            niter=config.niter,
            lambda_=config.lambda_,
            tau=config.tau,
            sigma=config.sigma,
            theta=config.theta,
            ctx=ctx,
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "TV-L1 energy %.4f -> %.4f after %d iterations",
                tvl1_energy(f, f, defined, tensor, config.lambda_),
                tvl1_energy(u, f, defined, tensor, config.lambda_),
                config.niter,
            )
        return denormalize_depth(u, znear, zfar)
