"""Multi-view depth refinement with second-order TGV and a linearized photometric term.

The refiner minimizes

    alpha1 * sum ||T (grad u - v)|| + alpha0 * sum ||E v||
        + lambda * sum_i sum |I_i(f_i(x, u)) - I_ref(x)|

over metric depth u and an auxiliary vector field v, where f_i projects the
reference pixel at depth u into source view i and E is the symmetrized
gradient. The photometric term is nonlinear in u, so it is linearized around
a frozen estimate u0 once per warp pass and the convex problem in between is
solved with a fixed number of primal-dual iterations.
"""

import logging
import sys
from dataclasses import dataclass

import torch
from torch.profiler import record_function
from tqdm import tqdm

from ..camera import Intrinsics, PoseConvention, PosedImage, relative_pose
from ..config import TGVConfig
from ..context import ComputeContext, scratch_zeros
from ..dense.cost import bilinear_interpolate, pixel_coordinates
from .operators import (
    gradient,
    gradient_adjoint,
    pointwise_norm,
    project_ball,
    symmetric_gradient,
    symmetric_gradient_adjoint,
)
from .tensor import DiffusionTensor, anisotropic_diffusion_tensor

logger = logging.getLogger(__name__)

# Projected depths at or below this are treated as behind the camera.
_MIN_DEPTH = 1e-6


@dataclass
class TGVState:
    """Primal and dual fields of a TGV2 solve.

    Attributes:
        u: Depth, shape (H, W).
        v1: x component of the auxiliary field, shape (H, W).
        v2: y component of the auxiliary field, shape (H, W).
        px: First-order dual, x, shape (H, W).
        py: First-order dual, y, shape (H, W).
        qx: Second-order dual (11 entry), shape (H, W).
        qy: Second-order dual (22 entry), shape (H, W).
        qz: Second-order dual (12 entry), shape (H, W).
        qw: Second-order dual (21 entry), shape (H, W).
    """

    u: torch.Tensor
    v1: torch.Tensor
    v2: torch.Tensor
    px: torch.Tensor
    py: torch.Tensor
    qx: torch.Tensor
    qy: torch.Tensor
    qz: torch.Tensor
    qw: torch.Tensor

    @classmethod
    def start(
        cls, u: torch.Tensor, ctx: ComputeContext | None = None
    ) -> "TGVState":
        """State at u with v and every dual set to zero, owned by ctx if given."""
        return cls(
            u=u.clone() if ctx is None else ctx.upload(u),
            **{
                name: scratch_zeros(ctx, u)
                for name in ("v1", "v2", "px", "py", "qx", "qy", "qz", "qw")
            },
        )


@dataclass
class ViewLinearization:
    """First-order model of one source view's photometric residual around u0.

    residual(u) ~= It + Iu * (u - u0). Both fields are zero where the
    projection leaves the source image or falls behind the camera.

    Attributes:
        It: Residual at u0, shape (H, W).
        Iu: Derivative of the residual w.r.t. depth, shape (H, W).
    """

    It: torch.Tensor
    Iu: torch.Tensor


def update_tgv_duals(
    state: TGVState,
    ubar: torch.Tensor,
    v1bar: torch.Tensor,
    v2bar: torch.Tensor,
    tensor: DiffusionTensor,
    alpha0: float,
    alpha1: float,
    sigma: float,
) -> None:
    """Ascent step on the regularizer duals (p and q), in place."""
    gx, gy = gradient(ubar)
    tx, ty = tensor.apply(gx - v1bar, gy - v2bar)
    state.px, state.py = project_ball(
        (state.px + sigma * tx, state.py + sigma * ty), alpha1
    )

    e11, e22, e12, e21 = symmetric_gradient(v1bar, v2bar)
    state.qx, state.qy, state.qz, state.qw = project_ball(
        (
            state.qx + sigma * e11,
            state.qy + sigma * e22,
            state.qz + sigma * e12,
            state.qw + sigma * e21,
        ),
        alpha0,
    )


def regularizer_descent(
    state: TGVState, tensor: DiffusionTensor
) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Gradient of the dualized regularizer w.r.t. (u, v1, v2).

    Returns:
        (du, dv1, dv2): grad^T T^T p, -T^T p + E^T q.
    """
    sx, sy = tensor.apply_transpose(state.px, state.py)
    du = gradient_adjoint(sx, sy)
    w1, w2 = symmetric_gradient_adjoint(state.qx, state.qy, state.qz, state.qw)
    return du, w1 - sx, w2 - sy


def tgv_regularizer_energy(
    u: torch.Tensor,
    v1: torch.Tensor,
    v2: torch.Tensor,
    tensor: DiffusionTensor,
    alpha0: float,
    alpha1: float,
) -> float:
    """alpha1 * sum ||T (grad u - v)|| + alpha0 * sum ||E v||."""
    gx, gy = gradient(u)
    first = pointwise_norm(*tensor.apply(gx - v1, gy - v2)).sum()
    second = pointwise_norm(*symmetric_gradient(v1, v2)).sum()
    return float(alpha1 * first + alpha0 * second)


def tgv_energy(
    u: torch.Tensor,
    v1: torch.Tensor,
    v2: torch.Tensor,
    u0: torch.Tensor,
    views: list[ViewLinearization],
    tensor: DiffusionTensor,
    alpha0: float,
    alpha1: float,
    lambda_: float,
) -> float:
    """TGV2 energy with the photometric term linearized around u0."""
    data = sum(
        float((view.It + view.Iu * (u - u0)).abs().sum()) for view in views
    )
    return tgv_regularizer_energy(u, v1, v2, tensor, alpha0, alpha1) + lambda_ * data


def linearize_view(
    u0: torch.Tensor,
    ref_image: torch.Tensor,
    src_image: torch.Tensor,
    src_grad: tuple[torch.Tensor, torch.Tensor],
    intrinsics: Intrinsics,
    R_rel: torch.Tensor,
    t_rel: torch.Tensor,
) -> ViewLinearization:
    """Linearize one source view's photometric residual around depth u0.

    For reference pixel p with ray a = R_rel K^-1 p, the source-frame point is
    X(u) = u * a + t_rel, so dX/du = a. The projected pixel derivative follows
    from the quotient rule on (X/Z, Y/Z) and the upper-triangular K.

    Args:
        u0: Frozen depth estimate, shape (H, W).
        ref_image: Reference image, shape (H, W).
        src_image: Source image, shape (Hs, Ws).
        src_grad: Central-difference gradient (gx, gy) of src_image.
        intrinsics: Pinhole intrinsics shared by both views.
        R_rel: Relative rotation, shape (3, 3).
        t_rel: Relative translation, shape (3,).

    Returns:
        ViewLinearization with It and Iu, each shape (H, W).
    """
    H, W = u0.shape
    K = intrinsics.K
    x, y = pixel_coordinates(H, W, u0.device)
    pixels = torch.stack([x, y, torch.ones_like(x)])  # (3, H, W)

    rays = torch.einsum("ij,jhw->ihw", R_rel @ intrinsics.K_inv, pixels)
    X = u0[None] * rays + t_rel[:, None, None]
    Z = X[2]
    valid = Z > _MIN_DEPTH
    Z_safe = torch.where(valid, Z, torch.ones_like(Z))

    xn = X[0] / Z_safe
    yn = X[1] / Z_safe
    xs = K[0, 0] * xn + K[0, 1] * yn + K[0, 2]
    ys = K[1, 1] * yn + K[1, 2]

    dxn = (rays[0] * Z - X[0] * rays[2]) / (Z_safe * Z_safe)
    dyn = (rays[1] * Z - X[1] * rays[2]) / (Z_safe * Z_safe)
    dfx = K[0, 0] * dxn + K[0, 1] * dyn
    dfy = K[1, 1] * dyn

    warped = bilinear_interpolate(src_image, xs, ys)
    gx = bilinear_interpolate(src_grad[0], xs, ys)
    gy = bilinear_interpolate(src_grad[1], xs, ys)

    valid = valid & torch.isfinite(warped) & torch.isfinite(gx) & torch.isfinite(gy)
    zero = torch.zeros_like(u0)
    It = torch.where(valid, warped - ref_image, zero)
    Iu = torch.where(valid, gx * dfx + gy * dfy, zero)
    return ViewLinearization(It=It, Iu=Iu)


def tgv_solve(
    u0: torch.Tensor,
    views: list[ViewLinearization],
    tensor: DiffusionTensor,
    niter: int,
    lambda_: float,
    alpha0: float,
    alpha1: float,
    tau: float,
    sigma: float,
    ctx: ComputeContext | None = None,
) -> TGVState:
    """One warp pass: primal-dual iterations on the linearized energy.

    Each view carries its own dual r_i (|r_i| <= lambda) for the L1
    photometric term, updated at the current depth u rather than at the
    over-relaxed ubar. Over-relaxation uses theta = 1.

    Args:
        u0: Linearization point and starting depth, shape (H, W).
        views: Linearized source views.
        tensor: Diffusion tensor of the reference image.
        niter: Number of iterations.
        lambda_: Photometric weight.
        alpha0: Second-order weight.
        alpha1: First-order weight.
        tau: Primal step size.
        sigma: Dual step size.
        ctx: Compute context that owns the state and the data duals.

    Returns:
        Final TGVState.
    """
    state = TGVState.start(u0, ctx)
    ubar = state.u.clone()
    v1bar = state.v1.clone()
    v2bar = state.v2.clone()
    r = [scratch_zeros(ctx, u0) for _ in views]

    for _ in range(niter):
        update_tgv_duals(state, ubar, v1bar, v2bar, tensor, alpha0, alpha1, sigma)

        prodsum = torch.zeros_like(u0)
        for i, view in enumerate(views):
            residual = view.It + view.Iu * (state.u - u0)
            r[i] = torch.clamp(r[i] + sigma * residual, -lambda_, lambda_)
            prodsum += view.Iu * r[i]

        du, dv1, dv2 = regularizer_descent(state, tensor)
        u_old, v1_old, v2_old = state.u, state.v1, state.v2
        state.u = state.u - tau * (du + prodsum)
        state.v1 = state.v1 - tau * dv1
        state.v2 = state.v2 - tau * dv2

        ubar = 2.0 * state.u - u_old
        v1bar = 2.0 * state.v1 - v1_old
        v2bar = 2.0 * state.v2 - v2_old

    return state


def refine_depth_tgv(
    depth: torch.Tensor,
    reference: PosedImage,
    sources: list[PosedImage],
    intrinsics: Intrinsics,
    config: TGVConfig,
    convention: PoseConvention,
    fill_depth: float,
    quiet: bool = True,
    ctx: ComputeContext | None = None,
) -> torch.Tensor:
    """Refine a depth map against all source views.

    Runs config.warps passes. Each pass freezes the current depth, linearizes
    every source view around it and runs config.niter primal-dual iterations
    with v and the duals reset. Only the last pass's depth is returned.

    Args:
        depth: Initial metric depth, shape (H, W). NaN pixels start at
            fill_depth.
        reference: Reference posed image.
        sources: Source posed images (already capped to the views to use).
        intrinsics: Pinhole intrinsics.
        config: Refiner parameters.
        convention: Pose convention of the (R, t) of every image.
        fill_depth: Starting depth for undefined pixels.
        quiet: Disable the progress bar.
        ctx: Compute context that owns the solver state.

    Returns:
        Refined metric depth, shape (H, W).

    Raises:
        ValueError: If there are no source views.
    """
    if not sources:
        raise ValueError("TGV refinement needs at least one source view")

    u = torch.nan_to_num(depth, nan=fill_depth, posinf=fill_depth, neginf=fill_depth)

    with record_function("tgv"):
        tensor = anisotropic_diffusion_tensor(reference.image, config.beta, config.gamma)
        poses = [
            relative_pose(reference.R, reference.t, src.R, src.t, convention)
            for src in sources
        ]
        grads = [tuple(reversed(torch.gradient(src.image))) for src in sources]

        for warp in tqdm(
            range(config.warps),
            desc="TGV warps",
            disable=quiet or not sys.stderr.isatty(),
            unit="warp",
            leave=False,
        ):
            u0 = u
            views = [
                linearize_view(
                    u0, reference.image, src.image, grad, intrinsics, R_rel, t_rel
                )
                for src, grad, (R_rel, t_rel) in zip(sources, grads, poses)
            ]
            state = tgv_solve(
                u0,
                views,
                tensor,
                niter=config.niter,
                lambda_=config.lambda_,
                alpha0=config.alpha0,
                alpha1=config.alpha1,
                tau=config.tau,
                sigma=config.sigma,
                ctx=ctx,
            )
            u = state.u
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "Warp %d: linearized energy %.4f",
                    warp,
                    tgv_energy(
                        state.u,
                        state.v1,
                        state.v2,
                        u0,
                        views,
                        tensor,
                        config.alpha0,
                        config.alpha1,
                        config.lambda_,
                    ),
                )

    return u
