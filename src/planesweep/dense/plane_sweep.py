"""Plane sweep stereo with winner-take-all depth aggregation."""

import logging
import sys
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import torch
from torch.profiler import record_function
from tqdm import tqdm

from ..camera import Intrinsics, PoseConvention, PosedImage, relative_pose
from ..config import PlaneSweepConfig
from ..context import ComputeContext, scratch_zeros
from .cost import update_best, warp_and_score
from .window import windowed_stats

logger = logging.getLogger(__name__)


@dataclass
class CostAccumulator:
    """Running per-pixel state of a plane sweep.

    The global fields (depth_sum, count) are reset once per reconstruction;
    the per-view fields (best_ncc, best_depth) are reset for every source view.

    Attributes:
        depth_sum: Sum of accepted per-view depths, shape (H, W).
        count: Number of views whose best NCC passed the threshold, shape (H, W).
        best_ncc: Best NCC of the current view, shape (H, W).
        best_depth: Depth achieving best_ncc, shape (H, W).
    """

    depth_sum: torch.Tensor
    count: torch.Tensor
    best_ncc: torch.Tensor
    best_depth: torch.Tensor

    @classmethod
    def zeros(
        cls,
        height: int,
        width: int,
        device: str | torch.device = "cpu",
        ctx: ComputeContext | None = None,
    ):
        """Fresh accumulator; fields come from ctx when one is given."""
        like = torch.empty(height, width, device=device)
        acc = cls(
            depth_sum=scratch_zeros(ctx, like),
            count=scratch_zeros(ctx, like),
            best_ncc=scratch_zeros(ctx, like),
            best_depth=scratch_zeros(ctx, like),
        )
        acc.reset_view()
        return acc

    def reset_view(self) -> None:
        """Forget the per-view arg-max before sweeping a new source view."""
        self.best_ncc.fill_(float("-inf"))
        self.best_depth.fill_(float("nan"))


@dataclass
class PlaneSweepResult:
    """Output of a plane sweep.

    Attributes:
        depth: Averaged depth map, shape (H, W), float32. NaN where no view
            passed the NCC threshold.
        count: Number of contributing views per pixel, shape (H, W).
        depth_sum: Sum of contributing depths per pixel, shape (H, W).
        depths: Depth hypotheses used, shape (D,), ascending.
    """

    depth: torch.Tensor
    count: torch.Tensor
    depth_sum: torch.Tensor
    depths: torch.Tensor


def generate_depth_hypotheses(
    znear: float,
    zfar: float,
    numberplanes: int,
    device: str | torch.device = "cpu",
) -> torch.Tensor:
    """Generate uniformly-spaced depth hypotheses.

    Args:
        znear: Nearest depth.
        zfar: Farthest depth.
        numberplanes: Number of hypotheses (>= 2).
        device: Device for the output tensor.

    Returns:
        Depth values, shape (numberplanes,), float32, ascending from znear
        to zfar inclusive with step (zfar - znear) / (numberplanes - 1).
    """
    return torch.linspace(znear, zfar, numberplanes, device=device)


def sweep_source_view(
    acc: CostAccumulator,
    ref: torch.Tensor,
    ref_mean: torch.Tensor,
    ref_std: torch.Tensor,
    src: torch.Tensor,
    intrinsics: Intrinsics,
    R_rel: torch.Tensor,
    t_rel: torch.Tensor,
    depths: torch.Tensor,
    config: PlaneSweepConfig,
) -> None:
    """Per-view winner-take-all over all depth hypotheses.

    Hypotheses are visited in the order given (ascending), so ties keep the
    shallowest depth. Results are left in acc.best_ncc / acc.best_depth.

    Args:
        acc: Accumulator; its per-view fields are reset first.
        ref: Reference image, shape (H, W).
        ref_mean: Windowed mean of ref.
        ref_std: Windowed standard deviation of ref.
        src: Source image, shape (Hs, Ws).
        intrinsics: Pinhole intrinsics.
        R_rel: Relative rotation, shape (3, 3).
        t_rel: Relative translation, shape (3,).
        depths: Ascending depth hypotheses, shape (D,).
        config: Plane sweep configuration.
    """
    acc.reset_view()
    for depth in depths.tolist():
        ncc = warp_and_score(
            ref,
            ref_mean,
            ref_std,
            src,
            intrinsics.K,
            intrinsics.K_inv,
            R_rel,
            t_rel,
            depth,
            config.winsize,
            config.stdthresh,
        )
        update_best(acc.best_ncc, acc.best_depth, ncc, depth)


def accumulate_view(acc: CostAccumulator, nccthresh: float) -> None:
    """Vote with the current view's best depth where its NCC is confident.

    Args:
        acc: Accumulator holding the finished per-view arg-max.
        nccthresh: Global acceptance threshold (strict).
    """
    accepted = acc.best_ncc > nccthresh
    acc.depth_sum += torch.where(
        accepted, acc.best_depth, torch.zeros_like(acc.best_depth)
    )
    acc.count += accepted.to(acc.count.dtype)


def finalize_depth(acc: CostAccumulator) -> torch.Tensor:
    """Average accepted depths; pixels with no votes become NaN."""
    defined = acc.count > 0
    return torch.where(
        defined,
        acc.depth_sum / acc.count.clamp(min=1.0),
        torch.full_like(acc.depth_sum, float("nan")),
    )


def plane_sweep_depth(
    reference: PosedImage,
    sources: list[PosedImage],
    intrinsics: Intrinsics,
    config: PlaneSweepConfig,
    convention: PoseConvention,
    quiet: bool = True,
    ctx: ComputeContext | None = None,
) -> PlaneSweepResult:
    """Run the plane sweep for one reference view.

    For each source view (up to config.numberimages), sweeps all depth
    hypotheses and keeps the per-pixel arg-max of NCC. A view votes for its
    best depth at a pixel only when that NCC exceeds config.nccthresh; the
    final depth is the mean of the votes.

    All inputs must already be on the same device.

    Args:
        reference: Reference posed image.
        sources: Source posed images.
        intrinsics: Pinhole intrinsics shared by all views.
        config: Plane sweep configuration.
        convention: Pose convention of the (R, t) of every image.
        quiet: Disable the progress bar.
        ctx: Compute context that owns the accumulators.

    Returns:
        PlaneSweepResult with the averaged depth map.

    Raises:
        ValueError: If there are no source views.
    """
    if not sources:
        raise ValueError("plane sweep needs at least one source view")

    with record_function("plane_sweep"):
        ref = reference.image
        H, W = ref.shape
        device = ref.device

        ref_mean, ref_std = windowed_stats(ref, config.winsize)
        depths = generate_depth_hypotheses(
            config.znear, config.zfar, config.numberplanes, device=device
        )
        acc = CostAccumulator.zeros(H, W, device=device, ctx=ctx)

        num_views = min(max(config.numberimages, 1), len(sources))
        for src in tqdm(
            sources[:num_views],
            desc="Plane sweep",
            disable=quiet or not sys.stderr.isatty(),
            unit="view",
            leave=False,
        ):
            R_rel, t_rel = relative_pose(
                reference.R, reference.t, src.R, src.t, convention
            )
            sweep_source_view(
                acc,
                ref,
                ref_mean,
                ref_std,
                src.image,
                intrinsics,
                R_rel,
                t_rel,
                depths,
                config,
            )
            accumulate_view(acc, config.nccthresh)
            logger.debug(
                "View %s: %d pixels above NCC threshold",
                src.name or "?",
                int((acc.best_ncc > config.nccthresh).sum()),
            )

        return PlaneSweepResult(
            depth=finalize_depth(acc),
            count=acc.count,
            depth_sum=acc.depth_sum,
            depths=depths,
        )


def save_depth_map(
    depth_map: np.ndarray | torch.Tensor,
    path: str | Path,
    **extra: np.ndarray | torch.Tensor | None,
) -> None:
    """Save a depth map to an .npz file under the key ``depth``.

    Args:
        depth_map: Depth map, shape (H, W), float32. NaN for undefined.
        path: Output file path (should end with .npz).
        **extra: Further per-pixel arrays stored under their keyword
            (e.g. ``count``, ``raw``). None values are skipped.
    """
    arrays = {"depth": depth_map, **extra}
    np.savez(
        path,
        **{
            key: value.detach().cpu().numpy() if isinstance(value, torch.Tensor) else value
            for key, value in arrays.items()
            if value is not None
        },
    )
