"""Stateful depth estimation engine for one reference view."""

import logging
from collections.abc import Callable

import cv2
import numpy as np
import torch

from .camera import Intrinsics, PosedImage
from .config import PipelineConfig
from .context import ComputeContext
from .dense.plane_sweep import plane_sweep_depth
from .geometry import backproject_depth_map
from .profiling import timed_stage
from .quantize import depth_to_uint8
from .regularize.sparse import fuse_sparse_depth
from .regularize.tgv import refine_depth_tgv
from .regularize.tvl1 import denoise_depth_tvl1

logger = logging.getLogger(__name__)


class PlaneSweep:
    """Plane-sweep depth estimation with optional refinement.

    Every entry point acquires a fresh ComputeContext, runs its stage, and
    returns True on success. On failure the error is logged, the context is
    released, previously computed outputs are left untouched and False is
    returned. Outputs are host numpy arrays so they stay valid after the
    device buffers are released.

    The engine is not reentrant: do not call its entry points concurrently.

    Args:
        reference: Reference posed image.
        sources: Source posed images, in priority order.
        intrinsics: Pinhole intrinsics shared by all images.
        config: Full configuration. plane_sweep.pose_convention must be set.

    Attributes:
        depthmap: Raw plane-sweep depth, (H, W) float32, NaN where undefined.
        depthmap8u: 8-bit quantization of depthmap.
        count: Number of views that voted at each pixel, (H, W) float32.
        depthmap_denoised: TV-L1 denoised depth.
        depthmap8u_denoised: 8-bit quantization of depthmap_denoised, or the
            OpenCV-denoised depthmap8u after denoise_opencv.
        depthmap_tgv: Output of refine_tgv or fuse_sparse.
        depthmap8u_tgv: 8-bit quantization of depthmap_tgv.
        coordinates: World coordinates of each pixel, (3, H, W) float32.
    """

    def __init__(
        self,
        reference: PosedImage,
        sources: list[PosedImage],
        intrinsics: Intrinsics,
        config: PipelineConfig,
    ) -> None:
        self.reference = reference
        self.sources = sources
        self.intrinsics = intrinsics
        self.config = config

        self.depthmap: np.ndarray | None = None
        self.depthmap8u: np.ndarray | None = None
        self.count: np.ndarray | None = None
        self.depthmap_denoised: np.ndarray | None = None
        self.depthmap8u_denoised: np.ndarray | None = None
        self.depthmap_tgv: np.ndarray | None = None
        self.depthmap8u_tgv: np.ndarray | None = None
        self.coordinates: np.ndarray | None = None

    @property
    def _znear(self) -> float:
        return self.config.plane_sweep.znear

    @property
    def _zfar(self) -> float:
        return self.config.plane_sweep.zfar

    def _run_stage(
        self, name: str, stage: Callable[[ComputeContext], dict[str, np.ndarray]]
    ) -> bool:
        """Run one stage inside its own compute context.

        The stage returns the attributes to assign; they are only assigned
        when the whole stage succeeded.
        """
        try:
            with ComputeContext(self.config.runtime.device) as ctx:
                with ctx.guard(name), timed_stage(name, logger, ctx.synchronize):
                    outputs = stage(ctx)
        except Exception:
            logger.exception("Stage %s failed", name)
            return False

        for attr, value in outputs.items():
            setattr(self, attr, value)
        return True

    def _upload_view(self, ctx: ComputeContext, view: PosedImage) -> PosedImage:
        return PosedImage(
            image=ctx.upload(view.image),
            R=ctx.upload(view.R),
            t=ctx.upload(view.t),
            name=view.name,
        )

    def _upload_intrinsics(self, ctx: ComputeContext) -> Intrinsics:
        return Intrinsics(
            K=ctx.upload(self.intrinsics.K), K_inv=ctx.upload(self.intrinsics.K_inv)
        )

    def _used_sources(self) -> list[PosedImage]:
        return self.sources[: max(self.config.plane_sweep.numberimages, 1)]

    def _require_convention(self):
        convention = self.config.plane_sweep.pose_convention
        if convention is None:
            raise ValueError(
                "plane_sweep.pose_convention must be set explicitly "
                "(world_to_camera or camera_to_world)"
            )
        return convention

    def _require_depthmap(self) -> np.ndarray:
        if self.depthmap is None:
            raise ValueError("run_algorithm() must succeed before refinement")
        return self.depthmap

    def run_algorithm(self) -> bool:
        """Estimate the raw depth map of the reference view.

        Sets depthmap, depthmap8u and count.
        """

        def stage(ctx: ComputeContext) -> dict[str, np.ndarray]:
            convention = self._require_convention()
            result = plane_sweep_depth(
                self._upload_view(ctx, self.reference),
                [self._upload_view(ctx, src) for src in self._used_sources()],
                self._upload_intrinsics(ctx),
                self.config.plane_sweep,
                convention,
                quiet=self.config.runtime.quiet,
                ctx=ctx,
            )
            defined = int(torch.isfinite(result.depth).sum())
            logger.info(
                "Plane sweep: %d / %d pixels defined",
                defined,
                result.depth.numel(),
            )
            return {
                "depthmap": ctx.download(result.depth),
                "depthmap8u": depth_to_uint8(result.depth, self._znear, self._zfar),
                "count": ctx.download(result.count),
            }

        return self._run_stage("plane_sweep", stage)

    def denoise_tvl1(self) -> bool:
        """Denoise the raw depth map with tensor-weighted TV-L1.

        Sets depthmap_denoised and depthmap8u_denoised.
        """

        def stage(ctx: ComputeContext) -> dict[str, np.ndarray]:
            depth = ctx.upload(self._require_depthmap())
            image = ctx.upload(self.reference.image)
            denoised = denoise_depth_tvl1(
                depth, image, self.config.tvl1, self._znear, self._zfar, ctx=ctx
            )
            return {
                "depthmap_denoised": ctx.download(denoised),
                "depthmap8u_denoised": depth_to_uint8(
                    denoised, self._znear, self._zfar
                ),
            }

        return self._run_stage("tvl1", stage)

    def denoise_opencv(
        self, niter: int | None = None, lambda_: float | None = None
    ) -> bool:
        """Denoise the 8-bit depth preview with OpenCV's TV-L1 solver.

        Works on depthmap8u only; the float depth maps are left alone.
        Undefined pixels (255) are treated as ordinary intensities.

        Args:
            niter: Iterations. Defaults to config.tvl1.niter.
            lambda_: Data term weight. Defaults to config.tvl1.lambda_.

        Sets depthmap8u_denoised.
        """

        def stage(ctx: ComputeContext) -> dict[str, np.ndarray]:
            if self.depthmap8u is None:
                raise ValueError("run_algorithm() must succeed before refinement")
            out = np.zeros_like(self.depthmap8u)
            cv2.denoise_TVL1(
                [np.ascontiguousarray(self.depthmap8u)],
                out,
                self.config.tvl1.lambda_ if lambda_ is None else lambda_,
                self.config.tvl1.niter if niter is None else niter,
            )
            return {"depthmap8u_denoised": out}

        return self._run_stage("opencv_tvl1", stage)

    def refine_tgv(self) -> bool:
        """Refine the raw depth map against the source views with TGV2.

        Sets depthmap_tgv and depthmap8u_tgv.
        """

        def stage(ctx: ComputeContext) -> dict[str, np.ndarray]:
            convention = self._require_convention()
            depth = ctx.upload(self._require_depthmap())
            refined = refine_depth_tgv(
                depth,
                self._upload_view(ctx, self.reference),
                [self._upload_view(ctx, src) for src in self._used_sources()],
                self._upload_intrinsics(ctx),
                self.config.tgv,
                convention,
                fill_depth=self._zfar,
                quiet=self.config.runtime.quiet,
                ctx=ctx,
            )
            return {
                "depthmap_tgv": ctx.download(refined),
                "depthmap8u_tgv": depth_to_uint8(refined, self._znear, self._zfar),
            }

        return self._run_stage("tgv", stage)

    def fuse_sparse(
        self,
        sparse_depth: np.ndarray,
        confidence: np.ndarray | None = None,
    ) -> bool:
        """Fuse a sparse depth prior into a dense map with TGV2.

        Starts from the denoised depth if available, else the raw depth, else
        a constant zfar field.

        Args:
            sparse_depth: Prior depth, shape (H, W). Missing samples are NaN
                or zero.
            confidence: Optional per-pixel confidence of the prior.

        Sets depthmap_tgv and depthmap8u_tgv.
        """

        def stage(ctx: ComputeContext) -> dict[str, np.ndarray]:
            H, W = self.reference.height, self.reference.width
            if sparse_depth.shape != (H, W):
                raise ValueError(
                    f"sparse depth shape {sparse_depth.shape} does not match "
                    f"reference image shape {(H, W)}"
                )
            if self.depthmap_denoised is not None:
                init = ctx.upload(self.depthmap_denoised)
            elif self.depthmap is not None:
                init = ctx.upload(self.depthmap)
            else:
                init = ctx.full(H, W, self._zfar)

            fused = fuse_sparse_depth(
                init,
                ctx.upload(sparse_depth),
                ctx.upload(self.reference.image),
                self.config.sparse_fusion,
                self._zfar,
                confidence=None if confidence is None else ctx.upload(confidence),
                ctx=ctx,
            )
            return {
                "depthmap_tgv": ctx.download(fused),
                "depthmap8u_tgv": depth_to_uint8(fused, self._znear, self._zfar),
            }

        return self._run_stage("sparse_fusion", stage)

    def compute_3d_coordinates(self, depth: np.ndarray | None = None) -> bool:
        """Back-project a depth map to world coordinates.

        Args:
            depth: Depth map to use. Defaults to the most refined available
                output (TGV, then denoised, then raw).

        Sets coordinates.
        """

        def stage(ctx: ComputeContext) -> dict[str, np.ndarray]:
            convention = self._require_convention()
            source = depth
            if source is None:
                for candidate in (
                    self.depthmap_tgv,
                    self.depthmap_denoised,
                    self.depthmap,
                ):
                    if candidate is not None:
                        source = candidate
                        break
            if source is None:
                raise ValueError("no depth map available to back-project")

            coordinates = backproject_depth_map(
                ctx.upload(source),
                self._upload_view(ctx, self.reference),
                self._upload_intrinsics(ctx),
                convention,
            )
            return {"coordinates": ctx.download(coordinates)}

        return self._run_stage("backproject", stage)
