"""Compute context: device lifecycle and ownership of scratch fields."""

import logging
from contextlib import contextmanager

import numpy as np
import torch

from .errors import ComputeFailureError, ResourceUnavailableError

logger = logging.getLogger(__name__)


class ComputeContext:
    """Device handle owning the scratch fields allocated during one call.

    Acquire it once per top-level call with a ``with`` block and pass it to
    the solvers (``ctx=``) so that their accumulators and primal-dual state
    are allocated here. On exit (normal or exceptional) all scratch fields
    are released and the CUDA cache is emptied. Tensors obtained from the
    context must not be used after ``reset()`` or after the block ends.

    Example:
        with ComputeContext("cuda") as ctx:
            ref = PosedImage(ctx.upload(image), ctx.upload(R), ctx.upload(t))
            result = plane_sweep_depth(ref, srcs, K, config, conv, ctx=ctx)

    Args:
        device: Requested device string ("cpu" or "cuda").
    """

    def __init__(self, device: str = "cpu") -> None:
        self.requested = device
        self.device: torch.device | None = None
        self._scratch: list[torch.Tensor] = []

    def __enter__(self) -> "ComputeContext":
        self.device = self._init_device()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.reset()

    def _init_device(self) -> torch.device:
        if self.requested.startswith("cuda"):
            if not torch.cuda.is_available() or torch.cuda.device_count() == 0:
                raise ResourceUnavailableError(
                    "no devices supporting CUDA", location="ComputeContext"
                )
            device = torch.device(self.requested)
            logger.debug("Using CUDA device %s", torch.cuda.get_device_name(device))
            return device
        return torch.device(self.requested)

    @property
    def num_scratch(self) -> int:
        """Number of scratch fields currently owned by the context."""
        return len(self._scratch)

    def _own(self, tensor: torch.Tensor) -> torch.Tensor:
        if self.device is None:
            raise RuntimeError("ComputeContext must be entered before allocating")
        self._scratch.append(tensor)
        return tensor

    def zeros(self, height: int, width: int) -> torch.Tensor:
        """Allocate a zero-filled (H, W) float32 field."""
        return self._own(torch.zeros(height, width, device=self.device))

    def full(self, height: int, width: int, value: float) -> torch.Tensor:
        """Allocate a constant (H, W) float32 field."""
        return self._own(
            torch.full((height, width), float(value), device=self.device)
        )

    def upload(self, data: np.ndarray | torch.Tensor) -> torch.Tensor:
        """Copy host data (any stride) into an owned float32 device field."""
        if isinstance(data, np.ndarray):
            data = torch.from_numpy(np.ascontiguousarray(data))
        return self._own(data.to(device=self.device, dtype=torch.float32).clone())

    def download(self, tensor: torch.Tensor) -> np.ndarray:
        """Copy a device field back to a contiguous host array."""
        return tensor.detach().cpu().numpy().copy()

    def synchronize(self) -> None:
        """Wait for queued kernels so that asynchronous failures surface here."""
        if self.device is not None and self.device.type == "cuda":
            torch.cuda.synchronize(self.device)

    @contextmanager
    def guard(self, location: str):
        """Translate torch runtime failures into ComputeFailureError.

        Args:
            location: Stage name reported with the failure.
        """
        try:
            yield
            self.synchronize()
        except RuntimeError as e:
            raise ComputeFailureError(str(e), location=location) from e

    def reset(self) -> None:
        """Release all scratch fields and device caches."""
        self._scratch.clear()
        if self.device is not None and self.device.type == "cuda":
            torch.cuda.empty_cache()


def scratch_zeros(ctx: ComputeContext | None, like: torch.Tensor) -> torch.Tensor:
    """Zero field shaped like ``like``, owned by ``ctx`` when one is given."""
    if ctx is None:
        return torch.zeros_like(like)
    return ctx.zeros(*like.shape)
