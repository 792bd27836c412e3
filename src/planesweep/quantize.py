"""8-bit quantization of depth maps for preview images."""

import numpy as np
import torch

UNDEFINED_INTENSITY = 255


def depth_to_uint8(depth: torch.Tensor, znear: float, zfar: float) -> np.ndarray:
    """Quantize a depth map to 8 bits over [znear, zfar].

    Args:
        depth: Depth map, shape (H, W). NaN for undefined pixels.
        znear: Depth mapped to 0.
        zfar: Depth mapped to 255.

    Returns:
        uint8 array, shape (H, W). Depths outside the range are clamped and
        undefined pixels are 255.
    """
    scaled = torch.clamp((depth - znear) / (zfar - znear), 0.0, 1.0) * 255.0
    scaled = torch.where(
        torch.isfinite(depth),
        scaled,
        torch.full_like(scaled, UNDEFINED_INTENSITY),
    )
    return scaled.detach().cpu().numpy().astype(np.uint8)
