"""Edge-aware anisotropic diffusion tensor built from the reference image."""

from dataclasses import dataclass

import torch

# Gradient magnitudes below this are treated as flat.
_FLAT_EPS = 1e-8


@dataclass
class DiffusionTensor:
    """Per-pixel symmetric 2x2 tensor applied to gradients.

    The tensor plays the role of T^{1/2} in the regularizer ||T^{1/2} grad u||:
    solvers multiply gradients by it directly.

    Attributes:
        t11: shape (H, W).
        t12: shape (H, W).
        t21: shape (H, W).
        t22: shape (H, W).
    """

    t11: torch.Tensor
    t12: torch.Tensor
    t21: torch.Tensor
    t22: torch.Tensor

    @classmethod
    def identity(
        cls, height: int, width: int, device: str | torch.device = "cpu"
    ) -> "DiffusionTensor":
        one = torch.ones(height, width, device=device)
        zero = torch.zeros(height, width, device=device)
        return cls(t11=one, t12=zero, t21=zero.clone(), t22=one.clone())

    def apply(
        self, gx: torch.Tensor, gy: torch.Tensor
    ) -> tuple[torch.Tensor, torch.Tensor]:
        """T @ (gx, gy) at every pixel."""
        return (
            self.t11 * gx + self.t12 * gy,
            self.t21 * gx + self.t22 * gy,
        )

    def apply_transpose(
        self, px: torch.Tensor, py: torch.Tensor
    ) -> tuple[torch.Tensor, torch.Tensor]:
        """T^T @ (px, py) at every pixel."""
        return (
            self.t11 * px + self.t21 * py,
            self.t12 * px + self.t22 * py,
        )


def edge_weight(magnitude: torch.Tensor, beta: float, gamma: float) -> torch.Tensor:
    """Diffusion across an edge as a function of gradient magnitude.

    w = max(exp(-beta * |grad I|), gamma). Decreasing in the magnitude, equal
    to 1 on flat regions and never below gamma.
    """
    return torch.clamp(torch.exp(-beta * magnitude), min=gamma)


def anisotropic_diffusion_tensor(
    image: torch.Tensor, beta: float, gamma: float
) -> DiffusionTensor:
    """Build the diffusion tensor of a reference image.

    With n the unit gradient direction and n_perp its rotation by 90 degrees,
    T = w * n n^T + n_perp n_perp^T. Smoothing along edges is kept at full
    strength while smoothing across them is reduced to w. The eigenvalues lie
    in [gamma, 1], so T is positive definite for gamma > 0, and T is the
    identity wherever the image is flat.

    Args:
        image: Intensity image in [0, 1], shape (H, W).
        beta: Edge steepness (>= 0). beta = 0 gives the identity everywhere.
        gamma: Minimum diffusion across edges, in (0, 1].

    Returns:
        DiffusionTensor with symmetric entries (t12 == t21).
    """
    gy, gx = torch.gradient(image)
    magnitude = torch.sqrt(gx * gx + gy * gy)

    flat = magnitude < _FLAT_EPS
    safe = torch.where(flat, torch.ones_like(magnitude), magnitude)
    nx = torch.where(flat, torch.ones_like(gx), gx / safe)
    ny = torch.where(flat, torch.zeros_like(gy), gy / safe)

    w = edge_weight(magnitude, beta, gamma)
    w = torch.where(flat, torch.ones_like(w), w)

    t11 = w * nx * nx + ny * ny
    t22 = w * ny * ny + nx * nx
    t12 = (w - 1.0) * nx * ny
    return DiffusionTensor(t11=t11, t12=t12, t21=t12.clone(), t22=t22)
