"""Finite-difference operators and projections shared by the primal-dual solvers.

All fields are (H, W) float32 tensors. The gradient uses forward differences
with a Neumann boundary (zero derivative on the last row/column), and every
*_adjoint function is the exact transpose of its forward operator so that
<K x, y> == <x, K^T y> holds to rounding.
"""

import torch
import torch.nn.functional as F


def forward_dx(u: torch.Tensor) -> torch.Tensor:
    """Forward difference along x (columns); zero on the last column."""
    return F.pad(u[:, 1:] - u[:, :-1], (0, 1, 0, 0))


def forward_dy(u: torch.Tensor) -> torch.Tensor:
    """Forward difference along y (rows); zero on the last row."""
    return F.pad(u[1:, :] - u[:-1, :], (0, 0, 0, 1))


def forward_dx_adjoint(p: torch.Tensor) -> torch.Tensor:
    """Transpose of forward_dx."""
    inner = p[:, :-1]
    return F.pad(inner, (1, 0, 0, 0)) - F.pad(inner, (0, 1, 0, 0))


def forward_dy_adjoint(p: torch.Tensor) -> torch.Tensor:
    """Transpose of forward_dy."""
    inner = p[:-1, :]
    return F.pad(inner, (0, 0, 1, 0)) - F.pad(inner, (0, 0, 0, 1))


def gradient(u: torch.Tensor) -> tuple[torch.Tensor, torch.Tensor]:
    """Forward-difference gradient.

    Args:
        u: Scalar field, shape (H, W).

    Returns:
        (dx, dy), each shape (H, W).
    """
    return forward_dx(u), forward_dy(u)


def gradient_adjoint(px: torch.Tensor, py: torch.Tensor) -> torch.Tensor:
    """Transpose of gradient, i.e. -divergence(px, py)."""
    return forward_dx_adjoint(px) + forward_dy_adjoint(py)


def divergence(px: torch.Tensor, py: torch.Tensor) -> torch.Tensor:
    """Discrete divergence, the negative adjoint of gradient."""
    return -gradient_adjoint(px, py)


def symmetric_gradient(
    v1: torch.Tensor, v2: torch.Tensor
) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor, torch.Tensor]:
    """Symmetrized gradient of a vector field.

    The off-diagonal entry is stored twice (qz and qw) so that the Frobenius
    norm of the 2x2 tensor is the Euclidean norm of the four components.

    Args:
        v1: x component, shape (H, W).
        v2: y component, shape (H, W).

    Returns:
        (e11, e22, e12, e21), each shape (H, W).
    """
    e11 = forward_dx(v1)
    e22 = forward_dy(v2)
    e12 = 0.5 * (forward_dy(v1) + forward_dx(v2))
    return e11, e22, e12, e12.clone()


def symmetric_gradient_adjoint(
    qx: torch.Tensor, qy: torch.Tensor, qz: torch.Tensor, qw: torch.Tensor
) -> tuple[torch.Tensor, torch.Tensor]:
    """Transpose of symmetric_gradient.

    Returns:
        (w1, w2), each shape (H, W).
    """
    off = 0.5 * (qz + qw)
    w1 = forward_dx_adjoint(qx) + forward_dy_adjoint(off)
    w2 = forward_dy_adjoint(qy) + forward_dx_adjoint(off)
    return w1, w2


def project_ball(
    components: tuple[torch.Tensor, ...], radius: float
) -> tuple[torch.Tensor, ...]:
    """Point-wise projection onto the Euclidean ball of the given radius.

    Args:
        components: Vector field components, each shape (H, W).
        radius: Ball radius (> 0).

    Returns:
        Projected components, same shapes.
    """
    norm = torch.sqrt(sum(c * c for c in components))
    scale = torch.clamp(norm / radius, min=1.0)
    return tuple(c / scale for c in components)


def pointwise_norm(*components: torch.Tensor) -> torch.Tensor:
    """Euclidean norm over components at every pixel."""
    return torch.sqrt(sum(c * c for c in components))
