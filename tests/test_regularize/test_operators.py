"""Tests for finite-difference operators and projections."""

import pytest
import torch

from planesweep.regularize.operators import (
    divergence,
    gradient,
    gradient_adjoint,
    pointwise_norm,
    project_ball,
    symmetric_gradient,
    symmetric_gradient_adjoint,
)


def _inner(a: tuple[torch.Tensor, ...], b: tuple[torch.Tensor, ...]) -> float:
    return float(sum((x * y).sum() for x, y in zip(a, b)))


@pytest.fixture
def fields():
    gen = torch.Generator().manual_seed(7)
    return [torch.randn(9, 13, generator=gen, dtype=torch.float64) for _ in range(6)]


class TestGradient:
    """Tests for gradient() and its adjoint."""

    def test_forward_differences(self):
        u = torch.tensor([[0.0, 1.0, 3.0], [2.0, 2.0, 2.0]])
        dx, dy = gradient(u)

        assert dx.tolist() == [[1.0, 2.0, 0.0], [0.0, 0.0, 0.0]]
        assert dy.tolist() == [[2.0, 1.0, -1.0], [0.0, 0.0, 0.0]]

    def test_constant_has_zero_gradient(self):
        dx, dy = gradient(torch.full((5, 4), 3.0))
        assert (dx == 0).all() and (dy == 0).all()

    def test_adjoint(self, fields):
        u, px, py = fields[:3]
        lhs = _inner(gradient(u), (px, py))
        rhs = _inner((u,), (gradient_adjoint(px, py),))
        assert lhs == pytest.approx(rhs, rel=1e-10)

    def test_divergence_is_negative_adjoint(self, fields):
        _, px, py = fields[:3]
        assert torch.allclose(divergence(px, py), -gradient_adjoint(px, py))


class TestSymmetricGradient:
    """Tests for symmetric_gradient() and its adjoint."""

    def test_linear_field(self):
        """v = (y, x) has a constant symmetric gradient with off-diagonal 1."""
        y, x = torch.meshgrid(
            torch.arange(6, dtype=torch.float64),
            torch.arange(6, dtype=torch.float64),
            indexing="ij",
        )
        e11, e22, e12, e21 = symmetric_gradient(y, x)

        assert (e11 == 0).all() and (e22 == 0).all()
        assert torch.allclose(e12[:-1, :-1], torch.ones(5, 5, dtype=torch.float64))
        assert torch.equal(e12, e21)

    def test_adjoint(self, fields):
        v1, v2, qx, qy, qz, qw = fields
        lhs = _inner(symmetric_gradient(v1, v2), (qx, qy, qz, qw))
        rhs = _inner((v1, v2), symmetric_gradient_adjoint(qx, qy, qz, qw))
        assert lhs == pytest.approx(rhs, rel=1e-10)


class TestProjectBall:
    """Tests for project_ball()."""

    def test_inside_unchanged(self):
        px = torch.tensor([[0.3]])
        py = torch.tensor([[0.4]])
        qx, qy = project_ball((px, py), 1.0)
        assert qx.item() == pytest.approx(0.3)
        assert qy.item() == pytest.approx(0.4)

    def test_outside_scaled_to_radius(self):
        px = torch.tensor([[3.0]])
        py = torch.tensor([[4.0]])
        qx, qy = project_ball((px, py), 2.0)

        assert pointwise_norm(qx, qy).item() == pytest.approx(2.0)
        assert qx.item() / qy.item() == pytest.approx(0.75)

    def test_four_components(self, fields):
        projected = project_ball(tuple(fields[:4]), 0.5)
        assert (pointwise_norm(*projected) <= 0.5 + 1e-12).all()
