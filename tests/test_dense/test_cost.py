"""Tests for homography warping and NCC scoring."""

import math

import pytest
import torch

from planesweep.dense.cost import (
    bilinear_interpolate,
    compute_homography,
    compute_ncc,
    transform_indexes,
    update_best,
    warp_and_score,
)
from planesweep.dense.window import windowed_stats


@pytest.fixture
def K():
    return torch.tensor([[50.0, 0.0, 31.5], [0.0, 50.0, 23.5], [0.0, 0.0, 1.0]])


@pytest.fixture
def textured():
    torch.manual_seed(3)
    y, x = torch.meshgrid(
        torch.arange(24, dtype=torch.float32),
        torch.arange(32, dtype=torch.float32),
        indexing="ij",
    )
    return 0.5 + 0.2 * torch.sin(0.7 * x) * torch.cos(0.4 * y) + 0.05 * torch.rand(24, 32)


class TestComputeHomography:
    """Tests for compute_homography()."""

    def test_identity_pose(self, K):
        H = compute_homography(K, torch.linalg.inv(K), torch.eye(3), torch.zeros(3), 3.0)
        assert torch.allclose(H, torch.eye(3), atol=1e-5)

    def test_translation_shifts_by_disparity(self, K):
        t = torch.tensor([-0.2, 0.0, 0.0])
        H = compute_homography(K, torch.linalg.inv(K), torch.eye(3), t, 2.0)

        # x_src = x - f * b / d = x - 5
        assert H[0, 2] == pytest.approx(-5.0, abs=1e-4)
        assert H[2, 2] == pytest.approx(1.0)
        assert torch.allclose(H[:2, :2], torch.eye(2), atol=1e-5)

    def test_normalized(self, K):
        t = torch.tensor([0.1, 0.0, 0.3])
        H = compute_homography(K, torch.linalg.inv(K), torch.eye(3), t, 2.0)
        assert H[2, 2] == pytest.approx(1.0)

    def test_maps_plane_points(self, K):
        """A point on the plane lands where the source camera sees it."""
        angle = 0.05
        R = torch.tensor(
            [
                [math.cos(angle), 0.0, math.sin(angle)],
                [0.0, 1.0, 0.0],
                [-math.sin(angle), 0.0, math.cos(angle)],
            ]
        )
        t = torch.tensor([-0.3, 0.05, 0.02])
        depth = 2.5

        X_ref = torch.tensor([0.2, -0.1, depth])
        X_src = R @ X_ref + t
        p_ref = K @ (X_ref / X_ref[2])
        p_src = K @ (X_src / X_src[2])

        H = compute_homography(K, torch.linalg.inv(K), R, t, depth)
        mapped = H @ p_ref
        assert torch.allclose(mapped[:2] / mapped[2], p_src[:2], atol=1e-3)


def test_transform_indexes_translation():
    H = torch.tensor([[1.0, 0.0, -2.0], [0.0, 1.0, 1.5], [0.0, 0.0, 1.0]])
    xs, ys = transform_indexes(H, 4, 5)

    assert xs.shape == (4, 5)
    assert xs[0, 0] == pytest.approx(-2.0)
    assert ys[3, 4] == pytest.approx(4.5)


class TestBilinearInterpolate:
    """Tests for bilinear_interpolate()."""

    def test_integer_coordinates_exact(self, textured):
        y, x = torch.meshgrid(
            torch.arange(24, dtype=torch.float32),
            torch.arange(32, dtype=torch.float32),
            indexing="ij",
        )
        sampled = bilinear_interpolate(textured, x, y)
        assert torch.allclose(sampled, textured, atol=1e-5)

    def test_midpoint(self):
        src = torch.tensor([[0.0, 1.0], [2.0, 3.0]])
        value = bilinear_interpolate(src, torch.tensor([[0.5]]), torch.tensor([[0.5]]))
        assert value[0, 0] == pytest.approx(1.5)

    def test_out_of_bounds_is_nan(self):
        src = torch.ones(4, 4)
        x = torch.tensor([[-0.5, 0.0, 3.0, 3.5]])
        y = torch.tensor([[1.0, 1.0, 1.0, 1.0]])
        value = bilinear_interpolate(src, x, y)

        assert torch.isnan(value[0, 0])
        assert value[0, 1] == pytest.approx(1.0)
        assert value[0, 2] == pytest.approx(1.0)
        assert torch.isnan(value[0, 3])

    def test_non_finite_coordinates_are_nan(self):
        src = torch.ones(4, 4)
        x = torch.tensor([[float("nan"), float("inf")]])
        y = torch.tensor([[1.0, 1.0]])
        assert torch.isnan(bilinear_interpolate(src, x, y)).all()


class TestComputeNCC:
    """Tests for compute_ncc()."""

    def _ncc(self, ref, warped, winsize=5, stdthresh=1e-3):
        mean, std = windowed_stats(ref, winsize)
        return compute_ncc(ref, mean, std, warped, winsize, stdthresh)

    def test_self_correlation_is_one(self, textured):
        ncc = self._ncc(textured, textured)
        assert torch.allclose(ncc, torch.ones_like(ncc), atol=1e-3)

    @pytest.mark.parametrize("offset", [-0.3, 0.1, 0.25])
    def test_invariant_to_constant_shift(self, textured, offset):
        ncc = self._ncc(textured, textured + offset)
        assert torch.allclose(ncc, torch.ones_like(ncc), atol=1e-3)

    def test_invariant_to_gain_and_shift(self, textured):
        torch.manual_seed(1)
        other = torch.rand_like(textured)
        base = self._ncc(textured, other)
        shifted = self._ncc(textured + 0.2, 1.5 * other + 0.1)

        assert torch.allclose(base, shifted, atol=1e-3)

    def test_negated_is_minus_one(self, textured):
        ncc = self._ncc(textured, 1.0 - textured)
        assert torch.allclose(ncc, -torch.ones_like(ncc), atol=1e-3)

    def test_range(self):
        torch.manual_seed(2)
        ref = torch.rand(20, 20)
        ncc = self._ncc(ref, torch.rand(20, 20))

        valid = ncc[torch.isfinite(ncc)]
        assert valid.numel() > 0
        assert (valid >= -1.0).all() and (valid <= 1.0).all()

    def test_flat_window_is_nan(self, textured):
        flat = torch.full_like(textured, 0.5)
        assert torch.isnan(self._ncc(textured, flat)).all()
        assert torch.isnan(self._ncc(flat, textured)).all()

    def test_stdthresh_applies_to_either_window(self, textured):
        ncc = self._ncc(textured, textured, stdthresh=10.0)
        assert torch.isnan(ncc).all()

    def test_invalid_sample_spreads_over_window(self, textured):
        warped = textured.clone()
        warped[10, 10] = float("nan")
        ncc = self._ncc(textured, warped, winsize=3)

        assert torch.isnan(ncc[9:12, 9:12]).all()
        assert torch.isfinite(ncc[0, 0])


def test_warp_and_score_peaks_at_true_depth(K):
    y, x = torch.meshgrid(
        torch.arange(48, dtype=torch.float32),
        torch.arange(64, dtype=torch.float32),
        indexing="ij",
    )
    ref = 0.5 + 0.3 * torch.sin(0.5 * x + 0.3 * y)
    src = 0.5 + 0.3 * torch.sin(0.5 * (x + 5.0) + 0.3 * y)
    mean, std = windowed_stats(ref, 5)
    t = torch.tensor([-0.2, 0.0, 0.0])
    K_inv = torch.linalg.inv(K)

    scores = {
        depth: warp_and_score(
            ref, mean, std, src, K, K_inv, torch.eye(3), t, depth, 5, 0.01
        )[16:32, 16:48].mean()
        for depth in (1.6, 2.0, 2.5)
    }

    assert scores[2.0] == pytest.approx(1.0, abs=1e-3)
    assert scores[2.0] > scores[1.6]
    assert scores[2.0] > scores[2.5]


class TestUpdateBest:
    """Tests for update_best()."""

    def test_strictly_greater_wins(self):
        best_ncc = torch.tensor([0.5, 0.5, float("-inf")])
        best_depth = torch.tensor([1.0, 1.0, float("nan")])
        update_best(best_ncc, best_depth, torch.tensor([0.6, 0.4, 0.1]), 2.0)

        assert best_ncc.tolist() == pytest.approx([0.6, 0.5, 0.1])
        assert best_depth.tolist() == pytest.approx([2.0, 1.0, 2.0])

    def test_tie_keeps_first(self):
        best_ncc = torch.tensor([0.7])
        best_depth = torch.tensor([1.0])
        update_best(best_ncc, best_depth, torch.tensor([0.7]), 3.0)

        assert best_depth.item() == 1.0

    def test_nan_never_wins(self):
        best_ncc = torch.tensor([float("-inf")])
        best_depth = torch.tensor([float("nan")])
        update_best(best_ncc, best_depth, torch.tensor([float("nan")]), 3.0)

        assert best_ncc.item() == float("-inf")
        assert math.isnan(best_depth.item())
