"""Tests for the multi-view TGV2 refiner."""

import pytest
import torch

from planesweep.camera import PoseConvention, relative_pose
from planesweep.config import TGVConfig
from planesweep.regularize.tensor import DiffusionTensor, anisotropic_diffusion_tensor
from planesweep.regularize.tgv import (
    TGVState,
    ViewLinearization,
    linearize_view,
    refine_depth_tgv,
    tgv_energy,
    tgv_solve,
)


@pytest.fixture
def tgv_config():
    return TGVConfig(niter=400, warps=3, lambda_=1.0, tau=0.25, sigma=0.25)


def _linearize(scene, u0):
    reference, source, intrinsics = scene
    R_rel, t_rel = relative_pose(
        reference.R, reference.t, source.R, source.t, PoseConvention.WORLD_TO_CAMERA
    )
    grad = tuple(reversed(torch.gradient(source.image)))
    return linearize_view(
        u0, reference.image, source.image, grad, intrinsics, R_rel, t_rel
    )


class TestTGVState:
    """Tests for TGVState.start()."""

    def test_start(self):
        u = torch.rand(4, 5)
        state = TGVState.start(u)

        assert torch.equal(state.u, u)
        assert state.u is not u
        for name in ("v1", "v2", "px", "py", "qx", "qy", "qz", "qw"):
            assert (getattr(state, name) == 0).all()


class TestLinearizeView:
    """Tests for linearize_view()."""

    def test_zero_residual_at_true_depth(self, plane_scene, interior):
        u0 = torch.full((48, 64), 2.0)
        view = _linearize(plane_scene, u0)

        assert view.It[interior].abs().max().item() < 1e-3
        assert view.Iu[interior].abs().max().item() > 0.1

    def test_out_of_bounds_pixels_are_zero(self, plane_scene):
        """Columns left of the disparity project outside the source image."""
        u0 = torch.full((48, 64), 2.0)
        view = _linearize(plane_scene, u0)

        assert (view.It[:, :4] == 0).all()
        assert (view.Iu[:, :4] == 0).all()

    def test_derivative_matches_finite_difference(self, plane_scene, interior):
        u0 = torch.full((48, 64), 2.05)
        h = 0.01
        base = _linearize(plane_scene, u0)
        shifted = _linearize(plane_scene, u0 + h)

        finite = ((shifted.It - base.It) / h)[interior].flatten()
        analytic = base.Iu[interior].flatten()
        corr = torch.corrcoef(torch.stack([finite, analytic]))[0, 1]
        assert corr.item() > 0.9

    def test_behind_camera_is_zero(self, plane_scene):
        reference, source, intrinsics = plane_scene
        grad = tuple(reversed(torch.gradient(source.image)))
        view = linearize_view(
            torch.full((48, 64), 2.0),
            reference.image,
            source.image,
            grad,
            intrinsics,
            torch.eye(3),
            torch.tensor([0.0, 0.0, -5.0]),
        )

        assert (view.It == 0).all()
        assert (view.Iu == 0).all()


class TestTGVSolve:
    """Tests for tgv_solve() and tgv_energy()."""

    def test_energy_decreases(self, plane_scene, tgv_config):
        reference = plane_scene[0]
        u0 = torch.full((48, 64), 2.05)
        views = [_linearize(plane_scene, u0)]
        tensor = anisotropic_diffusion_tensor(reference.image, 10.0, 0.1)

        zero = torch.zeros_like(u0)
        before = tgv_energy(u0, zero, zero, u0, views, tensor, 2.0, 1.0, 1.0)
        state = tgv_solve(
            u0, views, tensor, niter=150, lambda_=1.0, alpha0=2.0, alpha1=1.0,
            tau=0.25, sigma=0.25,
        )
        after = tgv_energy(
            state.u, state.v1, state.v2, u0, views, tensor, 2.0, 1.0, 1.0
        )

        assert after < before

    def test_zero_iterations(self, plane_scene):
        u0 = torch.full((48, 64), 2.05)
        views = [_linearize(plane_scene, u0)]
        tensor = anisotropic_diffusion_tensor(plane_scene[0].image, 10.0, 0.1)
        state = tgv_solve(u0, views, tensor, 0, 1.0, 2.0, 1.0, 0.25, 0.25)

        assert torch.equal(state.u, u0)

    def test_data_dual_uses_current_depth(self):
        # Constant fields keep the regularizer duals at zero, so only the
        # data term moves u: u1 = 0.75, r2 = 0.5 + 0.5 * (1 + (u1 - u0)).
        u0 = torch.ones(4, 4)
        views = [ViewLinearization(It=torch.ones(4, 4), Iu=torch.ones(4, 4))]
        tensor = DiffusionTensor.identity(4, 4)
        state = tgv_solve(u0, views, tensor, 2, 10.0, 2.0, 1.0, 0.5, 0.5)

        torch.testing.assert_close(state.u, torch.full((4, 4), 0.3125))


class TestRefineDepthTGV:
    """Tests for refine_depth_tgv()."""

    def _refine(self, scene, depth, config):
        reference, source, intrinsics = scene
        return refine_depth_tgv(
            depth,
            reference,
            [source],
            intrinsics,
            config,
            PoseConvention.WORLD_TO_CAMERA,
            fill_depth=5.0,
        )

    def test_true_depth_is_stationary(self, plane_scene, tgv_config, interior):
        depth = torch.full((48, 64), 2.0)
        refined = self._refine(plane_scene, depth, tgv_config)

        assert (refined[interior] - 2.0).abs().max().item() < 1e-3

    def test_offset_depth_improves(self, plane_scene, tgv_config, interior):
        depth = torch.full((48, 64), 2.05)
        refined = self._refine(plane_scene, depth, tgv_config)

        error = (refined[interior] - 2.0).abs().median().item()
        assert error < 0.6 * 0.05

    def test_zero_warps_returns_initialization(self, plane_scene, tgv_config):
        depth = torch.full((48, 64), 2.05)
        depth[0, 0] = float("nan")
        config = tgv_config.model_copy(update={"warps": 0})
        refined = self._refine(plane_scene, depth, config)

        assert refined[0, 0].item() == 5.0
        assert torch.equal(refined[1:], depth[1:])

    def test_zero_iterations_returns_initialization(self, plane_scene, tgv_config):
        depth = torch.full((48, 64), 2.05)
        config = tgv_config.model_copy(update={"niter": 0})
        assert torch.equal(self._refine(plane_scene, depth, config), depth)

    def test_multiple_sources(self, plane_scene, tgv_config, interior):
        reference, source, intrinsics = plane_scene
        refined = refine_depth_tgv(
            torch.full((48, 64), 2.05),
            reference,
            [source, source],
            intrinsics,
            tgv_config,
            PoseConvention.WORLD_TO_CAMERA,
            fill_depth=5.0,
        )
        assert (refined[interior] - 2.0).abs().median().item() < 0.6 * 0.05

    def test_no_sources_raises(self, plane_scene, tgv_config):
        reference, _, intrinsics = plane_scene
        with pytest.raises(ValueError, match="at least one source"):
            refine_depth_tgv(
                torch.full((48, 64), 2.0),
                reference,
                [],
                intrinsics,
                tgv_config,
                PoseConvention.WORLD_TO_CAMERA,
                fill_depth=5.0,
            )
