"""Shared pytest fixtures for planesweep tests."""

import pytest
import torch

from planesweep.camera import Intrinsics, PosedImage

# Synthetic two-view rig: a frontal plane at depth 2.0 seen by a reference
# camera at the origin and a source camera shifted 0.2 along x
# (world-to-camera poses), giving a horizontal disparity of f * b / Z = 5 px.
SCENE_HEIGHT = 48
SCENE_WIDTH = 64
SCENE_FOCAL = 50.0
SCENE_BASELINE = 0.2
SCENE_DEPTH = 2.0


def texture(x: torch.Tensor, y: torch.Tensor) -> torch.Tensor:
    """Smooth, non-periodic-looking intensity pattern in [0.1, 0.9]."""
    return (
        0.5
        + 0.3 * torch.sin(0.5 * x + 0.3 * y)
        + 0.1 * torch.sin(0.23 * x + 0.05 * y + 0.7)
    )


def make_intrinsics(
    height: int = SCENE_HEIGHT, width: int = SCENE_WIDTH, focal: float = SCENE_FOCAL
) -> Intrinsics:
    K = torch.tensor(
        [
            [focal, 0.0, (width - 1) / 2.0],
            [0.0, focal, (height - 1) / 2.0],
            [0.0, 0.0, 1.0],
        ]
    )
    return Intrinsics(K=K)


def make_plane_scene(
    depth: float = SCENE_DEPTH,
    height: int = SCENE_HEIGHT,
    width: int = SCENE_WIDTH,
) -> tuple[PosedImage, PosedImage, Intrinsics]:
    """Reference and source views of a textured frontal plane."""
    y, x = torch.meshgrid(
        torch.arange(height, dtype=torch.float32),
        torch.arange(width, dtype=torch.float32),
        indexing="ij",
    )
    disparity = SCENE_FOCAL * SCENE_BASELINE / depth

    reference = PosedImage(
        image=texture(x, y),
        R=torch.eye(3),
        t=torch.zeros(3),
        name="ref",
    )
    source = PosedImage(
        image=texture(x + disparity, y),
        R=torch.eye(3),
        t=torch.tensor([-SCENE_BASELINE, 0.0, 0.0]),
        name="src",
    )
    return reference, source, make_intrinsics(height, width)


@pytest.fixture(params=["cpu", "cuda"])
def device(request):
    """Parametrized device fixture for CPU and CUDA testing.

    Args:
        request: pytest fixture request object.

    Returns:
        torch.device: Device to use for testing.

    Raises:
        pytest.skip: If CUDA is requested but not available.
    """
    if request.param == "cuda" and not torch.cuda.is_available():
        pytest.skip("CUDA not available")
    return torch.device(request.param)


@pytest.fixture
def plane_scene():
    """Two-view scene of a frontal plane at depth 2.0 (CPU tensors)."""
    return make_plane_scene()


@pytest.fixture
def depth_step() -> float:
    """Spacing of 16 hypotheses over [1, 5]."""
    return (5.0 - 1.0) / 15


@pytest.fixture
def interior() -> tuple[slice, slice]:
    """Pixels far enough from the border to be seen by both views."""
    margin = 12
    return slice(margin, SCENE_HEIGHT - margin), slice(margin, SCENE_WIDTH - margin)


@pytest.fixture
def plane_scene_factory():
    """Builder for plane scenes at other depths or sizes."""
    return make_plane_scene
