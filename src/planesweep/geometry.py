"""Back-projection of depth maps to world coordinates and point cloud I/O."""

import logging
from pathlib import Path

import numpy as np
import open3d as o3d
import torch

from .camera import Intrinsics, PoseConvention, PosedImage, relative_pose
from .dense.cost import pixel_coordinates

logger = logging.getLogger(__name__)


def backproject_depth_map(
    depth_map: torch.Tensor,
    reference: PosedImage,
    intrinsics: Intrinsics,
    convention: PoseConvention,
) -> torch.Tensor:
    """Back-project every pixel of a depth map to world coordinates.

    The camera-frame point d * K^-1 p is carried into the world frame by the
    pose of the reference camera relative to a camera at the world origin
    (R = I, t = 0), read with the same convention as the sweep.

    Args:
        depth_map: Depth map, shape (H, W), float32. NaN for undefined pixels.
        reference: Reference posed image whose camera produced depth_map.
        intrinsics: Pinhole intrinsics.
        convention: Pose convention of reference.R / reference.t.

    Returns:
        World coordinates (x, y, z), shape (3, H, W), float32. NaN where the
        depth is undefined.
    """
    H, W = depth_map.shape
    device = depth_map.device

    R_world, t_world = relative_pose(
        reference.R,
        reference.t,
        torch.eye(3, device=device),
        torch.zeros(3, device=device),
        convention,
    )

    x, y = pixel_coordinates(H, W, device)
    pixels = torch.stack([x, y, torch.ones_like(x)])  # (3, H, W)
    rays = torch.einsum("ij,jhw->ihw", intrinsics.K_inv, pixels)
    camera_points = depth_map[None] * rays
    return torch.einsum("ij,jhw->ihw", R_world, camera_points) + t_world[:, None, None]


def coordinates_to_point_cloud(
    coordinates: torch.Tensor,
    image: torch.Tensor | None = None,
) -> o3d.geometry.PointCloud:
    """Convert a (3, H, W) coordinate field into an Open3D point cloud.

    Args:
        coordinates: World coordinates, shape (3, H, W). Non-finite points
            are dropped.
        image: Optional gray image in [0, 1], shape (H, W), used as color.

    Returns:
        Open3D PointCloud (possibly empty).
    """
    points = coordinates.reshape(3, -1).T  # (H*W, 3)
    valid = torch.isfinite(points).all(dim=-1)

    pcd = o3d.geometry.PointCloud()
    if not valid.any():
        return pcd

    pcd.points = o3d.utility.Vector3dVector(
        points[valid].detach().cpu().numpy().astype(np.float64)
    )
    if image is not None:
        gray = image.reshape(-1)[valid].clamp(0.0, 1.0)
        colors = gray[:, None].expand(-1, 3)
        pcd.colors = o3d.utility.Vector3dVector(
            colors.detach().cpu().numpy().astype(np.float64)
        )
    return pcd


def save_point_cloud(
    pcd: o3d.geometry.PointCloud,
    path: str | Path,
) -> None:
    """Write a point cloud to a binary PLY file, creating parent directories.

    Raises:
        OSError: If Open3D reports the write as failed.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if not o3d.io.write_point_cloud(str(path), pcd, write_ascii=False):
        raise OSError(f"Failed to write point cloud: {path}")
    logger.info("Wrote %d points to %s", len(pcd.points), path)
