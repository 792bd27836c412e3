"""Posed images, pinhole intrinsics, and relative pose conventions."""

from dataclasses import dataclass, field
from enum import Enum

import numpy as np
import torch


class PoseConvention(str, Enum):
    """How the (R, t) of a PosedImage should be read.

    Both variants yield a relative pose with X_src = Rrel @ X_ref + trel,
    where X_ref and X_src are points in reference and source camera frames.

    - WORLD_TO_CAMERA: poses map world to camera, X_c = R @ X_w + t.
      Then X_src = Rsrc @ Rref^-1 @ (X_ref - tref) + tsrc, so
      Rrel = Rsrc @ Rref^-1 and trel = tsrc - Rrel @ tref.
    - CAMERA_TO_WORLD: poses map camera to world, X_w = R @ X_c + t.
      Then X_src = Rsrc^T @ (Rref @ X_ref + tref - tsrc), so
      Rrel = Rsrc^T @ Rref and trel = Rsrc^T @ (tref - tsrc).
    """

    WORLD_TO_CAMERA = "world_to_camera"
    CAMERA_TO_WORLD = "camera_to_world"


@dataclass
class PosedImage:
    """Single-channel image with its camera pose.

    Attributes:
        image: Intensity image, shape (H, W), float32 in [0, 1].
        R: Rotation matrix, shape (3, 3), float32.
        t: Translation vector, shape (3,), float32.
        name: Optional identifier (file stem, camera name).
    """

    image: torch.Tensor  # shape (H, W), float32
    R: torch.Tensor  # shape (3, 3), float32
    t: torch.Tensor  # shape (3,), float32
    name: str = ""

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]

    @classmethod
    def from_array(
        cls,
        image: np.ndarray,
        R: np.ndarray,
        t: np.ndarray,
        name: str = "",
    ) -> "PosedImage":
        """Build a PosedImage from host arrays.

        Accepts row-padded (pitched) or otherwise strided arrays; the pixel
        data is compacted into a contiguous buffer before conversion.

        Args:
            image: Gray (H, W) or BGR (H, W, 3) image, uint8 or float.
                uint8 input is scaled to [0, 1].
            R: Rotation matrix, shape (3, 3).
            t: Translation vector, shape (3,) or (3, 1).
            name: Optional identifier.

        Returns:
            PosedImage with float32 CPU tensors.
        """
        array = np.ascontiguousarray(image)
        if array.ndim == 3:
            # BGR to gray: 0.114*B + 0.587*G + 0.299*R
            array = (
                0.114 * array[..., 0].astype(np.float32)
                + 0.587 * array[..., 1].astype(np.float32)
                + 0.299 * array[..., 2].astype(np.float32)
            )
            if image.dtype == np.uint8:
                array = array / 255.0
        elif array.dtype == np.uint8:
            array = array.astype(np.float32) / 255.0

        t = np.asarray(t, dtype=np.float32)
        # Handle both (3,) and (3, 1) shapes
        if t.ndim == 2:
            t = t.squeeze()

        return cls(
            image=torch.from_numpy(np.asarray(array, dtype=np.float32)),
            R=torch.from_numpy(np.asarray(R, dtype=np.float32)),
            t=torch.from_numpy(t),
            name=name,
        )

    def to(self, device: str | torch.device) -> "PosedImage":
        """Return a copy with all tensors on the given device."""
        return PosedImage(
            image=self.image.to(device),
            R=self.R.to(device),
            t=self.t.to(device),
            name=self.name,
        )


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole intrinsics, fixed for a reconstruction run.

    Attributes:
        K: Intrinsic matrix, shape (3, 3), float32.
        K_inv: Inverse of K, shape (3, 3), float32. Computed when omitted.
    """

    K: torch.Tensor
    K_inv: torch.Tensor = field(default=None)

    def __post_init__(self) -> None:
        if self.K_inv is None:
            object.__setattr__(self, "K_inv", torch.linalg.inv(self.K))

    @property
    def fx(self) -> float:
        return float(self.K[0, 0])

    @property
    def fy(self) -> float:
        return float(self.K[1, 1])

    @classmethod
    def from_array(cls, K: np.ndarray) -> "Intrinsics":
        return cls(K=torch.as_tensor(np.asarray(K, dtype=np.float32)))

    def to(self, device: str | torch.device) -> "Intrinsics":
        return Intrinsics(K=self.K.to(device), K_inv=self.K_inv.to(device))


def relative_pose(
    R_ref: torch.Tensor,
    t_ref: torch.Tensor,
    R_src: torch.Tensor,
    t_src: torch.Tensor,
    convention: PoseConvention,
) -> tuple[torch.Tensor, torch.Tensor]:
    """Pose of the source camera relative to the reference camera.

    Args:
        R_ref: Reference rotation, shape (3, 3).
        t_ref: Reference translation, shape (3,).
        R_src: Source rotation, shape (3, 3).
        t_src: Source translation, shape (3,).
        convention: How R and t are to be read. See PoseConvention.

    Returns:
        R_rel: shape (3, 3).
        t_rel: shape (3,).

    Raises:
        ValueError: If convention is not a PoseConvention.
    """
    match PoseConvention(convention) if convention is not None else None:
        case PoseConvention.WORLD_TO_CAMERA:
            R_rel = R_src @ torch.linalg.inv(R_ref)
            t_rel = t_src - R_rel @ t_ref
        case PoseConvention.CAMERA_TO_WORLD:
            R_rel = R_src.T @ R_ref
            t_rel = R_src.T @ (t_ref - t_src)
        case _:
            raise ValueError(
                "A pose convention must be chosen explicitly: "
                f"{[c.value for c in PoseConvention]}"
            )
    return R_rel, t_rel
