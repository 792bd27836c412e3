"""Scene loading from a YAML description and image files."""

import logging
from dataclasses import dataclass
from pathlib import Path

import cv2
import numpy as np
import yaml

from .camera import Intrinsics, PosedImage

logger = logging.getLogger(__name__)


@dataclass
class Scene:
    """Reference view, source views and shared intrinsics.

    Attributes:
        intrinsics: Pinhole intrinsics shared by every image.
        reference: Reference posed image (first entry of the scene file).
        sources: Remaining posed images, in file order.
    """

    intrinsics: Intrinsics
    reference: PosedImage
    sources: list[PosedImage]


def read_gray_image(path: str | Path) -> np.ndarray:
    """Read an image file as 8-bit grayscale.

    Raises:
        FileNotFoundError: If OpenCV cannot read the file.
    """
    image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
    if image is None:
        raise FileNotFoundError(f"Failed to read image: {path}")
    return image


def load_scene(path: str | Path) -> Scene:
    """Load a scene description.

    The file holds the intrinsic matrix and an ordered list of images with
    their poses. Image paths are resolved relative to the scene file::

        K: [[fx, 0, cx], [0, fy, cy], [0, 0, 1]]
        images:
          - path: ref.png
            R: [[1, 0, 0], [0, 1, 0], [0, 0, 1]]
            t: [0, 0, 0]
          - path: src.png
            R: ...
            t: ...

    Args:
        path: Path to the scene YAML file.

    Returns:
        Scene with the first image as reference.

    Raises:
        FileNotFoundError: If the scene file or an image is missing.
        ValueError: If the description is malformed or has fewer than two
            images.
    """
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    if "K" not in data:
        raise ValueError(f"Scene file {path} has no intrinsic matrix 'K'")
    K = np.asarray(data["K"], dtype=np.float32)
    if K.shape != (3, 3):
        raise ValueError(f"K must be 3x3, got shape {K.shape}")

    entries = data.get("images") or []
    if len(entries) < 2:
        raise ValueError(
            f"Scene needs a reference and at least one source image, got {len(entries)}"
        )

    images = []
    for i, entry in enumerate(entries):
        try:
            image_path = path.parent / entry["path"]
            R = np.asarray(entry["R"], dtype=np.float32)
            t = np.asarray(entry["t"], dtype=np.float32).reshape(-1)
        except KeyError as e:
            raise ValueError(f"Image entry {i} is missing key {e}") from None
        if R.shape != (3, 3) or t.shape != (3,):
            raise ValueError(
                f"Image entry {i}: R must be 3x3 and t must have 3 elements"
            )
        images.append(
            PosedImage.from_array(
                read_gray_image(image_path), R, t, name=Path(entry["path"]).stem
            )
        )

    logger.info(
        "Loaded scene %s: reference %s, %d source images",
        path.name,
        images[0].name,
        len(images) - 1,
    )
    return Scene(
        intrinsics=Intrinsics.from_array(K),
        reference=images[0],
        sources=images[1:],
    )
