"""Per-depth cost computation: homography warp and windowed NCC."""

import torch
import torch.nn.functional as F
from torch.profiler import record_function

from .window import windowed_mean, windowed_stats


def compute_homography(
    K: torch.Tensor,
    K_inv: torch.Tensor,
    R_rel: torch.Tensor,
    t_rel: torch.Tensor,
    depth: float,
) -> torch.Tensor:
    """Homography induced by a fronto-parallel plane at the given depth.

    H = K @ (R_rel + t_rel @ e3^T / depth) @ K^-1, where e3 = (0, 0, 1) is the
    plane normal in the reference camera frame. H maps homogeneous reference
    pixels to source pixels.

    Args:
        K: Intrinsic matrix, shape (3, 3).
        K_inv: Inverse intrinsic matrix, shape (3, 3).
        R_rel: Relative rotation (reference to source), shape (3, 3).
        t_rel: Relative translation (reference to source), shape (3,).
        depth: Plane depth along the reference optical axis.

    Returns:
        Homography normalized so that H[2, 2] == 1, shape (3, 3).
    """
    tr = torch.zeros_like(R_rel)
    tr[:, 2] = t_rel
    H = K @ (R_rel + tr / depth) @ K_inv
    return H / H[2, 2]


def pixel_coordinates(
    height: int, width: int, device: torch.device
) -> tuple[torch.Tensor, torch.Tensor]:
    """Column (x) and row (y) coordinates of every pixel, each (H, W)."""
    y, x = torch.meshgrid(
        torch.arange(height, device=device, dtype=torch.float32),
        torch.arange(width, device=device, dtype=torch.float32),
        indexing="ij",
    )
    return x, y


def transform_indexes(
    H: torch.Tensor, height: int, width: int
) -> tuple[torch.Tensor, torch.Tensor]:
    """Map every reference pixel through a homography.

    Args:
        H: Homography, shape (3, 3).
        height: Reference image height.
        width: Reference image width.

    Returns:
        x: Source column coordinates, shape (H, W), float32.
        y: Source row coordinates, shape (H, W), float32.
    """
    x, y = pixel_coordinates(height, width, H.device)
    denom = H[2, 0] * x + H[2, 1] * y + H[2, 2]
    xs = (H[0, 0] * x + H[0, 1] * y + H[0, 2]) / denom
    ys = (H[1, 0] * x + H[1, 1] * y + H[1, 2]) / denom
    return xs, ys


def bilinear_interpolate(
    src: torch.Tensor, x: torch.Tensor, y: torch.Tensor
) -> torch.Tensor:
    """Sample an image at sub-pixel locations.

    Args:
        src: Source image, shape (Hs, Ws), float32.
        x: Column coordinates, shape (H, W).
        y: Row coordinates, shape (H, W).

    Returns:
        Sampled values, shape (H, W), float32. Locations outside
        [0, Ws-1] x [0, Hs-1] (or non-finite) are NaN.
    """
    Hs, Ws = src.shape

    # grid_sample expects grid in [-1, 1] range
    grid_x = 2.0 * x / max(Ws - 1, 1) - 1.0
    grid_y = 2.0 * y / max(Hs - 1, 1) - 1.0
    grid = torch.stack([grid_x, grid_y], dim=-1).unsqueeze(0)  # (1, H, W, 2)

    sampled = F.grid_sample(
        src[None, None],
        torch.nan_to_num(grid, nan=2.0, posinf=2.0, neginf=2.0),
        mode="bilinear",
        padding_mode="zeros",
        align_corners=True,
    )[0, 0]

    inside = (x >= 0) & (x <= Ws - 1) & (y >= 0) & (y <= Hs - 1)
    return torch.where(inside, sampled, torch.full_like(sampled, float("nan")))


def compute_ncc(
    ref: torch.Tensor,
    ref_mean: torch.Tensor,
    ref_std: torch.Tensor,
    warped: torch.Tensor,
    winsize: int,
    stdthresh: float,
) -> torch.Tensor:
    """Windowed normalized cross-correlation against the reference.

    NCC = (E[ref * warped] - E[ref] E[warped]) / (std(ref) std(warped))

    Args:
        ref: Reference image, shape (H, W), float32.
        ref_mean: Windowed mean of ref, shape (H, W).
        ref_std: Windowed standard deviation of ref, shape (H, W).
        warped: Warped source image, shape (H, W). NaN marks invalid samples.
        winsize: Window side length (odd).
        stdthresh: Minimum standard deviation for either window. Flatter
            windows are non-discriminative and marked invalid.

    Returns:
        NCC map, shape (H, W), float32 in [-1, 1]. NaN where the window
        touched an invalid sample or either std is below stdthresh.
    """
    with record_function("ncc"):
        warped_mean, warped_std = windowed_stats(warped, winsize)
        cross = windowed_mean(ref * warped, winsize)

        ncc = (cross - ref_mean * warped_mean) / (ref_std * warped_std)
        ncc = ncc.clamp(-1.0, 1.0)

        valid = (ref_std >= stdthresh) & (warped_std >= stdthresh)
        return torch.where(valid, ncc, torch.full_like(ncc, float("nan")))


def warp_and_score(
    ref: torch.Tensor,
    ref_mean: torch.Tensor,
    ref_std: torch.Tensor,
    src: torch.Tensor,
    K: torch.Tensor,
    K_inv: torch.Tensor,
    R_rel: torch.Tensor,
    t_rel: torch.Tensor,
    depth: float,
    winsize: int,
    stdthresh: float,
) -> torch.Tensor:
    """NCC score of one source view at one depth hypothesis.

    Args:
        ref: Reference image, shape (H, W), float32.
        ref_mean: Windowed mean of ref, shape (H, W).
        ref_std: Windowed standard deviation of ref, shape (H, W).
        src: Source image, shape (Hs, Ws), float32.
        K: Intrinsic matrix, shape (3, 3).
        K_inv: Inverse intrinsic matrix, shape (3, 3).
        R_rel: Relative rotation, shape (3, 3).
        t_rel: Relative translation, shape (3,).
        depth: Depth hypothesis.
        winsize: NCC window side length (odd).
        stdthresh: Minimum window standard deviation.

    Returns:
        NCC map, shape (H, W). NaN for invalid pixels.
    """
    H, W = ref.shape
    homography = compute_homography(K, K_inv, R_rel, t_rel, depth)
    xs, ys = transform_indexes(homography, H, W)
    warped = bilinear_interpolate(src, xs, ys)
    return compute_ncc(ref, ref_mean, ref_std, warped, winsize, stdthresh)


def update_best(
    best_ncc: torch.Tensor,
    best_depth: torch.Tensor,
    ncc: torch.Tensor,
    depth: float,
) -> None:
    """Fold one depth hypothesis into the running arg-max, in place.

    A pixel is updated only when its NCC is strictly greater than the stored
    best, so on ties the earlier (shallower) hypothesis is kept. NaN scores
    never win.

    Args:
        best_ncc: Running best NCC, shape (H, W). Modified in place.
        best_depth: Depth achieving best_ncc, shape (H, W). Modified in place.
        ncc: NCC at the current hypothesis, shape (H, W).
        depth: Current hypothesis.
    """
    better = ncc > best_ncc
    best_ncc[better] = ncc[better]
    best_depth[better] = depth
