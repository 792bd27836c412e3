"""Separable windowed statistics (local mean and standard deviation)."""

import torch
import torch.nn.functional as F


def windowed_mean_column(
    src: torch.Tensor, winsize: int, squared: bool = False
) -> torch.Tensor:
    """Moving average along each column (vertical pass).

    Args:
        src: Image, shape (H, W), float32. NaN samples propagate.
        winsize: Window length (odd).
        squared: Square each sample before averaging.

    Returns:
        Averaged image, shape (H, W), float32.
    """
    x = src * src if squared else src
    pad = winsize // 2
    x = F.pad(x[None, None], (0, 0, pad, pad), mode="replicate")
    return F.avg_pool2d(x, kernel_size=(winsize, 1), stride=1)[0, 0]


def windowed_mean_row(
    src: torch.Tensor, winsize: int, squared: bool = False
) -> torch.Tensor:
    """Moving average along each row (horizontal pass).

    Args:
        src: Image, shape (H, W), float32. NaN samples propagate.
        winsize: Window length (odd).
        squared: Square each sample before averaging.

    Returns:
        Averaged image, shape (H, W), float32.
    """
    x = src * src if squared else src
    pad = winsize // 2
    x = F.pad(x[None, None], (pad, pad, 0, 0), mode="replicate")
    return F.avg_pool2d(x, kernel_size=(1, winsize), stride=1)[0, 0]


def windowed_mean(
    src: torch.Tensor, winsize: int, squared: bool = False
) -> torch.Tensor:
    """Square box-filter mean: column pass followed by row pass.

    Windows that reach past the image border use clamped (replicated) edge
    samples. Every caller goes through this function so reference and warped
    statistics share the same border policy.

    Args:
        src: Image, shape (H, W), float32.
        winsize: Window side length (odd).
        squared: Average squared samples instead (gives E[X^2]).

    Returns:
        Local mean, shape (H, W), float32.
    """
    return windowed_mean_row(windowed_mean_column(src, winsize, squared), winsize)


def windowed_std(mean: torch.Tensor, mean_of_squares: torch.Tensor) -> torch.Tensor:
    """Standard deviation from first and second moments.

    Negative variances caused by rounding are clamped to zero.

    Args:
        mean: E[X], shape (H, W).
        mean_of_squares: E[X^2], shape (H, W).

    Returns:
        sqrt(max(E[X^2] - E[X]^2, 0)), shape (H, W).
    """
    return torch.sqrt(torch.clamp(mean_of_squares - mean * mean, min=0.0))


def windowed_stats(
    image: torch.Tensor, winsize: int
) -> tuple[torch.Tensor, torch.Tensor]:
    """Local mean and standard deviation of an image.

    Args:
        image: Image, shape (H, W), float32.
        winsize: Window side length (odd).

    Returns:
        mean: shape (H, W).
        std: shape (H, W).
    """
    mean = windowed_mean(image, winsize)
    mean_sq = windowed_mean(image, winsize, squared=True)
    return mean, windowed_std(mean, mean_sq)
