"""Depth map rendering."""

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
from pathlib import Path


def _finite_range(depth_maps: list[np.ndarray]) -> tuple[float | None, float | None]:
    """Min and max over the defined pixels of all maps, (None, None) if none."""
    valid = [d[np.isfinite(d)] for d in depth_maps]
    valid = [v for v in valid if len(v) > 0]
    if not valid:
        return None, None
    all_valid = np.concatenate(valid)
    return float(all_valid.min()), float(all_valid.max())


def _save_panels(
    depth_maps: dict[str, np.ndarray],
    output_path: str | Path,
    vmin: float | None,
    vmax: float | None,
    dpi: int,
) -> None:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    n = len(depth_maps)
    fig, axes = plt.subplots(1, n, figsize=(5 * n, 4), squeeze=False)

    cmap = plt.cm.viridis.copy()
    cmap.set_bad(color="0.8")

    im = None
    for ax, (name, depth_map) in zip(axes[0], depth_maps.items()):
        im = ax.imshow(depth_map, cmap=cmap, vmin=vmin, vmax=vmax)
        ax.set_title(name)
        ax.axis("off")

    if im is not None:
        cbar = fig.colorbar(im, ax=axes[0].tolist(), shrink=0.8)
        cbar.set_label("Depth")

    fig.savefig(output_path, dpi=dpi, bbox_inches="tight", pad_inches=0.1)
    plt.close(fig)


def render_depth_map(
    depth_map: np.ndarray,
    output_path: str | Path,
    title: str = "Depth",
    vmin: float | None = None,
    vmax: float | None = None,
    dpi: int = 150,
) -> None:
    """Render one depth map as a colormapped PNG, undefined pixels in gray.

    Args:
        depth_map: Depth map, shape (H, W). NaN for undefined pixels.
        output_path: Path to save the PNG image.
        title: Panel title.
        vmin: Colormap minimum. Defaults to the smallest defined depth.
        vmax: Colormap maximum. Defaults to the largest defined depth.
        dpi: Output resolution.
    """
    low, high = _finite_range([depth_map])
    _save_panels(
        {title: depth_map},
        output_path,
        low if vmin is None else vmin,
        high if vmax is None else vmax,
        dpi,
    )


def render_depth_comparison(
    depth_maps: dict[str, np.ndarray],
    output_path: str | Path,
    dpi: int = 150,
) -> None:
    """Render several depth maps of the same view side by side.

    All panels share one color range so raw and refined maps can be compared.

    Args:
        depth_maps: Panel title to depth map (H, W) mapping, in display order.
        output_path: Path to save the PNG image.
        dpi: Output resolution.
    """
    vmin, vmax = _finite_range(list(depth_maps.values()))
    _save_panels(depth_maps, output_path, vmin, vmax, dpi)
