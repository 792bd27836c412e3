"""Tests for depth map rendering."""

import cv2
import numpy as np

from planesweep.visualization import render_depth_comparison, render_depth_map


def _depth():
    depth = np.linspace(1.0, 3.0, 48 * 64, dtype=np.float32).reshape(48, 64)
    depth[10:15, 20:25] = np.nan
    return depth


def test_render_depth_map(tmp_path):
    output_path = tmp_path / "nested" / "depth.png"
    render_depth_map(_depth(), output_path, title="raw")

    img = cv2.imread(str(output_path))
    assert img is not None
    assert img.shape[0] > 0 and img.shape[1] > 0


def test_render_depth_map_all_undefined(tmp_path):
    output_path = tmp_path / "empty.png"
    render_depth_map(np.full((8, 8), np.nan, dtype=np.float32), output_path)
    assert output_path.stat().st_size > 0


def test_render_depth_map_fixed_range(tmp_path):
    output_path = tmp_path / "fixed.png"
    render_depth_map(_depth(), output_path, vmin=0.0, vmax=5.0)
    assert output_path.exists()


def test_render_depth_comparison(tmp_path):
    output_path = tmp_path / "comparison.png"
    raw = _depth()
    refined = np.nan_to_num(raw, nan=2.0)
    render_depth_comparison({"raw": raw, "refined": refined}, output_path)

    single = tmp_path / "single.png"
    render_depth_comparison({"raw": raw}, single)

    wide = cv2.imread(str(output_path))
    narrow = cv2.imread(str(single))
    assert wide.shape[1] > narrow.shape[1]
