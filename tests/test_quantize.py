"""Tests for 8-bit depth quantization."""

import numpy as np
import torch

from planesweep.quantize import UNDEFINED_INTENSITY, depth_to_uint8


def test_range_endpoints():
    depth = torch.tensor([[1.0, 3.0]])
    out = depth_to_uint8(depth, 1.0, 3.0)

    assert out.dtype == np.uint8
    assert out.tolist() == [[0, 255]]


def test_midpoint_truncates():
    out = depth_to_uint8(torch.tensor([[2.0]]), 1.0, 3.0)
    assert out[0, 0] == 127


def test_out_of_range_is_clamped():
    out = depth_to_uint8(torch.tensor([[0.2, 10.0]]), 1.0, 3.0)
    assert out.tolist() == [[0, 255]]


def test_undefined_is_white():
    depth = torch.tensor([[float("nan"), float("inf"), 1.0]])
    out = depth_to_uint8(depth, 1.0, 3.0)
    assert out.tolist() == [[UNDEFINED_INTENSITY, UNDEFINED_INTENSITY, 0]]


def test_monotonic(device):
    depth = torch.linspace(1.0, 5.0, 50, device=device).reshape(5, 10)
    out = depth_to_uint8(depth, 1.0, 5.0)

    assert out.shape == (5, 10)
    assert (np.diff(out.reshape(-1).astype(int)) >= 0).all()
