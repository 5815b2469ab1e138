import numpy as np
import pytest


def horizon_frame(width=320, height=240, horizon_row=60, sky=200, ground=50):
    """BGR frame with a flat, noise-free horizon: sky rows above horizon_row, ground from it down."""
    frame = np.full((height, width, 3), ground, dtype=np.uint8)
    frame[:horizon_row] = sky
    return frame


@pytest.fixture
def make_horizon_frame():
    return horizon_frame
